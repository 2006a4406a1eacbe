"""Core wiring shared by workflows and the API."""

from spendflow.core.context import ProcessingContext

__all__ = ["ProcessingContext"]
