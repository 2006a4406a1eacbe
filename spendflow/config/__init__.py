"""Environment-driven configuration."""

from spendflow.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
