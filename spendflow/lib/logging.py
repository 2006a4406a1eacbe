"""
Structured logging configuration for SpendFlow.

stdlib ``logging.getLogger(__name__)`` records and structlog loggers share one
pipeline: JSON lines in production, console output with SPENDFLOW_DEV_MODE=1.

Two SpendFlow-specific processors run on every record:

- contextvars bound with ``log_context()`` (user hash, run date) are merged in,
  so every line of a processor run can be correlated
- values under sensitive keys (e-mail, tokens, signatures, secrets) are masked

Usage:
    from spendflow.lib.logging import log_context, setup_logging

    setup_logging()  # once, from the app lifespan

    with log_context(user_hash=hash_uid(user_id), run_date=today.isoformat()):
        ...
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog

REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset(
    {
        "email",
        "user_email",
        "authorization",
        "token",
        "secret",
        "api_secret_key",
        "stripe_signature",
        "signature",
    }
)

QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "uvicorn.access")


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values bound under SENSITIVE_KEYS."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every log record emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def _build_renderer(dev_mode: bool) -> structlog.types.Processor:
    if dev_mode:
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer(sort_keys=True)


def setup_logging(dev_mode: bool | None = None, log_level: str | None = None) -> None:
    """
    Route stdlib logging and structlog through one formatter on stderr.

    Arguments default to SPENDFLOW_DEV_MODE and LOG_LEVEL. Safe to call more
    than once; the root handler is replaced, never duplicated.
    """
    if dev_mode is None:
        dev_mode = os.environ.get("SPENDFLOW_DEV_MODE") == "1"
    level = getattr(logging, (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _build_renderer(dev_mode),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
