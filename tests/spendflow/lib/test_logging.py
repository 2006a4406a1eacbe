"""Tests for logging setup (spendflow/lib/logging.py)."""

from __future__ import annotations

import logging

import structlog

from spendflow.lib.logging import REDACTED, log_context, redact_sensitive, setup_logging


def test_redact_masks_sensitive_keys():
    event = {"event": "login", "email": "a@example.com", "token": "abc", "card_id": "c1"}
    result = redact_sensitive(None, "info", event)
    assert result["email"] == REDACTED
    assert result["token"] == REDACTED
    assert result["card_id"] == "c1"


def test_redact_leaves_none_values():
    assert redact_sensitive(None, "info", {"email": None})["email"] is None


def test_log_context_binds_and_unbinds():
    with log_context(user_hash="abc123", run_date="2024-05-15"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["user_hash"] == "abc123"
        assert bound["run_date"] == "2024-05-15"
    assert "user_hash" not in structlog.contextvars.get_contextvars()


def test_setup_logging_replaces_root_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(dev_mode=True, log_level="debug")
        setup_logging(dev_mode=False, log_level="warning")
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
