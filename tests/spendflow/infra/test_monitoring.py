"""Tests for Prometheus metrics (spendflow/infra/monitoring.py)."""

from __future__ import annotations

from prometheus_client import REGISTRY

from spendflow.infra.monitoring import (
    PrometheusMetrics,
    record_obligation,
    record_request,
    record_webhook_event,
    update_circuit_state,
)
from spendflow.lib.circuit_breaker import CircuitState


def _value(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_record_obligation_increments():
    labels = {"kind": "recurring_expense", "outcome": "processed"}
    before = _value("spendflow_obligations_processed_total", labels)
    record_obligation("recurring_expense", "processed")
    assert _value("spendflow_obligations_processed_total", labels) == before + 1


def test_record_webhook_event_increments():
    labels = {"event_type": "invoice.paid", "result": "ignored"}
    before = _value("spendflow_webhook_events_total", labels)
    record_webhook_event("invoice.paid", "ignored")
    assert _value("spendflow_webhook_events_total", labels) == before + 1


def test_record_request_counts_and_times():
    labels = {"method": "GET", "endpoint": "/test-endpoint", "status": "204"}
    before = _value("spendflow_http_requests_total", labels)
    record_request("GET", "/test-endpoint", 204, 0.01)
    assert _value("spendflow_http_requests_total", labels) == before + 1
    assert _value(
        "spendflow_http_request_duration_seconds_count",
        {"method": "GET", "endpoint": "/test-endpoint"},
    ) >= 1


def test_circuit_state_gauge():
    update_circuit_state("test_breaker", CircuitState.OPEN)
    assert _value("spendflow_circuit_breaker_state", {"name": "test_breaker"}) > 0
    update_circuit_state("test_breaker", CircuitState.CLOSED)
    assert _value("spendflow_circuit_breaker_state", {"name": "test_breaker"}) == 0


def test_generate_metrics_text():
    text = PrometheusMetrics.generate_metrics().decode("utf-8")
    assert "spendflow_obligations_processed_total" in text
