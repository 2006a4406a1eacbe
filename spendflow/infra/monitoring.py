"""
Prometheus Monitoring for SpendFlow.

Provides Prometheus metrics for:
- HTTP request latency and error rates
- Obligation processing outcomes and run duration
- Billing webhook events
- Circuit breaker state

Exposed at ``GET /metrics``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, generate_latest

from spendflow.lib.circuit_breaker import CircuitState

logger = logging.getLogger(__name__)


# =============================================================================
# Metrics Definitions
# =============================================================================

# HTTP Request Metrics
http_requests_total = Counter(
    "spendflow_http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "spendflow_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Obligation Metrics
obligations_processed_total = Counter(
    "spendflow_obligations_processed_total",
    "Obligations handled by the processor",
    ["kind", "outcome"],
)

processor_run_duration_seconds = Histogram(
    "spendflow_processor_run_duration_seconds",
    "Duration of one processor run for one user",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Billing Metrics
webhook_events_total = Counter(
    "spendflow_webhook_events_total",
    "Billing webhook events received",
    ["event_type", "result"],
)

# Circuit Breaker Metrics
circuit_breaker_state = Gauge(
    "spendflow_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["name"],
)

_STATE_VALUES: dict[CircuitState, float] = {
    CircuitState.CLOSED: 0.0,
    CircuitState.HALF_OPEN: 1.0,
    CircuitState.OPEN: 2.0,
}


# =============================================================================
# Recording Helpers
# =============================================================================


def record_request(method: str, endpoint: str, status: int, duration_seconds: float) -> None:
    http_requests_total.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
        duration_seconds
    )


def record_obligation(kind: str, outcome: str) -> None:
    """
    Count one obligation outcome.

    Args:
        kind: recurring_expense | card_payment
        outcome: processed | skipped | insufficient_funds | failed | missing_reference
    """
    obligations_processed_total.labels(kind=kind, outcome=outcome).inc()


def record_webhook_event(event_type: str, result: str) -> None:
    webhook_events_total.labels(event_type=event_type, result=result).inc()


def update_circuit_state(name: str, state: CircuitState) -> None:
    circuit_breaker_state.labels(name=name).set(_STATE_VALUES[state])


# =============================================================================
# Timing
# =============================================================================


@contextmanager
def track_processor_run() -> Iterator[None]:
    """Observe the duration of one processor run."""
    start_time = time.time()
    try:
        yield
    finally:
        processor_run_duration_seconds.observe(time.time() - start_time)


# =============================================================================
# Prometheus Metrics Export
# =============================================================================


class PrometheusMetrics:
    """Prometheus text exposition for the /metrics endpoint."""

    @staticmethod
    def generate_metrics() -> bytes:
        return generate_latest()
