"""Infrastructure: Prometheus metrics and health checks."""
