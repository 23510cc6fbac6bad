"""Prometheus metrics for the operations core."""

from prometheus_client import Counter, Histogram

# Unit of work metrics
unit_of_work_total = Counter(
    "unit_of_work_total",
    "Context-scoped units of work by outcome",
    ["outcome"],
)

unit_of_work_latency_ms = Histogram(
    "unit_of_work_latency_ms",
    "Unit of work latency in milliseconds",
    ["outcome"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

# Audit metrics
audit_events_total = Counter(
    "audit_events_total",
    "Activity notary events by outcome",
    ["outcome"],
)

# Distribution metrics
over_allocations_total = Counter(
    "over_allocations_total",
    "Allocations that left a batch with negative remaining balance",
    ["resource"],
)


class PrometheusUnitOfWorkMetrics:
    """Prometheus-based unit of work metrics implementation."""

    def record(self, outcome: str, latency_ms: float) -> None:
        """Record a finished unit of work."""
        unit_of_work_total.labels(outcome=outcome).inc()
        unit_of_work_latency_ms.labels(outcome=outcome).observe(latency_ms)
