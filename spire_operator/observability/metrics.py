"""Prometheus metrics for SPIRE operator observability.

Design principles:
- Low-cardinality labels only (no object names or namespaces)
- Counters bumped at the end of each reconciliation or health tick
"""
from prometheus_client import Counter, Gauge

reconciles_total = Counter(
    "spire_operator_reconciles_total",
    "Reconciliations by object kind and result",
    ["kind", "result"]
)

apply_failures = Counter(
    "spire_operator_apply_failures_total",
    "Resource creates that failed, by owning object kind",
    ["kind"]
)

health_observations = Counter(
    "spire_operator_health_observations_total",
    "Health status writes by aggregate state",
    ["state"]
)

active_aggregators = Gauge(
    "spire_operator_active_aggregators",
    "Running SpireServer health aggregators"
)
