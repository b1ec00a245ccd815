"""
Prometheus metrics for the writer, monitor and validator.
Registered in the global REGISTRY on import.
"""

from prometheus_client import Counter, Gauge, Histogram

_LATENCY_BUCKETS = [1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000]

# --- Writer ---

WRITES_TOTAL = Counter(
    "ha_tester_writes_total",
    "Sequenced write attempts by outcome",
    ["outcome"],  # success | allocation_error | write_error
)

WRITE_LATENCY_MS = Histogram(
    "ha_tester_write_latency_ms",
    "Sequenced write latency in milliseconds (allocation + persist)",
    buckets=_LATENCY_BUCKETS,
)

# --- Monitor ---

PROBE_LATENCY_MS = Histogram(
    "ha_tester_probe_latency_ms",
    "Monitor probe latency in milliseconds",
    ["op"],  # write | read
    buckets=_LATENCY_BUCKETS,
)

HEALTHY_MEMBERS = Gauge(
    "ha_tester_healthy_members",
    "Replica set members reporting health == 1",
)

PRIMARY_CHANGES_TOTAL = Counter(
    "ha_tester_primary_changes_total",
    "Observed changes of the primary member",
)

# --- Validator ---

VALIDATIONS_TOTAL = Counter(
    "ha_tester_validations_total",
    "Full validation runs by outcome",
    ["outcome"],  # valid | invalid | error
)

MISSING_SEQUENCES = Gauge(
    "ha_tester_missing_sequences",
    "Missing sequence ids found by the last validation",
)

DUPLICATE_SEQUENCES = Gauge(
    "ha_tester_duplicate_sequences",
    "Duplicated sequence ids found by the last validation",
)

# --- Errors ---

ERRORS_TOTAL = Counter(
    "ha_tester_errors_total",
    "Errors recorded to the error sink",
    ["kind", "component"],
)


class MetricsRegistry:
    """Centralized access to the tester's metrics."""

    writes_total = WRITES_TOTAL
    write_latency_ms = WRITE_LATENCY_MS
    probe_latency_ms = PROBE_LATENCY_MS
    healthy_members = HEALTHY_MEMBERS
    primary_changes_total = PRIMARY_CHANGES_TOTAL
    validations_total = VALIDATIONS_TOTAL
    missing_sequences = MISSING_SEQUENCES
    duplicate_sequences = DUPLICATE_SEQUENCES
    errors_total = ERRORS_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
