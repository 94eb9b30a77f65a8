"""Prometheus metrics for idempotent execution.

Metrics:

- ``idempotency_outcomes_total{outcome}``: one increment per ``execute``
  call, labelled with how it ended (executed, replayed, in_progress,
  inconsistent, bypassed, work_failed, persistence_error, validation_error)
- ``idempotency_retries_total``: inconsistent-state retries
- ``idempotency_execution_time_ms``: duration of work that actually ran
- ``idempotency_in_progress``: reservations currently held by this process
- ``idempotency_cleanup_*``: background purge activity

Examples:
    >>> record_outcome("replayed")
    >>> record_execution_time(150)
"""

from prometheus_client import Counter, Gauge, Histogram

OUTCOMES = (
    "executed",
    "replayed",
    "in_progress",
    "inconsistent",
    "bypassed",
    "work_failed",
    "persistence_error",
    "validation_error",
)

outcomes_total = Counter(
    "idempotency_outcomes_total",
    "Total number of idempotent executions by outcome",
    ["outcome"],
)

retries_total = Counter(
    "idempotency_retries_total",
    "Total number of reservation retries after an inconsistent state",
)

# Only tracks work that ran, not replays
execution_time_ms = Histogram(
    "idempotency_execution_time_ms",
    "Execution time of idempotent work in milliseconds",
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

in_progress = Gauge(
    "idempotency_in_progress",
    "Number of reservations currently held by this process",
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


def record_outcome(outcome: str) -> None:
    """Count one ``execute`` call by how it ended.

    Raises:
        ValueError: If the outcome label is not one of OUTCOMES.
    """
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown outcome label: {outcome}")
    outcomes_total.labels(outcome=outcome).inc()


def record_retry() -> None:
    retries_total.inc()


def record_execution_time(exec_time_ms: int) -> None:
    """Observe the duration of work that ran (not replays)."""
    execution_time_ms.observe(exec_time_ms)


def increment_in_progress() -> None:
    in_progress.inc()


def decrement_in_progress() -> None:
    in_progress.dec()


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation and how many records it removed."""
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
