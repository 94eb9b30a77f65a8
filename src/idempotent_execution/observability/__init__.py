"""Observability utilities for idempotent execution.

This package provides:
- Structured logging with contextual information (structlog)
- Prometheus metrics for outcomes, retries and execution time
"""

from idempotent_execution.observability.logging import (
    bound_idempotency_key,
    configure_logging,
    get_logger,
)
from idempotent_execution.observability.metrics import (
    record_cleanup,
    record_execution_time,
    record_outcome,
    record_retry,
)

__all__ = [
    "bound_idempotency_key",
    "configure_logging",
    "get_logger",
    "record_outcome",
    "record_retry",
    "record_execution_time",
    "record_cleanup",
]
