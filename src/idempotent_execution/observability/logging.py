"""Structured logging for idempotent execution.

Logs are emitted through structlog as event names with keyword context,
rendered as JSON for production or as colored console lines for
development.

Events emitted by the package:

- ``idempotency.bypassed``: idempotency disabled or no key for this call
- ``idempotency.reserved``: INPROGRESS record written, work about to run
- ``idempotency.completed``: result stored as COMPLETED
- ``idempotency.released``: work failed, reservation deleted
- ``idempotency.replayed``: stored result returned without running work
- ``idempotency.in_progress``: a live reservation blocked this call
- ``idempotency.retry``: inconsistent state observed, reserving again
- ``idempotency.exhausted``: retries used up
- ``cleanup.*``: background purge of expired records

Examples:
    Configure logging once at startup::

        from idempotent_execution.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Use the logger::

        from idempotent_execution.observability.logging import get_logger

        logger = get_logger(__name__)
        logger.info("idempotency.replayed", key="create_order#ab12", attempt=0)

    Output (JSON)::

        {"key": "create_order#ab12", "attempt": 0, "event": "idempotency.replayed",
         "level": "info", "timestamp": "2024-01-01T00:00:00.000000Z"}
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.typing import Processor

_SHARED_PROCESSORS: tuple[Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
)


def resolve_level(level: str | int) -> int:
    """Map a level name such as ``"warning"`` or a numeric level to an int."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(level: str | int = "INFO", json_output: bool = True) -> None:
    """Install the package's structlog pipeline.

    Lines below ``level`` are dropped before any processor runs. Call once
    at startup; loggers created earlier keep their cached configuration.

    Args:
        level: Level name or numeric level.
        json_output: Render JSON when True, colored console lines otherwise.

    Raises:
        ValueError: If ``level`` names no known level.
    """
    threshold = resolve_level(level)
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, _renderer(json_output)],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        logger_factory=structlog.PrintLoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> Any:
    """Return a structlog logger, optionally pre-bound with ``initial_context``."""
    return structlog.get_logger(name, **initial_context)


@contextmanager
def bound_idempotency_key(key: str, function_name: str) -> Iterator[None]:
    """Bind the idempotency key to every log line emitted inside the block.

    Uses contextvars, so concurrent invocations on the same event loop keep
    their own key.
    """
    with structlog.contextvars.bound_contextvars(
        idempotency_key=key,
        function_name=function_name,
    ):
        yield
