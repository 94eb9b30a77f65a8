"""
Idempotent execution for async Python functions.

Wraps a unit of work so that, for a given idempotency key, it runs to
completion at most once. Concurrent duplicates are rejected or served the
stored result, using conditional writes on a shared persistence store.
"""

from idempotent_execution.config import MAX_RETRIES, IdempotencyConfig
from idempotent_execution.core.handler import IdempotencyHandler, execute
from idempotent_execution.decorators import idempotent, idempotent_function
from idempotent_execution.models import IdempotencyRecord, RecordStatus
from idempotent_execution.persistence import BasePersistenceLayer, InMemoryPersistenceLayer

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MAX_RETRIES",
    "BasePersistenceLayer",
    "IdempotencyConfig",
    "IdempotencyHandler",
    "IdempotencyRecord",
    "InMemoryPersistenceLayer",
    "RecordStatus",
    "execute",
    "idempotent",
    "idempotent_function",
]
