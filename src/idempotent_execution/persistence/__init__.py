"""Persistence layers for idempotent execution.

All stores subclass BasePersistenceLayer defined in base.py.

Available stores:
    - InMemoryPersistenceLayer: In-memory reference store with asyncio locking
"""

from idempotent_execution.persistence.base import BasePersistenceLayer
from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

__all__ = [
    "BasePersistenceLayer",
    "InMemoryPersistenceLayer",
]
