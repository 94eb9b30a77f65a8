"""
Pytest configuration and shared fixtures for idempotent_execution tests.
"""

import time

import pytest

from idempotent_execution.config import DISABLED_ENV_VAR, IdempotencyConfig
from idempotent_execution.models import IdempotencyRecord, InvocationScope, RecordStatus
from idempotent_execution.persistence.memory import InMemoryPersistenceLayer


@pytest.fixture(autouse=True)
def _clear_disabled_env(monkeypatch):
    """Keep the environment switch from leaking into tests."""
    monkeypatch.delenv(DISABLED_ENV_VAR, raising=False)


@pytest.fixture
def store() -> InMemoryPersistenceLayer:
    """Provide a fresh in-memory persistence layer."""
    return InMemoryPersistenceLayer()


@pytest.fixture
def config() -> IdempotencyConfig:
    """Provide a default config."""
    return IdempotencyConfig()


@pytest.fixture
def scope(config) -> InvocationScope:
    """Provide a scope for a function called ``fn``."""
    return InvocationScope(function_name="fn", config=config)


@pytest.fixture
def sample_payload() -> dict:
    """Provide a sample invocation payload."""
    return {"order_id": "order-123", "amount": 100}


def seed_record(
    store: InMemoryPersistenceLayer,
    key: str,
    status: RecordStatus,
    expires_in: float = 1000,
    in_progress_expires_in_ms: int | None = None,
    response_data=None,
    payload_hash: str | None = None,
) -> IdempotencyRecord:
    """Write a record straight into the store, bypassing conditional writes."""
    now = time.time()
    in_progress_expiry = None
    if in_progress_expires_in_ms is not None:
        in_progress_expiry = int(now * 1000) + in_progress_expires_in_ms
    record = IdempotencyRecord(
        idempotency_key=key,
        status=status,
        expiry_timestamp=int(now + expires_in),
        in_progress_expiry_timestamp=in_progress_expiry,
        payload_hash=payload_hash,
        response_data=response_data,
    )
    store._records[key] = record.model_dump(mode="json")
    return record


@pytest.fixture
def seed(store):
    """Provide ``seed(key, status, ...)`` writing records into ``store``."""

    def _seed(key: str, status: RecordStatus, **kwargs) -> IdempotencyRecord:
        return seed_record(store, key, status, **kwargs)

    return _seed
