"""In-memory persistence layer with asyncio concurrency control.

This module provides the reference implementation of the persistence layer.
It behaves like a remote key-value store with conditional writes:

- records are stored serialized (JSON-compatible dicts), never as live
  objects, so callers cannot mutate stored state through a returned record
- conditional create and conditional update run under one asyncio.Lock, so
  the check and the write are atomic for all coroutines on the event loop
- ``purge_expired`` stands in for the backend's per-item TTL collection

InMemoryPersistenceLayer is suitable for:
    - Single-process applications
    - Development and testing

Examples:
    Basic usage::

        from idempotent_execution.models import InvocationScope
        from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

        store = InMemoryPersistenceLayer()
        scope = InvocationScope(function_name="create_order")

        await store.save_in_progress({"order_id": 1}, scope, remaining_time_ms=30_000)
        await store.save_success({"order_id": 1}, {"status": "created"}, scope)

    Concurrent duplicate handling::

        await store.save_in_progress(payload, scope)
        try:
            await store.save_in_progress(payload, scope)
        except IdempotencyItemAlreadyExistsError as e:
            print(e.existing_record.status)  # RecordStatus.INPROGRESS
"""

import asyncio
from typing import Any

from idempotent_execution.exceptions import (
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyItemNotOwnedError,
)
from idempotent_execution.models import IdempotencyRecord, RecordStatus, now_seconds
from idempotent_execution.persistence.base import BasePersistenceLayer


class InMemoryPersistenceLayer(BasePersistenceLayer):
    """In-memory persistence layer.

    Attributes:
        _records: Mapping of idempotency key to the serialized record.
        _lock: Lock making each conditional write atomic.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _load(self, idempotency_key: str) -> IdempotencyRecord | None:
        raw = self._records.get(idempotency_key)
        if raw is None:
            return None
        return IdempotencyRecord.model_validate(raw)

    async def _put_record(self, record: IdempotencyRecord, now: float, now_ms: int) -> None:
        """Create the record unless a live one blocks it.

        A stored record is superseded when it is globally expired, or when it
        is INPROGRESS and its in-progress deadline has lapsed.
        """
        async with self._lock:
            existing = self._load(record.idempotency_key)
            if existing is not None and existing.is_live_reservation_blocker(now, now_ms):
                raise IdempotencyItemAlreadyExistsError(
                    "Failed to put record for already existing idempotency key: "
                    f"{record.idempotency_key}",
                    existing_record=existing,
                )
            self._records[record.idempotency_key] = record.model_dump(mode="json")

    async def _update_record(self, record: IdempotencyRecord) -> None:
        """Overwrite the record if this caller still owns the reservation."""
        async with self._lock:
            existing = self._load(record.idempotency_key)
            if existing is None:
                raise IdempotencyItemNotOwnedError(
                    f"No record to update for idempotency key: {record.idempotency_key}"
                )
            if existing.status != RecordStatus.INPROGRESS:
                raise IdempotencyItemNotOwnedError(
                    f"Record for idempotency key {record.idempotency_key} "
                    f"is {existing.status.value}, expected INPROGRESS"
                )
            if existing.payload_hash != record.payload_hash:
                raise IdempotencyItemNotOwnedError(
                    f"Payload hash mismatch for idempotency key: {record.idempotency_key}"
                )
            self._records[record.idempotency_key] = record.model_dump(mode="json")

    async def _delete_record(self, idempotency_key: str) -> None:
        async with self._lock:
            self._records.pop(idempotency_key, None)

    async def _get_record(self, idempotency_key: str) -> IdempotencyRecord:
        record = self._load(idempotency_key)
        if record is None:
            raise IdempotencyItemNotFoundError(
                f"No record found for idempotency key: {idempotency_key}"
            )
        return record

    async def purge_expired(self, now: float | None = None) -> int:
        """Remove records past their global expiry.

        Args:
            now: Epoch seconds to evaluate against (defaults to the clock).

        Returns:
            The number of records removed.
        """
        current = now_seconds() if now is None else now
        removed_count = 0

        async with self._lock:
            for key in list(self._records):
                record = self._load(key)
                if record is not None and record.is_expired(current):
                    del self._records[key]
                    removed_count += 1

        return removed_count
