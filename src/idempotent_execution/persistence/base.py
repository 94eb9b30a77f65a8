"""Persistence layer contract for idempotent execution.

This module defines the abstract persistence layer the handler depends on.
The base class owns everything that does not depend on a particular store:

- deriving the idempotency key from the payload
- hashing the validated part of the payload
- computing expiry and in-progress deadlines
- building the records written by each operation
- validating a stored payload hash against the current payload

Concrete stores implement four primitives on top of a backend that offers
atomic conditional writes (compare-and-set). Implementations can target
DynamoDB, Redis, PostgreSQL or in-memory storage.

Examples:
    Implementing a custom store::

        from idempotent_execution.persistence.base import BasePersistenceLayer

        class MyPersistenceLayer(BasePersistenceLayer):
            async def _put_record(self, record, now, now_ms):
                # Conditional create, raising IdempotencyItemAlreadyExistsError
                ...

            async def _update_record(self, record):
                # Conditional update, raising IdempotencyItemNotOwnedError
                ...

            async def _delete_record(self, idempotency_key):
                ...

            async def _get_record(self, idempotency_key):
                # Raise IdempotencyItemNotFoundError when absent
                ...

Atomicity Requirements:
    All implementations MUST guarantee:

    1. **Conditional create**: ``_put_record`` succeeds only when no record
       blocks it: no record, a globally expired record, or an INPROGRESS
       record whose in-progress deadline lapsed. The check and the write are
       one atomic step. On failure it raises
       IdempotencyItemAlreadyExistsError carrying the blocking record when
       the backend can return it.

    2. **Conditional update**: ``_update_record`` succeeds only when the
       stored record is still INPROGRESS with the same payload hash.

    3. **Idempotent delete**: ``_delete_record`` on an absent key is a no-op.

    4. **No local caching**: every call reads from or writes to the backend.
       Records are never cached across calls.
"""

from abc import ABC, abstractmethod
from typing import Any

from idempotent_execution.exceptions import (
    IdempotencyKeyError,
    IdempotencyValidationError,
)
from idempotent_execution.hashing import compute_hash, extract_path, is_missing_key, to_jsonable
from idempotent_execution.models import (
    IdempotencyRecord,
    InvocationScope,
    RecordStatus,
    now_millis,
    now_seconds,
)
from idempotent_execution.observability.logging import get_logger

logger = get_logger(__name__)


class BasePersistenceLayer(ABC):
    """Abstract persistence layer for idempotency records.

    Instances hold only a connection or client to their backend and may be
    shared process-wide. Per-call inputs (function name and config) arrive
    with every operation as an InvocationScope.

    Error Handling:
        Primitives raise IdempotencyItemAlreadyExistsError,
        IdempotencyItemNotOwnedError and IdempotencyItemNotFoundError for
        failed conditions. Any other backend failure propagates as-is and is
        wrapped as IdempotencyPersistenceLayerError by the handler.
    """

    def get_hashed_idempotency_key(self, data: Any, scope: InvocationScope) -> str | None:
        """Derive the idempotency key for a payload.

        Args:
            data: The invocation payload.
            scope: Function name and config for this call.

        Returns:
            ``"{function_name}#{hash}"``, or None when the selected value is
            empty and ``throw_on_no_idempotency_key`` is False.

        Raises:
            IdempotencyKeyError: If the selected value is empty and
                ``throw_on_no_idempotency_key`` is True.
        """
        config = scope.config
        selected = extract_path(data, config.event_key_path)

        if is_missing_key(selected):
            if config.throw_on_no_idempotency_key:
                raise IdempotencyKeyError("No data found to create a hashed idempotency_key")
            logger.warning(
                "idempotency.no_key",
                function_name=scope.function_name,
                event_key_path=config.event_key_path,
            )
            return None

        return f"{scope.function_name}#{compute_hash(selected, config.hash_function)}"

    def get_hashed_payload(self, data: Any, scope: InvocationScope) -> str | None:
        """Hash the part of the payload checked on replay.

        Returns:
            The hash, or None when payload validation is not configured.
        """
        path = scope.config.payload_validation_path
        if path is None:
            return None
        return compute_hash(extract_path(data, path), scope.config.hash_function)

    def validate_payload(
        self, data: Any, record: IdempotencyRecord, scope: InvocationScope
    ) -> None:
        """Check that a stored record was written for the same payload.

        Raises:
            IdempotencyValidationError: If payload validation is configured and
                the stored hash differs from the current payload's hash.
        """
        data_hash = self.get_hashed_payload(data, scope)
        if data_hash is None:
            return
        if record.payload_hash != data_hash:
            raise IdempotencyValidationError(
                "Payload does not match stored record for this event key"
            )

    def _require_key(self, data: Any, scope: InvocationScope) -> str:
        key = self.get_hashed_idempotency_key(data, scope)
        if key is None:
            raise IdempotencyKeyError("No data found to create a hashed idempotency_key")
        return key

    def _expiry_timestamp(self, scope: InvocationScope, now: float) -> int:
        return int(now) + scope.config.expires_after_seconds

    async def save_in_progress(
        self,
        data: Any,
        scope: InvocationScope,
        remaining_time_ms: int | None = None,
    ) -> None:
        """Reserve the key by conditionally creating an INPROGRESS record.

        Args:
            data: The invocation payload.
            scope: Function name and config for this call.
            remaining_time_ms: Time the host grants this invocation. When
                given, it bounds the reservation's in-progress deadline so a
                crashed worker's reservation becomes detectable.

        Raises:
            IdempotencyItemAlreadyExistsError: If a live record blocks the write.
        """
        now = now_seconds()
        now_ms = now_millis()

        in_progress_expiry = None
        if remaining_time_ms is not None:
            in_progress_expiry = now_ms + remaining_time_ms

        record = IdempotencyRecord(
            idempotency_key=self._require_key(data, scope),
            status=RecordStatus.INPROGRESS,
            expiry_timestamp=self._expiry_timestamp(scope, now),
            in_progress_expiry_timestamp=in_progress_expiry,
            payload_hash=self.get_hashed_payload(data, scope),
        )

        logger.debug("persistence.put", key=record.idempotency_key)
        await self._put_record(record, now, now_ms)

    async def save_success(self, data: Any, result: Any, scope: InvocationScope) -> None:
        """Mark the reservation COMPLETED with the result and a fresh expiry.

        Raises:
            IdempotencyItemNotOwnedError: If the record is no longer the
                reservation this invocation made.
        """
        record = IdempotencyRecord(
            idempotency_key=self._require_key(data, scope),
            status=RecordStatus.COMPLETED,
            expiry_timestamp=self._expiry_timestamp(scope, now_seconds()),
            payload_hash=self.get_hashed_payload(data, scope),
            response_data=to_jsonable(result),
        )

        logger.debug("persistence.update", key=record.idempotency_key)
        await self._update_record(record)

    async def delete_record(self, data: Any, scope: InvocationScope) -> None:
        """Remove the record for the payload's key. Absent records are ignored."""
        key = self._require_key(data, scope)
        logger.debug("persistence.delete", key=key)
        await self._delete_record(key)

    async def get_record(self, data: Any, scope: InvocationScope) -> IdempotencyRecord:
        """Look up the current record for the payload's key.

        Raises:
            IdempotencyItemNotFoundError: If no record exists.
        """
        key = self._require_key(data, scope)
        return await self._get_record(key)

    @abstractmethod
    async def _put_record(self, record: IdempotencyRecord, now: float, now_ms: int) -> None:
        """Atomically create ``record`` unless a live record blocks it.

        Args:
            record: The INPROGRESS record to write.
            now: Epoch seconds used to judge global expiry.
            now_ms: Epoch milliseconds used to judge the in-progress deadline.
        """

    @abstractmethod
    async def _update_record(self, record: IdempotencyRecord) -> None:
        """Atomically overwrite the owned INPROGRESS record with ``record``."""

    @abstractmethod
    async def _delete_record(self, idempotency_key: str) -> None:
        """Remove the record for ``idempotency_key`` if present."""

    @abstractmethod
    async def _get_record(self, idempotency_key: str) -> IdempotencyRecord:
        """Return the record for ``idempotency_key``."""
