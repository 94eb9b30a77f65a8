"""Idempotency handler: the state machine around one invocation.

The handler decides, for one invocation, whether to run the work, serve a
stored result, reject a concurrent duplicate, or retry a reservation that
raced with inconsistent state:

    reserve (INPROGRESS) -> run work -> COMPLETED | record deleted

Mutual exclusion comes only from the persistence layer's conditional
create. There is no in-process lock. A failed reservation is the only
signal of contention, and the record it reveals decides the outcome:

- COMPLETED, not expired: return the stored result, work does not run
- INPROGRESS, deadline not lapsed: IdempotencyAlreadyInProgressError
- INPROGRESS with lapsed deadline, or EXPIRED: inconsistent state, reserve
  again, at most MAX_RETRIES more times

Examples:
    Running work idempotently::

        from idempotent_execution.core.handler import execute
        from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

        store = InMemoryPersistenceLayer()

        async def charge():
            return {"charge_id": "ch_123"}

        result = await execute(
            {"order_id": 42},
            charge,
            persistence_store=store,
            function_name="charge_order",
            remaining_time_ms=30_000,
        )
"""

import inspect
import time
from collections.abc import Callable
from typing import Any

from idempotent_execution.config import MAX_RETRIES, IdempotencyConfig
from idempotent_execution.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotent_execution.models import IdempotencyRecord, InvocationScope, RecordStatus
from idempotent_execution.observability.logging import bound_idempotency_key, get_logger
from idempotent_execution.observability.metrics import (
    decrement_in_progress,
    increment_in_progress,
    record_execution_time,
    record_outcome,
    record_retry,
)
from idempotent_execution.persistence.base import BasePersistenceLayer

logger = get_logger(__name__)

Work = Callable[[], Any]


async def _run_work(work: Work) -> Any:
    result = work()
    if inspect.isawaitable(result):
        result = await result
    return result


class IdempotencyHandler:
    """Orchestrates one idempotent invocation.

    A handler is built per call and discarded afterwards. It holds no state
    shared with other invocations; the persistence store is the only shared
    resource.

    Attributes:
        function: Zero-argument callable performing the work. May return an
            awaitable.
        data: The invocation payload the key is derived from.
        persistence_store: Store holding idempotency records.
        scope: Function name and config for this call.
        remaining_time_ms: Time the host grants this invocation, used to set
            the reservation's in-progress deadline.
    """

    def __init__(
        self,
        function: Work,
        function_payload: Any,
        persistence_store: BasePersistenceLayer,
        config: IdempotencyConfig | None = None,
        function_name: str = "",
        remaining_time_ms: int | None = None,
    ) -> None:
        self.function = function
        self.data = function_payload
        self.persistence_store = persistence_store
        self.scope = InvocationScope(
            function_name=function_name,
            config=config or IdempotencyConfig(),
        )
        self.remaining_time_ms = remaining_time_ms
        self._replayed = False

    async def handle(self) -> Any:
        """Run the invocation through the idempotency state machine.

        Returns:
            The work's result, or the stored result of a previous execution.

        Raises:
            IdempotencyKeyError: No key and ``throw_on_no_idempotency_key`` set.
            IdempotencyValidationError: Stored payload hash does not match.
            IdempotencyAlreadyInProgressError: A live reservation blocks this call.
            IdempotencyInconsistentStateError: Retries exhausted.
            IdempotencyPersistenceLayerError: The store failed.
            Exception: Whatever the work raised, once the reservation is released.
        """
        if self.scope.config.is_disabled():
            logger.debug("idempotency.bypassed", reason="disabled")
            record_outcome("bypassed")
            return await _run_work(self.function)

        try:
            key = self.persistence_store.get_hashed_idempotency_key(self.data, self.scope)
        except IdempotencyValidationError:
            record_outcome("validation_error")
            raise

        if key is None:
            logger.info("idempotency.bypassed", reason="no_key")
            record_outcome("bypassed")
            return await _run_work(self.function)

        with bound_idempotency_key(key, self.scope.function_name):
            try:
                result = await self._handle_with_retries()
            except IdempotencyAlreadyInProgressError:
                record_outcome("in_progress")
                raise
            except IdempotencyInconsistentStateError:
                record_outcome("inconsistent")
                raise
            except IdempotencyValidationError:
                record_outcome("validation_error")
                raise
            except IdempotencyPersistenceLayerError:
                record_outcome("persistence_error")
                raise
            except Exception:
                record_outcome("work_failed")
                raise

        record_outcome("replayed" if self._replayed else "executed")
        return result

    async def _handle_with_retries(self) -> Any:
        attempt = 0
        while True:
            try:
                reserved, response = await self._process_idempotency()
                break
            except IdempotencyInconsistentStateError as e:
                if attempt >= MAX_RETRIES:
                    logger.warning("idempotency.exhausted", attempts=attempt + 1, reason=e.message)
                    raise
                attempt += 1
                record_retry()
                logger.info("idempotency.retry", attempt=attempt, reason=e.message)

        # Work runs outside the retry loop, so its errors are never retried
        if not reserved:
            return response
        return await self.get_function_result()

    async def _process_idempotency(self) -> tuple[bool, Any]:
        """Reserve the key, or decide from the record that blocks it.

        Returns:
            ``(True, None)`` when this call now holds the reservation, or
            ``(False, result)`` with the stored result of a previous execution.
        """
        try:
            await self.persistence_store.save_in_progress(
                self.data,
                self.scope,
                remaining_time_ms=self.remaining_time_ms,
            )
        except IdempotencyItemAlreadyExistsError as e:
            record = e.existing_record or await self._get_idempotency_record()
            return False, self._handle_existing_record(record)
        except IdempotencyValidationError:
            raise
        except Exception as e:
            raise IdempotencyPersistenceLayerError(
                "Failed to save in progress record to idempotency store", e
            ) from e

        logger.debug("idempotency.reserved", remaining_time_ms=self.remaining_time_ms)
        return True, None

    async def _get_idempotency_record(self) -> IdempotencyRecord:
        """Re-read the record that blocked the reservation."""
        try:
            return await self.persistence_store.get_record(self.data, self.scope)
        except IdempotencyItemNotFoundError as e:
            # Deleted between the failed put and this read
            raise IdempotencyInconsistentStateError(
                "Item was removed from the store after the reservation failed."
            ) from e
        except IdempotencyValidationError:
            raise
        except Exception as e:
            raise IdempotencyPersistenceLayerError(
                "Failed to get record from idempotency store", e
            ) from e

    def _handle_existing_record(self, record: IdempotencyRecord) -> Any:
        if record.get_status() != RecordStatus.EXPIRED:
            self.persistence_store.validate_payload(self.data, record, self.scope)

        try:
            response = self.determine_result_from_record(record)
        except IdempotencyAlreadyInProgressError:
            logger.info("idempotency.in_progress")
            raise

        self._replayed = True
        logger.info("idempotency.replayed")
        return response

    @staticmethod
    def determine_result_from_record(
        record: IdempotencyRecord,
        now: float | None = None,
        now_ms: int | None = None,
    ) -> Any:
        """Decide the outcome for an existing record.

        Args:
            record: The record that blocked a reservation.
            now: Epoch seconds to judge global expiry (defaults to the clock).
            now_ms: Epoch milliseconds to judge the in-progress deadline.

        Returns:
            The stored result of a COMPLETED, unexpired record.

        Raises:
            IdempotencyInconsistentStateError: The record is expired, or it is
                INPROGRESS with a lapsed in-progress deadline.
            IdempotencyAlreadyInProgressError: The record is a live INPROGRESS
                reservation.
        """
        status = record.get_status(now)

        if status == RecordStatus.EXPIRED:
            raise IdempotencyInconsistentStateError(
                "Item has expired during processing and may not longer be valid."
            )

        if status == RecordStatus.INPROGRESS:
            if record.is_in_progress_expired(now_ms):
                raise IdempotencyInconsistentStateError(
                    "Item is in progress but the in progress expiry timestamp has expired."
                )
            raise IdempotencyAlreadyInProgressError(
                "There is already an execution in progress with idempotency key: "
                f"{record.idempotency_key}",
                key=record.idempotency_key,
            )

        if status == RecordStatus.COMPLETED:
            return record.response_data

        raise IdempotencyInconsistentStateError(f"Unexpected record status: {status}")

    async def get_function_result(self) -> Any:
        """Run the work and finalize the reservation.

        On success the result is saved as COMPLETED. On failure the
        reservation is deleted so the key can be retried, then the work's
        error propagates unchanged.

        Raises:
            IdempotencyPersistenceLayerError: Saving the result failed, or
                deleting the reservation after a work failure failed. In the
                second case it wraps the delete failure, not the work error.
        """
        increment_in_progress()
        start_time = time.perf_counter()
        try:
            result = await _run_work(self.function)
        except Exception as e:
            try:
                await self.persistence_store.delete_record(self.data, self.scope)
            except Exception as delete_error:
                raise IdempotencyPersistenceLayerError(
                    "Failed to delete record from idempotency store", delete_error
                ) from delete_error
            logger.info("idempotency.released", error_type=type(e).__name__)
            raise
        finally:
            decrement_in_progress()

        execution_time_ms = int((time.perf_counter() - start_time) * 1000)
        record_execution_time(execution_time_ms)

        try:
            await self.persistence_store.save_success(self.data, result, self.scope)
        except Exception as e:
            raise IdempotencyPersistenceLayerError(
                "Failed to update success record to idempotency store", e
            ) from e

        logger.info("idempotency.completed", execution_time_ms=execution_time_ms)
        return result


async def execute(
    payload: Any,
    work: Work,
    *,
    persistence_store: BasePersistenceLayer,
    config: IdempotencyConfig | None = None,
    function_name: str = "",
    remaining_time_ms: int | None = None,
) -> Any:
    """Run ``work`` at most once per idempotency key derived from ``payload``.

    Args:
        payload: Invocation payload; the key is derived from it by the store.
        work: Zero-argument callable performing the work.
        persistence_store: Store holding idempotency records.
        config: Idempotency policy (defaults to IdempotencyConfig()).
        function_name: Identity of the work, used as the key prefix.
        remaining_time_ms: Time the host grants this invocation.

    Returns:
        The work's result or the stored result of a previous execution.

    Examples:
        >>> result = await execute(event, lambda: process(event), persistence_store=store)
    """
    handler = IdempotencyHandler(
        function=work,
        function_payload=payload,
        persistence_store=persistence_store,
        config=config,
        function_name=function_name,
        remaining_time_ms=remaining_time_ms,
    )
    return await handler.handle()
