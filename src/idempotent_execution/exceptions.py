"""Custom exceptions for idempotent execution.

This module defines the exception hierarchy used by the handler and the
persistence layer. Callers of ``execute`` only ever see the errors of their
own work, or one of the surfaced idempotency errors below, never a raw
store exception.

Surfaced to callers:
    - IdempotencyValidationError / IdempotencyKeyError
    - IdempotencyAlreadyInProgressError
    - IdempotencyInconsistentStateError (after retries are exhausted)
    - IdempotencyPersistenceLayerError

Internal to the handler/persistence boundary:
    - IdempotencyItemAlreadyExistsError
    - IdempotencyItemNotFoundError
    - IdempotencyItemNotOwnedError

Examples:
    Handling a duplicate that is still running::

        from idempotent_execution.exceptions import IdempotencyAlreadyInProgressError

        try:
            result = await execute(payload, work, persistence_store=store)
        except IdempotencyAlreadyInProgressError:
            # Let the invoking framework retry with backoff
            raise

    Handling a store outage::

        from idempotent_execution.exceptions import IdempotencyPersistenceLayerError

        try:
            result = await execute(payload, work, persistence_store=store)
        except IdempotencyPersistenceLayerError as e:
            logger.error("Idempotency store failure", cause=repr(e.cause))
            raise
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from idempotent_execution.models import IdempotencyRecord


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class IdempotencyValidationError(IdempotencyError):
    """The invocation cannot be checked against its idempotency record.

    Raised when the payload hash stored on a record does not match the hash
    of the current payload, which means the same key is being reused for a
    different payload.
    """


class IdempotencyKeyError(IdempotencyValidationError):
    """No idempotency key could be derived from the payload.

    Only raised when ``throw_on_no_idempotency_key`` is enabled. It is raised
    before any persistence call is made.
    """


class IdempotencyItemAlreadyExistsError(IdempotencyError):
    """A conditional create failed because a live record exists.

    Raised by the persistence layer from ``save_in_progress`` and consumed by
    the handler, which decides from the record whether to replay, reject or
    retry.

    Attributes:
        message: Human-readable error description.
        existing_record: The record that blocked the write, when the store
            returns it with the failed condition.
    """

    def __init__(
        self,
        message: str,
        existing_record: "IdempotencyRecord | None" = None,
    ) -> None:
        """Initialize the error with the conflicting record.

        Args:
            message: Human-readable error description.
            existing_record: The record that blocked the write.
        """
        super().__init__(message)
        self.existing_record = existing_record


class IdempotencyItemNotFoundError(IdempotencyError):
    """A point lookup found no record for the key."""


class IdempotencyItemNotOwnedError(IdempotencyError):
    """A conditional update was rejected because the caller no longer owns the record.

    Raised by ``save_success`` when the record has disappeared, is no longer
    INPROGRESS, or carries a different payload hash.
    """


class IdempotencyAlreadyInProgressError(IdempotencyError):
    """A live INPROGRESS record for the same key blocks this invocation.

    The handler does not retry this error. Retry and backoff belong to the
    invoking framework.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that is in progress.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error description.
            key: The idempotency key that is in progress.
        """
        super().__init__(message)
        self.key = key


class IdempotencyInconsistentStateError(IdempotencyError):
    """The record cannot be reconciled with the expected state transitions.

    Covers an EXPIRED record observed after a failed reservation, and an
    INPROGRESS record whose in-progress deadline lapsed while the record is
    not globally expired. The handler retries this internally up to
    ``MAX_RETRIES`` times before surfacing it.
    """


class IdempotencyPersistenceLayerError(IdempotencyError):
    """An unexpected failure occurred in the persistence store.

    Every store failure during save, update, delete or lookup is wrapped in
    this error at the handler boundary.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception.

    Examples:
        Wrapping a store failure::

            try:
                await store.delete_record(payload, scope)
            except Exception as e:
                raise IdempotencyPersistenceLayerError(
                    "Failed to delete record from idempotency store", e
                ) from e
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        """Initialize the persistence error.

        Args:
            message: Human-readable error description.
            cause: The underlying exception.
        """
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} - ({self.cause})"
