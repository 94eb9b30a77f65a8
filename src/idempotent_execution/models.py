"""Core type definitions for idempotent execution.

This module provides the persisted record for one idempotency key, its
status enum, the per-call invocation scope, and the stored HTTP response
used by the ASGI adapter.

Timestamps follow a single convention throughout the package:

- ``expiry_timestamp`` is epoch **seconds**.
- ``in_progress_expiry_timestamp`` is epoch **milliseconds**, and is always
  compared against the current wall clock in milliseconds.

Examples:
    Creating a reservation record::

        import time
        from idempotent_execution.models import IdempotencyRecord, RecordStatus

        now = time.time()
        record = IdempotencyRecord(
            idempotency_key="create_order#5d41402abc4b2a76b9719d911017c592",
            status=RecordStatus.INPROGRESS,
            expiry_timestamp=int(now) + 3600,
            in_progress_expiry_timestamp=int(now * 1000) + 30_000,
        )

    Checking a record at read time::

        if record.is_expired():
            ...
        elif record.get_status() == RecordStatus.COMPLETED:
            return record.response_data
"""

import base64
import json
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from idempotent_execution.config import IdempotencyConfig


class RecordStatus(str, Enum):
    """Lifecycle phase of an idempotency record.

    Attributes:
        INPROGRESS: A reservation is held and the work is running.
        COMPLETED: The work finished and its result is stored.
        EXPIRED: The record is stale and no longer blocks a reservation.
    """

    INPROGRESS = "INPROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


def now_seconds() -> float:
    """Current wall clock in epoch seconds."""
    return time.time()


def now_millis() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


class IdempotencyRecord(BaseModel):
    """Persisted state of one idempotency key.

    Expiry is never cached on the model. ``is_expired`` and ``get_status``
    evaluate against the clock each time they are called.

    Attributes:
        idempotency_key: Deterministic key, ``"{function_name}#{hash}"``.
        status: Stored lifecycle phase.
        expiry_timestamp: Epoch seconds after which the record is stale.
        in_progress_expiry_timestamp: Epoch milliseconds bounding how long an
            INPROGRESS reservation is trusted.
        payload_hash: Hash of the validated part of the payload.
        response_data: Result of a COMPLETED execution.
    """

    idempotency_key: str = Field(
        ...,
        description="Deterministic key derived from function name and payload hash",
        min_length=1,
        examples=["create_order#5d41402abc4b2a76b9719d911017c592"],
    )
    status: RecordStatus = Field(
        ...,
        description="Stored lifecycle phase of the record",
    )
    expiry_timestamp: int | None = Field(
        default=None,
        description="Epoch seconds after which the record is considered stale",
        examples=[1735689600],
    )
    in_progress_expiry_timestamp: int | None = Field(
        default=None,
        description="Epoch milliseconds bounding an INPROGRESS reservation",
        examples=[1735686030000],
    )
    payload_hash: str | None = Field(
        default=None,
        description="Hash of the validated payload subset",
    )
    response_data: Any = Field(
        default=None,
        description="Serialized result of a COMPLETED execution",
    )

    def is_expired(self, now: float | None = None) -> bool:
        """Whether the record is past its global expiry.

        Args:
            now: Epoch seconds to evaluate against (defaults to the clock).

        Returns:
            True iff ``now >= expiry_timestamp``. A record without an expiry
            never expires.
        """
        if self.expiry_timestamp is None:
            return False
        current = now_seconds() if now is None else now
        return current >= self.expiry_timestamp

    def is_in_progress_expired(self, now_ms: int | None = None) -> bool:
        """Whether the reservation's own deadline has lapsed.

        Args:
            now_ms: Epoch milliseconds to evaluate against.

        Returns:
            True iff a deadline is set and ``now_ms >= in_progress_expiry_timestamp``.
        """
        if self.in_progress_expiry_timestamp is None:
            return False
        current = now_millis() if now_ms is None else now_ms
        return current >= self.in_progress_expiry_timestamp

    def get_status(self, now: float | None = None) -> RecordStatus:
        """Effective status at read time: EXPIRED when past expiry, else stored status."""
        if self.is_expired(now):
            return RecordStatus.EXPIRED
        return self.status

    def is_live_reservation_blocker(self, now: float, now_ms: int) -> bool:
        """Whether this record must block a new conditional create.

        A record stops blocking once it is globally expired, or once it is an
        INPROGRESS reservation whose deadline lapsed.
        """
        if self.is_expired(now):
            return False
        if self.status == RecordStatus.INPROGRESS and self.is_in_progress_expired(now_ms):
            return False
        return True

    def response_json_as_dict(self) -> dict[str, Any] | None:
        """Stored result as a dict.

        A result stored as a JSON string is decoded. Returns None when no
        result is stored or the result is not a JSON object.
        """
        data = self.response_data
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except ValueError:
                return None
        return dict(data) if isinstance(data, dict) else None


class InvocationScope(BaseModel):
    """Per-call scope shared between the handler and the persistence layer.

    The persistence layer holds no per-function state. Everything it needs
    to derive keys and expiries for one call travels in this value.

    Attributes:
        function_name: Identity of the wrapped function, used as key prefix.
        config: Idempotency policy for this call.
    """

    function_name: str = Field(default="", description="Key prefix for this function")
    config: IdempotencyConfig = Field(default_factory=IdempotencyConfig)

    model_config = {"frozen": True}


class StoredResponse(BaseModel):
    """An HTTP response stored as the result of an idempotent request.

    The body is base64-encoded so the stored result stays JSON-serializable
    for any remote store.

    Attributes:
        status: HTTP status code (e.g., 200, 201, 400).
        headers: HTTP response headers as key-value pairs.
        body_b64: Base64-encoded response body.
    """

    status: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201, 400, 500],
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP response headers",
        examples=[{"content-type": "application/json"}],
    )
    body_b64: str = Field(
        ...,
        description="Base64-encoded response body",
        examples=["eyJyZXN1bHQiOiAic3VjY2VzcyJ9"],
    )

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except Exception as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes.

        Examples:
            >>> response = StoredResponse(status=200, headers={}, body_b64="SGVsbG8=")
            >>> response.get_body_bytes()
            b'Hello'
        """
        return base64.b64decode(self.body_b64)
