"""Conversion between HTTP responses and stored idempotent results.

The ASGI adapter stores a downstream HTTP response as the idempotent result
of a request and replays it for duplicates:

1. ``to_stored_response`` drops volatile headers and base64-encodes the body
   so the result is JSON-serializable for any store
2. ``replay_response`` decodes a stored result and marks it as a replay

Examples:
    Round trip through the handler's stored result::

        stored = to_stored_response(HttpResponse(201, {"content-type": "application/json"}, b"{}"))
        record_data = stored.model_dump(mode="json")

        response = replay_response(record_data, "payment-123")
        # response.headers["Idempotent-Replay"] == "true"
"""

import base64
from typing import Any

from idempotent_execution.models import StoredResponse
from idempotent_execution.utils.headers import strip_volatile_headers, with_replay_headers


class HttpResponse:
    """A plain HTTP response: status, headers and body bytes.

    Attributes:
        status: HTTP status code (e.g., 200, 404, 500)
        headers: Response headers as key-value pairs
        body: Response body as bytes
    """

    def __init__(self, status: int, headers: dict[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body


def to_stored_response(response: HttpResponse) -> StoredResponse:
    """Convert a downstream response into its storable form."""
    return StoredResponse(
        status=response.status,
        headers=strip_volatile_headers(response.headers),
        body_b64=base64.b64encode(response.body).decode("ascii"),
    )


def replay_response(
    stored: StoredResponse | dict[str, Any],
    key: str | None,
    is_replay: bool = True,
) -> HttpResponse:
    """Rebuild an HTTP response from a stored result.

    Args:
        stored: The stored response, or its JSON form as read back from a store.
        key: The idempotency key value the client sent. When None, no
            idempotency headers are added.
        is_replay: False when the response comes from the execution that
            just ran rather than from an earlier one.

    Returns:
        The response, with ``Idempotent-Replay`` and ``Idempotency-Key`` set
        when a key is given.

    Raises:
        pydantic.ValidationError: If the stored data is not a valid stored response.
    """
    if not isinstance(stored, StoredResponse):
        stored = StoredResponse.model_validate(stored)

    headers = strip_volatile_headers(stored.headers)
    if key is not None:
        headers = with_replay_headers(headers, key, is_replay=is_replay)

    return HttpResponse(
        status=stored.status,
        headers=headers,
        body=stored.get_body_bytes(),
    )
