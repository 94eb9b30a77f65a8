"""ASGI middleware adapter for FastAPI and Starlette applications.

This module makes unsafe HTTP requests idempotent by running the downstream
application through ``execute``. The request becomes the payload:

    {"headers": {"idempotency-key": ...},
     "request": {"method", "path", "query", "body_digest"}}

- The key is the client's ``Idempotency-Key`` header (``headers.<header>``
  unless ``event_key_path`` says otherwise).
- The request shape is validated on replay (``request`` unless
  ``payload_validation_path`` says otherwise), so reusing a key for a
  different request yields 422.
- A downstream response below 500 is stored and replayed for duplicates
  with ``Idempotent-Replay: true``. A 5xx response or a raised exception
  releases the key so the client can retry.

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotent_execution.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

        app = FastAPI()
        app.add_middleware(
            ASGIIdempotencyMiddleware,
            persistence_store=InMemoryPersistenceLayer(),
        )

        @app.post("/api/payments")
        async def create_payment(data: PaymentData):
            return {"status": "success"}
"""

from collections.abc import Awaitable, Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from idempotent_execution.config import IdempotencyConfig
from idempotent_execution.core.handler import execute
from idempotent_execution.core.replay import HttpResponse, replay_response, to_stored_response
from idempotent_execution.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyError,
    IdempotencyInconsistentStateError,
    IdempotencyKeyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotent_execution.hashing import digest_bytes
from idempotent_execution.observability.logging import get_logger
from idempotent_execution.persistence.base import BasePersistenceLayer

logger = get_logger(__name__)


class _ReleasedResponse(Exception):
    """Carries a server error response out of the work so the key is released."""

    def __init__(self, response: HttpResponse) -> None:
        super().__init__(f"Downstream responded with {response.status}")
        self.response = response


def _error_response(status: int, message: str, headers: dict[str, str] | None = None) -> Response:
    return Response(
        content=message.encode(),
        status_code=status,
        headers={"content-type": "text/plain", **(headers or {})},
    )


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotent request handling.

    Attributes:
        persistence_store: Store holding idempotency records
        config: Configuration with HTTP key and validation paths filled in
        function_name: Key prefix separating this application's keys
    """

    def __init__(
        self,
        app: Any,
        persistence_store: BasePersistenceLayer,
        config: IdempotencyConfig | None = None,
        function_name: str = "http",
    ) -> None:
        super().__init__(app)
        self.persistence_store = persistence_store
        self.config = self._http_config(config or IdempotencyConfig())
        self.function_name = function_name

    @staticmethod
    def _http_config(config: IdempotencyConfig) -> IdempotencyConfig:
        update: dict[str, Any] = {}
        if config.event_key_path is None:
            update["event_key_path"] = f"headers.{config.idempotency_header}"
        if config.payload_validation_path is None:
            update["payload_validation_path"] = "request"
        if not update:
            return config
        return IdempotencyConfig.model_validate({**config.model_dump(), **update})

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Run the request through the idempotency handler.

        Args:
            request: The Starlette request object
            call_next: Function to call the next middleware/handler

        Returns:
            The downstream response, a replayed response, or an error response
        """
        enabled_methods = self.config.enabled_methods
        if request.method.upper() not in enabled_methods:
            return await call_next(request)

        header_value = request.headers.get(self.config.idempotency_header)
        key_value = header_value.strip() if header_value else None
        payload = await self._build_payload(request, key_value)

        executed = False

        async def work() -> dict[str, Any]:
            nonlocal executed
            executed = True
            response = await self._read_response(await call_next(request))
            if response.status >= 500:
                raise _ReleasedResponse(response)
            return to_stored_response(response).model_dump(mode="json")

        try:
            stored = await execute(
                payload,
                work,
                persistence_store=self.persistence_store,
                config=self.config,
                function_name=self.function_name,
            )
        except _ReleasedResponse as e:
            return self._convert_response(e.response)
        except IdempotencyKeyError as e:
            return _error_response(400, f"Idempotency key required: {e.message}")
        except IdempotencyValidationError as e:
            return _error_response(
                422, f"Idempotency key reused with a different request: {e.message}"
            )
        except IdempotencyAlreadyInProgressError:
            return _error_response(
                409,
                "Request is currently being processed",
                {"retry-after": "1"},
            )
        except IdempotencyInconsistentStateError as e:
            return _error_response(409, f"Idempotency record in inconsistent state: {e.message}")
        except IdempotencyPersistenceLayerError as e:
            logger.error("asgi.persistence_error", error=str(e))
            return _error_response(500, "Idempotency store unavailable")
        except IdempotencyError as e:
            return _error_response(500, f"Idempotency error: {e.message}")

        return self._convert_response(replay_response(stored, key_value, is_replay=not executed))

    async def _build_payload(self, request: Request, key_value: str | None) -> dict[str, Any]:
        body = await request.body()
        return {
            "headers": {self.config.idempotency_header: key_value},
            "request": {
                "method": request.method.upper(),
                "path": request.url.path,
                "query": request.url.query or "",
                "body_digest": digest_bytes(body, self.config.hash_function),
            },
        }

    async def _read_response(self, response: Response) -> HttpResponse:
        """Drain a downstream response into memory."""
        body = b""
        if hasattr(response, "body_iterator"):
            async for chunk in response.body_iterator:
                if isinstance(chunk, str):
                    body += chunk.encode("utf-8")
                else:
                    body += bytes(chunk)
        else:
            body = bytes(getattr(response, "body", b""))

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=body,
        )

    def _convert_response(self, response: HttpResponse) -> Response:
        return Response(
            content=response.body,
            status_code=response.status,
            headers=response.headers,
        )
