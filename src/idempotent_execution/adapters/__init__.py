"""Framework adapters for idempotent execution.

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.

The adapters convert framework requests into handler payloads and stored
results back into framework responses.
"""

from idempotent_execution.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
