"""Decorators that make async functions idempotent.

Two thin wrappers around ``execute``. They only marshal the invocation into
a payload and a remaining-time budget; every idempotency decision is made by
the handler.

Examples:
    An event handler, keyed on the whole event::

        from idempotent_execution.decorators import idempotent
        from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

        store = InMemoryPersistenceLayer()

        @idempotent(persistence_store=store)
        async def handler(event, context):
            return {"order_id": event["order_id"], "status": "created"}

    Any async function, keyed on one keyword argument::

        from idempotent_execution.decorators import idempotent_function

        @idempotent_function(data_keyword_argument="order", persistence_store=store)
        async def charge(order: Order) -> dict:
            ...

        await charge(order=Order(id=1, amount=100))
"""

import functools
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from idempotent_execution.config import IdempotencyConfig
from idempotent_execution.core.handler import execute
from idempotent_execution.hashing import to_jsonable
from idempotent_execution.persistence.base import BasePersistenceLayer

T = TypeVar("T")


def _function_name(function: Callable[..., Any]) -> str:
    return f"{function.__module__}.{function.__qualname__}"


def _remaining_time_ms(context: Any) -> int | None:
    """Read the remaining time budget from a host invocation context, if it has one."""
    getter = getattr(context, "get_remaining_time_in_millis", None)
    if getter is None:
        return None
    return int(getter())


def _require_coroutine_function(function: Callable[..., Any]) -> None:
    if not inspect.iscoroutinefunction(function):
        raise TypeError(f"{_function_name(function)} must be an async function")


def idempotent(
    persistence_store: BasePersistenceLayer,
    config: IdempotencyConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Make an ``async def handler(event, context)`` idempotent on its event.

    The event is the payload; ``config.event_key_path`` selects the part of
    it that forms the key. When the context exposes
    ``get_remaining_time_in_millis()``, that budget bounds the reservation.

    Args:
        persistence_store: Store holding idempotency records.
        config: Idempotency policy.

    Raises:
        TypeError: If the decorated function is not async.
    """

    def decorator(handler: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        _require_coroutine_function(handler)
        function_name = _function_name(handler)

        @functools.wraps(handler)
        async def wrapper(event: Any, context: Any = None, *args: Any, **kwargs: Any) -> T:
            return await execute(
                event,
                functools.partial(handler, event, context, *args, **kwargs),
                persistence_store=persistence_store,
                config=config,
                function_name=function_name,
                remaining_time_ms=_remaining_time_ms(context),
            )

        return wrapper

    return decorator


def idempotent_function(
    data_keyword_argument: str,
    persistence_store: BasePersistenceLayer,
    config: IdempotencyConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Make any async function idempotent on one of its keyword arguments.

    Pydantic models and dataclasses passed as that argument are converted to
    plain data before hashing and storing.

    Args:
        data_keyword_argument: Name of the keyword argument used as payload.
        persistence_store: Store holding idempotency records.
        config: Idempotency policy.

    Raises:
        TypeError: If the decorated function is not async.
    """

    def decorator(function: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        _require_coroutine_function(function)
        function_name = _function_name(function)

        @functools.wraps(function)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            if data_keyword_argument not in kwargs:
                raise RuntimeError(
                    f"Unable to extract '{data_keyword_argument}' from keyword arguments. "
                    f"Pass it as a keyword argument when calling {function.__qualname__}"
                )

            return await execute(
                to_jsonable(kwargs[data_keyword_argument]),
                functools.partial(function, *args, **kwargs),
                persistence_store=persistence_store,
                config=config,
                function_name=function_name,
            )

        return wrapper

    return decorator
