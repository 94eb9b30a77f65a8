"""Unit tests for the idempotent and idempotent_function decorators."""

import dataclasses
from unittest.mock import patch

import pytest
from pydantic import BaseModel

from idempotent_execution import decorators
from idempotent_execution.config import IdempotencyConfig
from idempotent_execution.decorators import idempotent, idempotent_function
from idempotent_execution.exceptions import IdempotencyAlreadyInProgressError
from idempotent_execution.models import RecordStatus


class LambdaContext:
    """Host context exposing a remaining time budget."""

    def __init__(self, remaining_ms: int) -> None:
        self.remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self) -> int:
        return self.remaining_ms


class Order(BaseModel):
    order_id: str
    amount: int


@dataclasses.dataclass
class Refund:
    refund_id: str


# ============================================================================
# idempotent
# ============================================================================


class TestIdempotent:
    @pytest.mark.asyncio
    async def test_runs_once_per_event(self, store):
        calls = []

        @idempotent(persistence_store=store)
        async def handler(event, context):
            calls.append(event)
            return {"order_id": event["order_id"], "status": "created"}

        first = await handler({"order_id": 1}, None)
        second = await handler({"order_id": 1}, None)

        assert first == second == {"order_id": 1, "status": "created"}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_key_uses_qualified_function_name(self, store):
        @idempotent(persistence_store=store)
        async def handler(event, context):
            return "ok"

        await handler({"order_id": 1})

        (key,) = store._records
        assert key.startswith(f"{__name__}.")
        assert "handler#" in key

    @pytest.mark.asyncio
    async def test_context_budget_sets_deadline(self, store):
        seen = {}

        @idempotent(persistence_store=store)
        async def handler(event, context):
            (raw,) = store._records.values()
            seen.update(raw)
            return "ok"

        await handler({"order_id": 1}, LambdaContext(30_000))

        assert seen["status"] == RecordStatus.INPROGRESS.value
        assert seen["in_progress_expiry_timestamp"] is not None

    @pytest.mark.asyncio
    async def test_extra_arguments_forwarded(self, store):
        @idempotent(persistence_store=store)
        async def handler(event, context, region, *, dry_run=False):
            return [region, dry_run]

        assert await handler({"a": 1}, None, "eu", dry_run=True) == ["eu", True]

    @pytest.mark.asyncio
    async def test_config_event_key_path(self, store):
        calls = []

        @idempotent(persistence_store=store, config=IdempotencyConfig(event_key_path="id"))
        async def handler(event, context):
            calls.append(event)
            return event["note"]

        assert await handler({"id": 7, "note": "first"}) == "first"
        assert await handler({"id": 7, "note": "second"}) == "first"
        assert len(calls) == 1

    def test_requires_async_function(self, store):
        with pytest.raises(TypeError, match="must be an async function"):

            @idempotent(persistence_store=store)
            def handler(event, context):
                return None

    def test_preserves_metadata(self, store):
        @idempotent(persistence_store=store)
        async def handler(event, context):
            """Handle an order."""

        assert handler.__name__ == "handler"
        assert handler.__doc__ == "Handle an order."

    @pytest.mark.asyncio
    async def test_remaining_time_passed_to_execute(self, store):
        @idempotent(persistence_store=store)
        async def handler(event, context):
            return "ok"

        with patch.object(decorators, "execute", wraps=decorators.execute) as spy:
            await handler({"a": 1}, LambdaContext(1234))

        assert spy.await_args.kwargs["remaining_time_ms"] == 1234


# ============================================================================
# idempotent_function
# ============================================================================


class TestIdempotentFunction:
    @pytest.mark.asyncio
    async def test_pydantic_argument(self, store):
        calls = []

        @idempotent_function(data_keyword_argument="order", persistence_store=store)
        async def charge(order: Order) -> dict:
            calls.append(order)
            return {"charged": order.amount}

        assert await charge(order=Order(order_id="o-1", amount=5)) == {"charged": 5}
        assert await charge(order=Order(order_id="o-1", amount=5)) == {"charged": 5}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_dataclass_argument(self, store):
        @idempotent_function(
            data_keyword_argument="refund",
            persistence_store=store,
            config=IdempotencyConfig(event_key_path="refund_id"),
        )
        async def refund(refund: Refund) -> str:
            return refund.refund_id

        assert await refund(refund=Refund(refund_id="r-1")) == "r-1"

    @pytest.mark.asyncio
    async def test_different_arguments_run_separately(self, store):
        calls = []

        @idempotent_function(data_keyword_argument="order", persistence_store=store)
        async def charge(order: Order) -> int:
            calls.append(order)
            return order.amount

        await charge(order=Order(order_id="o-1", amount=5))
        await charge(order=Order(order_id="o-2", amount=5))

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_keyword_argument(self, store):
        @idempotent_function(data_keyword_argument="order", persistence_store=store)
        async def charge(order: Order) -> int:
            return order.amount

        with pytest.raises(RuntimeError, match="Unable to extract 'order'"):
            await charge(Order(order_id="o-1", amount=5))

    @pytest.mark.asyncio
    async def test_live_reservation_rejected(self, store):
        @idempotent_function(data_keyword_argument="order", persistence_store=store)
        async def charge(order: Order) -> int:
            return await charge(order=order)

        with pytest.raises(IdempotencyAlreadyInProgressError):
            await charge(order=Order(order_id="o-1", amount=5))

    def test_requires_async_function(self, store):
        with pytest.raises(TypeError):

            @idempotent_function(data_keyword_argument="order", persistence_store=store)
            def charge(order):
                return None
