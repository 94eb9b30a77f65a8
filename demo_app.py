"""Demo FastAPI application using idempotent execution.

Run with: python demo_app.py
Then try:

    curl -X POST localhost:8000/api/payments -H 'Idempotency-Key: k1' \
        -H 'content-type: application/json' -d '{"amount": 100}'

Repeating the call returns the same payment with ``Idempotent-Replay: true``.
``POST /api/orders/{order_id}/ship`` shows the decorator form, keyed on the
order id instead of a header.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from idempotent_execution.adapters.asgi import ASGIIdempotencyMiddleware
from idempotent_execution.config import IdempotencyConfig
from idempotent_execution.core.cleanup import ExpiredRecordSweeper
from idempotent_execution.decorators import idempotent_function
from idempotent_execution.observability.logging import configure_logging
from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

configure_logging(level="INFO", json_output=False)

store = InMemoryPersistenceLayer()
sweeper = ExpiredRecordSweeper(store, interval_seconds=60)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper.start()
    yield
    await sweeper.stop()


app = FastAPI(
    title="Idempotent Execution Demo",
    description="Demo API showing idempotent request handling",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    ASGIIdempotencyMiddleware,
    persistence_store=store,
    config=IdempotencyConfig(
        enabled_methods=["POST", "PUT", "PATCH"],
        expires_after_seconds=86400,
    ),
)


class PaymentRequest(BaseModel):
    amount: int
    currency: str = "USD"
    description: str | None = None


class Shipment(BaseModel):
    order_id: str
    carrier: str = "ups"


@idempotent_function(
    data_keyword_argument="shipment",
    persistence_store=store,
    config=IdempotencyConfig(event_key_path="order_id", expires_after_seconds=600),
)
async def ship_order(shipment: Shipment) -> dict:
    return {
        "tracking_number": f"1Z{uuid.uuid4().hex[:12].upper()}",
        "order_id": shipment.order_id,
        "carrier": shipment.carrier,
        "shipped_at": datetime.now(UTC).isoformat(),
    }


@app.get("/")
async def root():
    return {
        "name": "Idempotent Execution Demo",
        "endpoints": {
            "POST /api/payments": "Idempotent on the Idempotency-Key header",
            "POST /api/orders/{order_id}/ship": "Idempotent on the order id",
        },
    }


@app.post("/api/payments", status_code=201)
async def create_payment(payment: PaymentRequest):
    return {
        "id": f"pay_{uuid.uuid4().hex[:16]}",
        "status": "succeeded",
        "amount": payment.amount,
        "currency": payment.currency,
        "created_at": datetime.now(UTC).isoformat(),
    }


@app.post("/api/orders/{order_id}/ship")
async def ship(order_id: str):
    # No Idempotency-Key header here, so only the decorator applies
    return await ship_order(shipment=Shipment(order_id=order_id))


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
