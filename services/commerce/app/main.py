"""FastAPI entrypoint for checkout, payment webhooks and order tracking."""

from __future__ import annotations

import logging
import os
from typing import NoReturn
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from inkwell_observability import log_context, setup_fastapi_metrics, setup_logging
from inkwell_schemas import BookType, Order
from inkwell_schemas.exceptions import PermanentExternalError, PipelineError
from inkwell_store import OrderRepository

from .checkout import CheckoutCoordinator
from .deps import get_runtime
from .fulfillment import FulfillmentHandler
from .models import CheckoutRequest, CheckoutResponse, OrderSummary, WebhookAck

SERVICE_NAME = "commerce"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Owner-Id"
SIGNATURE_HEADER = "Stripe-Signature"
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("INKWELL_ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

app = FastAPI(title="Inkwell Commerce", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# The print vendor downloads interiors and covers from here.
app.mount(
    "/artifacts",
    StaticFiles(directory=os.getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage")), check_dir=False),
    name="artifacts",
)


@app.on_event("startup")
async def startup() -> None:
    await get_runtime().open()


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_runtime().close()


def get_checkout() -> CheckoutCoordinator:
    return get_runtime().checkout


def get_fulfillment() -> FulfillmentHandler:
    return get_runtime().fulfillment


def get_orders() -> OrderRepository:
    return get_runtime().orders


async def current_owner(x_owner_id: str | None = Header(None, alias=OWNER_HEADER)) -> str:
    if not x_owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_owner_id


def _raise_http(exc: PipelineError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


def _order_summary(order: Order) -> OrderSummary:
    return OrderSummary.model_validate(order.model_dump())


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post(
    "/orders/{book_type}/{project_id}/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["orders"],
)
async def checkout(
    book_type: BookType,
    project_id: UUID,
    payload: CheckoutRequest,
    owner_id: str = Depends(current_owner),
    coordinator: CheckoutCoordinator = Depends(get_checkout),
) -> CheckoutResponse:
    try:
        result = await coordinator.checkout(
            book_type, project_id, owner_id, payload.shipping_address, payload.shipping_level
        )
    except PipelineError as exc:
        _raise_http(exc)
    return CheckoutResponse.model_validate(result.model_dump())


@app.get("/orders/{order_id}", response_model=OrderSummary, tags=["orders"])
async def get_order(
    order_id: UUID,
    owner_id: str = Depends(current_owner),
    orders: OrderRepository = Depends(get_orders),
) -> OrderSummary:
    order = await orders.get(order_id)
    if order is None or order.owner_id != owner_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return _order_summary(order)


@app.post("/orders/{order_id}/refresh", response_model=OrderSummary, tags=["orders"])
async def refresh_order(
    order_id: UUID,
    owner_id: str = Depends(current_owner),
    orders: OrderRepository = Depends(get_orders),
    handler: FulfillmentHandler = Depends(get_fulfillment),
) -> OrderSummary:
    existing = await orders.get(order_id)
    if existing is None or existing.owner_id != owner_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    with log_context(order_id=str(order_id)):
        try:
            order = await handler.refresh_print_job_status(order_id)
        except PipelineError as exc:
            _raise_http(exc)
    return _order_summary(order)


@app.post("/webhooks/payments", response_model=WebhookAck, tags=["webhooks"])
async def payment_webhook(
    request: Request,
    signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    handler: FulfillmentHandler = Depends(get_fulfillment),
) -> WebhookAck:
    payload = await request.body()
    try:
        outcome = await handler.handle_event(payload, signature)
    except PermanentExternalError as exc:
        logger.warning("Payment webhook rejected", extra={"error": exc.message})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    return WebhookAck(received=True, outcome=outcome.outcome)
