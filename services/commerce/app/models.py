"""Request and response bodies for the commerce API."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from inkwell_schemas import OrderStatus, PriceBreakdown, ShippingLevel


class CheckoutRequest(BaseModel):
    shipping_address: Optional[dict[str, Any]] = Field(
        None, description="Required for text books; picture books collect it at payment."
    )
    shipping_level: ShippingLevel = ShippingLevel.MAIL


class CheckoutResponse(BaseModel):
    order_id: UUID
    session_id: str
    redirect_url: str
    price: PriceBreakdown
    page_count: int
    is_fallback: bool


class OrderSummary(BaseModel):
    id: UUID
    project_id: UUID
    status: OrderStatus
    price: PriceBreakdown
    actual_page_count: int
    is_fallback: bool
    vendor_job_id: Optional[str] = None
    vendor_job_status: Optional[str] = None
    error_message: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None
