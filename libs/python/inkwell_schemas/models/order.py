"""Order and checkout models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..enums import BookType, OrderStatus, ShippingLevel
from ..utils.validators import normalise_country_code


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1)
    street1: str = Field(..., min_length=1)
    street2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state_code: Optional[str] = None
    postcode: str = Field(..., min_length=1)
    country_code: str
    phone_number: Optional[str] = None
    email: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def validate_country(cls, value: str) -> str:
        return normalise_country_code(value)


class PriceBreakdown(BaseModel):
    print_cost: Decimal
    shipping_cost: Decimal = Decimal("0.00")
    margin: Decimal
    total: Decimal
    currency: str = "USD"


class NewOrder(BaseModel):
    """Values persisted when a checkout inserts its pending order."""

    project_id: UUID
    owner_id: str
    book_type: BookType
    price: PriceBreakdown
    interior_url: str
    cover_url: str
    actual_page_count: int = Field(..., ge=1)
    is_fallback: bool = False
    product_sku: str
    shipping_level: ShippingLevel = ShippingLevel.MAIL
    shipping_address: Optional[ShippingAddress] = None


class Order(BaseModel):
    id: UUID
    project_id: UUID
    owner_id: str
    book_type: BookType
    status: OrderStatus = OrderStatus.PENDING
    price: PriceBreakdown
    interior_url: str
    cover_url: str
    actual_page_count: int
    is_fallback: bool = False
    product_sku: str
    shipping_level: ShippingLevel = ShippingLevel.MAIL
    shipping_address: Optional[ShippingAddress] = None
    payment_session_id: Optional[str] = None
    vendor_job_id: Optional[str] = None
    vendor_job_status: Optional[str] = None
    customer_email: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class CheckoutResult(BaseModel):
    order_id: UUID
    session_id: str
    redirect_url: str
    price: PriceBreakdown
    page_count: int
    is_fallback: bool
