"""Print vendor and payment processor payloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..enums import BookType, ShippingLevel
from .order import ShippingAddress


class ProductProfile(BaseModel):
    """Physical constraints the vendor enforces for one printable product."""

    id: str
    name: str
    sku: str
    book_type: BookType
    trim_width_mm: float = Field(..., gt=0)
    trim_height_mm: float = Field(..., gt=0)
    min_page_count: int = Field(..., ge=2)
    max_page_count: int = Field(..., ge=2)
    default_page_count: int = Field(..., ge=2)
    words_per_page: int = Field(300, ge=1)
    word_target_min: int = Field(800, ge=1)
    word_target_max: int = Field(1200, ge=1)
    total_chapters: int = Field(15, ge=1)
    bleed_mm: float = Field(3.175, ge=0)
    safe_margin_mm: float = Field(6.35, ge=0)
    is_default: bool = False


class ShippingOption(BaseModel):
    level: str
    total_cost_incl_tax: Optional[Decimal] = None


class CostQuote(BaseModel):
    total_cost_incl_tax: Decimal
    currency: str
    shipping_options: list[ShippingOption] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class CoverDimensions(BaseModel):
    width_mm: float = Field(..., gt=0)
    height_mm: float = Field(..., gt=0)


class PrintJobLineItem(BaseModel):
    sku: str
    page_count: int
    cover_url: str
    interior_url: str
    title: Optional[str] = None
    quantity: int = Field(1, ge=1)


class PrintJobRequest(BaseModel):
    external_id: str
    shipping_address: ShippingAddress
    line_items: list[PrintJobLineItem]
    shipping_level: ShippingLevel = ShippingLevel.MAIL
    contact_email: Optional[str] = None


class PrintJobResult(BaseModel):
    job_id: str
    status: str


class PaymentSession(BaseModel):
    session_id: str
    redirect_url: str
