"""Retail pricing for printed books."""

from __future__ import annotations

import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from inkwell_schemas import BookType, CostQuote, PriceBreakdown
from inkwell_schemas.exceptions import PermanentExternalError

CENT = Decimal("0.01")

PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "USD").upper()

PICTURE_BOOK_MARGIN = (Decimal("10.00"), "USD")
TEXT_BOOK_MARGIN = (Decimal("15.00"), "AUD")

# Flat shipping charged on text books, by destination band.
FLAT_SHIPPING_CURRENCY = "AUD"
FLAT_SHIPPING_RATES: dict[str, Decimal] = {
    "US": Decimal("25.00"),
    "CA": Decimal("25.00"),
    "MX": Decimal("25.00"),
    "AU": Decimal("15.00"),
    "GB": Decimal("15.00"),
}
DEFAULT_FLAT_SHIPPING = Decimal("35.00")

EXCHANGE_RATES: dict[tuple[str, str], Decimal] = {
    ("AUD", "USD"): Decimal("0.66"),
    ("USD", "AUD"): Decimal("1") / Decimal("0.66"),
}


def convert(amount: Decimal, source: str, target: str) -> Decimal:
    source, target = source.upper(), target.upper()
    if source == target:
        return amount
    rate = EXCHANGE_RATES.get((source, target))
    if rate is None:
        raise PermanentExternalError(f"No exchange rate from {source} to {target}")
    return amount * rate


def flat_shipping_rate(country_code: str) -> Decimal:
    return FLAT_SHIPPING_RATES.get(country_code.upper(), DEFAULT_FLAT_SHIPPING)


def price_order(
    book_type: BookType,
    quote: CostQuote,
    *,
    country_code: Optional[str] = None,
    currency: str = PAYMENT_CURRENCY,
) -> PriceBreakdown:
    """Picture books cost print + margin; text books add flat shipping by country band."""

    print_cost = _money(convert(quote.total_cost_incl_tax, quote.currency, currency))
    if book_type is BookType.PICTURE_BOOK:
        shipping = Decimal("0.00")
        margin = _money(convert(*PICTURE_BOOK_MARGIN, currency))
    elif book_type is BookType.TEXT_BOOK:
        if not country_code:
            raise PermanentExternalError("Text book pricing needs a destination country")
        shipping = _money(convert(flat_shipping_rate(country_code), FLAT_SHIPPING_CURRENCY, currency))
        margin = _money(convert(*TEXT_BOOK_MARGIN, currency))
    else:  # pragma: no cover - exhaustive over BookType
        raise PermanentExternalError(f"Unsupported book type {book_type}")
    return PriceBreakdown(
        print_cost=print_cost,
        shipping_cost=shipping,
        margin=margin,
        total=print_cost + shipping + margin,
        currency=currency,
    )


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
