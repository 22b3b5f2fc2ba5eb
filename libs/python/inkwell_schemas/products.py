"""Catalogue of printable products and their vendor page-count constraints."""

from __future__ import annotations

from typing import Optional

from .enums import BookType
from .models.vendor import ProductProfile

MM_PER_INCH = 25.4

PRODUCT_PROFILES: dict[str, ProductProfile] = {
    profile.id: profile
    for profile in (
        ProductProfile(
            id="NOVBOOK_BW_5.25x8.25",
            name="Standard Novella B&W (5.25x8.25)",
            sku="0525X0825BWSTDPB060UW444MXX",
            book_type=BookType.TEXT_BOOK,
            trim_width_mm=round(5.25 * MM_PER_INCH, 2),
            trim_height_mm=round(8.25 * MM_PER_INCH, 2),
            min_page_count=24,
            max_page_count=800,
            default_page_count=100,
            words_per_page=300,
            word_target_min=800,
            word_target_max=1200,
            total_chapters=15,
            bleed_mm=3.2,
            safe_margin_mm=6.4,
            is_default=True,
        ),
        ProductProfile(
            id="PICBOOK_A4_LANDSCAPE_HARDCOVER",
            name="A4 Landscape Hardcover Picture Book",
            sku="1169X0827FCPRECW080CW444MXX",
            book_type=BookType.PICTURE_BOOK,
            trim_width_mm=round(11.94 * MM_PER_INCH, 2),
            trim_height_mm=round(8.52 * MM_PER_INCH, 2),
            min_page_count=24,
            max_page_count=800,
            default_page_count=24,
            words_per_page=60,
            word_target_min=10,
            word_target_max=80,
            total_chapters=20,
            bleed_mm=3.175,
            safe_margin_mm=6.35,
            is_default=True,
        ),
    )
}


def get_product_profile(product_id: Optional[str], book_type: BookType) -> ProductProfile:
    """Return the named profile, or the default one for ``book_type``.

    A profile registered for another book type is never returned.
    """

    if product_id:
        profile = PRODUCT_PROFILES.get(product_id)
        if profile is not None and profile.book_type == book_type:
            return profile
    for profile in PRODUCT_PROFILES.values():
        if profile.book_type == book_type and profile.is_default:
            return profile
    raise LookupError(f"No default product profile for {book_type.value}")
