"""Cover spread sizing for casewrap and perfect-bound products."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Optional

from inkwell_schemas import CoverDimensions, ProductProfile

from .reconciliation import Reconciliation

MM_PER_INCH = 25.4

# Upper page count of each band and the spine width (inches) the vendor
# publishes for it. Widths never decrease as the page count grows.
SPINE_BANDS: tuple[tuple[int, float], ...] = (
    (84, 0.25),
    (140, 0.5),
    (168, 0.625),
    (194, 0.688),
    (222, 0.75),
    (250, 0.813),
    (278, 0.875),
    (306, 0.938),
    (334, 1.0),
    (360, 1.063),
    (388, 1.125),
    (416, 1.188),
    (444, 1.25),
    (472, 1.313),
    (500, 1.375),
    (528, 1.438),
    (556, 1.5),
    (582, 1.563),
    (610, 1.625),
    (638, 1.688),
    (666, 1.75),
    (694, 1.813),
    (722, 1.875),
    (750, 1.938),
    (778, 2.0),
    (800, 2.063),
)
_BAND_LIMITS = [limit for limit, _ in SPINE_BANDS]


@dataclass(frozen=True, slots=True)
class CoverSpread:
    """Full wraparound cover: back, spine and front plus bleed on every edge."""

    width_mm: float
    height_mm: float
    spine_mm: float
    from_vendor: bool = False


def spine_width_mm(page_count: int) -> float:
    if page_count < 1:
        raise ValueError("page_count must be positive")
    index = bisect.bisect_left(_BAND_LIMITS, page_count)
    if index >= len(SPINE_BANDS):
        raise ValueError(f"No spine band covers {page_count} pages")
    return round(SPINE_BANDS[index][1] * MM_PER_INCH, 2)


def size_cover_spread(
    profile: ProductProfile,
    interior: Reconciliation,
    vendor_dimensions: Optional[CoverDimensions] = None,
) -> CoverSpread:
    """Size the cover for an already reconciled interior.

    Published vendor dimensions win over the local band table.
    """

    spine = spine_width_mm(interior.page_count)
    if vendor_dimensions is not None:
        width, height = vendor_dimensions.width_mm, vendor_dimensions.height_mm
        # Cover spreads are always landscape.
        if height > width:
            width, height = height, width
        return CoverSpread(width_mm=width, height_mm=height, spine_mm=spine, from_vendor=True)
    width = 2 * profile.trim_width_mm + spine + 2 * profile.bleed_mm
    height = profile.trim_height_mm + 2 * profile.bleed_mm
    return CoverSpread(width_mm=round(width, 2), height_mm=round(height, 2), spine_mm=spine)
