from .cover import SPINE_BANDS, CoverSpread, size_cover_spread, spine_width_mm
from .reconciliation import Reconciliation, finalize_interior, reconcile_page_count

__all__ = [
    "SPINE_BANDS",
    "CoverSpread",
    "size_cover_spread",
    "spine_width_mm",
    "Reconciliation",
    "finalize_interior",
    "reconcile_page_count",
]
