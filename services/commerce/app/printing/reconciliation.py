"""Reconcile generated content length with the vendor's page-count rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import fitz

from inkwell_observability import record_reconciliation
from inkwell_schemas import ProductProfile
from inkwell_schemas.exceptions import PageBudgetExceeded, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Reconciliation:
    """Final interior page count and how it was reached.

    ``fallback`` means the content length was unknown and the product's
    default page count was used instead.
    """

    page_count: int
    content_pages: Optional[int]
    padding_pages: int
    fallback: bool = False

    @property
    def padded(self) -> bool:
        return self.padding_pages > 0


def reconcile_page_count(content_pages: Optional[int], profile: ProductProfile) -> Reconciliation:
    """Return the printable page count for ``content_pages`` under ``profile``.

    Pads to the product minimum, then to an even number of pages. Anything over
    the product maximum is rejected rather than truncated.
    """

    if content_pages is None:
        page_count = profile.default_page_count
        if page_count % 2:
            page_count += 1
        logger.warning(
            "Content page count unknown, using product default",
            extra={"product_id": profile.id, "page_count": page_count},
        )
        result = Reconciliation(page_count=page_count, content_pages=None, padding_pages=0, fallback=True)
        record_reconciliation(padded=False, fallback=True)
        return result

    if content_pages < 0:
        raise ValidationError(f"Content page count cannot be negative: {content_pages}")

    page_count = max(content_pages, profile.min_page_count)
    if page_count % 2:
        page_count += 1
    if page_count > profile.max_page_count:
        raise PageBudgetExceeded(page_count, profile.max_page_count)

    result = Reconciliation(
        page_count=page_count,
        content_pages=content_pages,
        padding_pages=page_count - content_pages,
    )
    record_reconciliation(padded=result.padded, fallback=False)
    return result


def finalize_interior(
    pdf_path: str | Path,
    profile: ProductProfile,
    content_pages: Optional[int] = None,
) -> Tuple[Reconciliation, Path]:
    """Reconcile ``pdf_path`` in place and return the result with the path.

    Blank pages copy the size of the document's last page. When
    ``content_pages`` is omitted it is read from the PDF itself.
    """

    path = Path(pdf_path)
    doc = fitz.open(path)
    try:
        if content_pages is None:
            # An empty render gives no usable count; the product default applies.
            content_pages = doc.page_count or None
        reconciliation = reconcile_page_count(content_pages, profile)
        missing = reconciliation.page_count - doc.page_count
        if missing > 0:
            if doc.page_count:
                last = doc[-1].rect
                width, height = last.width, last.height
            else:
                width, height = _points(profile.trim_width_mm), _points(profile.trim_height_mm)
            for _ in range(missing):
                doc.new_page(width=width, height=height)
            tmp = path.with_suffix(".tmp.pdf")
            doc.save(str(tmp), garbage=3, deflate=True)
            doc.close()
            tmp.replace(path)
    finally:
        if not doc.is_closed:
            doc.close()

    logger.info(
        "Interior reconciled",
        extra={
            "product_id": profile.id,
            "page_count": reconciliation.page_count,
            "padding_pages": reconciliation.padding_pages,
        },
    )
    return reconciliation, path


def _points(mm: float) -> float:
    return mm * 72 / 25.4
