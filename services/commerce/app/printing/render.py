"""Print-ready PDF rendering with PyMuPDF."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import fitz

from inkwell_schemas import ProductProfile

from .cover import CoverSpread

logger = logging.getLogger(__name__)

POINTS_PER_MM = 72 / 25.4
BODY_CSS = """
* { font-family: serif; }
h1 { font-size: 18px; text-align: center; margin-bottom: 24px; }
p { font-size: 11px; line-height: 1.45; text-align: justify; margin: 0 0 8px 0; }
"""


@dataclass(slots=True)
class IllustratedPage:
    text: str
    image: Optional[bytes] = None


def mm_to_points(value: float) -> float:
    return value * POINTS_PER_MM


def _trim_rect(profile: ProductProfile) -> fitz.Rect:
    return fitz.Rect(0, 0, mm_to_points(profile.trim_width_mm), mm_to_points(profile.trim_height_mm))


def render_text_interior(
    path: str | Path, title: str, chapters: Sequence[str], profile: ProductProfile
) -> int:
    """Flow every chapter onto trim-sized pages; each chapter starts a new page.

    Returns the number of pages written.
    """

    mediabox = _trim_rect(profile)
    margin = mm_to_points(profile.safe_margin_mm + profile.bleed_mm)
    where = mediabox + (margin, margin, -margin, -margin)
    writer = fitz.DocumentWriter(str(path))
    pages = 0
    try:
        sections = [f"<h1>{html.escape(title)}</h1>"]
        for number, text in enumerate(chapters, start=1):
            paragraphs = "".join(
                f"<p>{html.escape(block.strip())}</p>" for block in text.split("\n\n") if block.strip()
            )
            sections.append(f"<h1>Chapter {number}</h1>{paragraphs}")
        for section in sections:
            story = fitz.Story(html=section, user_css=BODY_CSS)
            more = 1
            while more:
                device = writer.begin_page(mediabox)
                more, _ = story.place(where)
                story.draw(device)
                writer.end_page()
                pages += 1
    finally:
        writer.close()
    logger.info("Text interior rendered", extra={"page_count": pages, "chapter_count": len(chapters)})
    return pages


def render_picture_interior(
    path: str | Path, title: str, pages: Sequence[IllustratedPage], profile: ProductProfile
) -> int:
    """One page per story page: illustration above, text below."""

    rect = _trim_rect(profile)
    margin = mm_to_points(profile.safe_margin_mm + profile.bleed_mm)
    doc = fitz.open()
    try:
        title_page = doc.new_page(width=rect.width, height=rect.height)
        title_page.insert_textbox(
            fitz.Rect(margin, rect.height / 3, rect.width - margin, rect.height - margin),
            title,
            fontsize=32,
            fontname="helv",
            align=fitz.TEXT_ALIGN_CENTER,
        )
        for entry in pages:
            page = doc.new_page(width=rect.width, height=rect.height)
            image_box = fitz.Rect(margin, margin, rect.width - margin, rect.height * 0.72)
            if entry.image:
                page.insert_image(image_box, stream=entry.image, keep_proportion=True)
            else:
                page.draw_rect(image_box, color=None, fill=(0.85, 0.85, 0.85))
            page.insert_textbox(
                fitz.Rect(margin, rect.height * 0.75, rect.width - margin, rect.height - margin),
                entry.text,
                fontsize=16,
                fontname="helv",
                align=fitz.TEXT_ALIGN_CENTER,
            )
        count = doc.page_count
        doc.save(str(path), garbage=3, deflate=True)
    finally:
        doc.close()
    logger.info("Picture interior rendered", extra={"page_count": count})
    return count


def render_cover(
    path: str | Path,
    spread: CoverSpread,
    title: str,
    profile: ProductProfile,
    image: Optional[bytes] = None,
) -> None:
    width, height = mm_to_points(spread.width_mm), mm_to_points(spread.height_mm)
    margin = mm_to_points(profile.safe_margin_mm + profile.bleed_mm)
    front_left = (width + mm_to_points(spread.spine_mm)) / 2
    doc = fitz.open()
    try:
        page = doc.new_page(width=width, height=height)
        page.draw_rect(page.rect, color=None, fill=(0.19, 0.19, 0.19))
        if image:
            page.insert_image(
                fitz.Rect(front_left, 0, width, height), stream=image, keep_proportion=False
            )
        page.insert_textbox(
            fitz.Rect(front_left + margin, margin, width - margin, height / 3),
            title,
            fontsize=28,
            fontname="helv",
            color=(1, 1, 1),
            align=fitz.TEXT_ALIGN_CENTER,
        )
        doc.save(str(path), garbage=3, deflate=True)
    finally:
        doc.close()
    logger.info(
        "Cover rendered",
        extra={"width_mm": spread.width_mm, "height_mm": spread.height_mm, "spine_mm": spread.spine_mm},
    )
