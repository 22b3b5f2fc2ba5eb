"""Word budgets that keep generated manuscripts under the vendor page ceiling."""

from __future__ import annotations

from inkwell_schemas import ProductProfile

SAFETY_PAGES = 4


def available_content_pages(profile: ProductProfile) -> int:
    """Pages left for prose once front and back matter are reserved."""

    return max(0, profile.max_page_count - SAFETY_PAGES)


def target_word_count(
    profile: ProductProfile,
    *,
    total_units: int,
    chapter_number: int = 1,
    words_written: int = 0,
) -> int:
    """Target length for one chapter.

    The even split is ``(maxPageCount - SAFETY_PAGES) * wordsPerPage / totalUnits``.
    Once earlier chapters exist, whatever budget they left is spread across the
    chapters still to be written. The result is clamped to the profile's
    per-chapter word target.
    """

    if total_units < 1:
        raise ValueError("total_units must be at least 1")
    budget = available_content_pages(profile) * profile.words_per_page
    remaining_units = max(total_units - chapter_number + 1, 1)
    remaining_budget = max(budget - max(words_written, 0), 0)
    share = remaining_budget // remaining_units if words_written else budget // total_units
    return max(profile.word_target_min, min(profile.word_target_max, share))
