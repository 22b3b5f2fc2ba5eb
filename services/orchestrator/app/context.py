"""Context trimming helpers to keep prompts within safe token budgets."""

from __future__ import annotations

import os
import re
from typing import Iterable, Tuple

DEFAULT_TOKEN_LIMIT = int(os.getenv("CONTEXT_TOKEN_LIMIT", "12000"))

CHAPTER_SEPARATOR = "\n\n---\n\n"

_BRACKETED_NOTE = re.compile(r"\[[^\]]{0,200}\]")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def summarise_prompt(prompt: str, token_limit: int | None = None) -> Tuple[str, bool]:
    """Trim long prompts to stay within the configured soft token limit.

    Args:
        prompt: The original prompt text.
        token_limit: Optional override for the maximum token budget.

    Returns:
        A tuple of ``(possibly_trimmed_prompt, was_trimmed)``.
    """

    if not prompt:
        return prompt, False

    limit = max(token_limit or DEFAULT_TOKEN_LIMIT, 256)
    # Rough heuristic: 1 token ~ 4 characters for mixed English text.
    if len(prompt) // 4 <= limit:
        return prompt, False

    max_chars = limit * 4
    # Keep more of the tail: the most recent chapter matters most for continuity.
    head_length = max_chars // 4
    tail_length = max_chars - head_length

    head = prompt[:head_length].strip()
    tail = prompt[-tail_length:].strip()

    trimmed_prompt = (
        f"[earlier chapters trimmed to ~{limit} tokens]\n"
        f"{head}\n"
        "\n...\n\n"
        f"{tail}"
    )
    return trimmed_prompt, True


def sanitise_chapter_text(text: str) -> str:
    """Drop bracketed author notes and collapse runs of blank lines."""

    cleaned = _BRACKETED_NOTE.sub("", text or "")
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


def join_previous_chapters(chapters: Iterable[str], token_limit: int | None = None) -> Tuple[str, bool]:
    joined = CHAPTER_SEPARATOR.join(
        cleaned for cleaned in (sanitise_chapter_text(text) for text in chapters) if cleaned
    )
    return summarise_prompt(joined, token_limit=token_limit)


__all__ = [
    "CHAPTER_SEPARATOR",
    "DEFAULT_TOKEN_LIMIT",
    "join_previous_chapters",
    "sanitise_chapter_text",
    "summarise_prompt",
]
