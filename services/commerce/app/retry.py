"""Bounded exponential backoff for calls to external services."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from inkwell_schemas.exceptions import TransientExternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.3


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    description: str = "external call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, retrying transient failures only.

    The delay before retry ``n`` is ``base_delay * 2 ** (n - 1)``. Permanent
    errors propagate immediately; the last transient error propagates once
    the attempts are exhausted.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except TransientExternalError as exc:
            if attempt >= attempts:
                logger.error(
                    "Giving up after transient failures",
                    extra={"operation": description, "attempt": attempt, "error": exc.message},
                )
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Transient failure, retrying",
                extra={"operation": description, "attempt": attempt, "delay_seconds": delay},
            )
            await sleep(delay)
