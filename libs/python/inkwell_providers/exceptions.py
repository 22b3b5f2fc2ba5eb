"""Custom exceptions used by provider adapters."""

from __future__ import annotations

BLOCKED = "blocked"
MALFORMED = "malformed"
TRANSPORT = "transport"


class ProviderError(RuntimeError):
    """Base error raised for provider failures."""


class ProviderConfigError(ProviderError):
    """Raised when configuration is missing or invalid."""


class GenerationFailed(ProviderError):
    """Single failure kind for every generation backend problem.

    ``reason`` is one of ``blocked`` (safety filtering), ``malformed``
    (unusable or unparsable output) or ``transport`` (network, timeout,
    rate limit, 5xx). Only transport failures are worth retrying.
    """

    def __init__(self, message: str, *, reason: str = MALFORMED) -> None:
        super().__init__(message)
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.reason == TRANSPORT
