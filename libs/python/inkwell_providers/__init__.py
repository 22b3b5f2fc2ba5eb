"""Unified provider abstraction for Gemini, OpenAI and the offline mock."""

from .base import (
    ImageRequest,
    ImageResponse,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
)
from .config import ProviderConfig, ProviderSettings, load_provider_config
from .exceptions import GenerationFailed, ProviderConfigError, ProviderError
from .factory import ProviderFactory
from .mock import MockProvider

__all__ = [
    "ImageRequest",
    "ImageResponse",
    "LLMProvider",
    "ProviderCapabilities",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderConfig",
    "ProviderSettings",
    "load_provider_config",
    "GenerationFailed",
    "ProviderConfigError",
    "ProviderError",
    "ProviderFactory",
    "MockProvider",
]
