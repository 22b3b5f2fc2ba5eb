"""Factory utilities for instantiating providers."""

from __future__ import annotations

import os
from typing import Dict, Type

from .base import LLMProvider
from .config import PROVIDER_ENV_VAR, ProviderConfig, load_provider_config
from .exceptions import ProviderConfigError
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAIProvider

PROVIDER_MAP: Dict[str, Type[LLMProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "mock": MockProvider,
}


class ProviderFactory:
    """Factory for creating providers based on configuration."""

    @staticmethod
    def create(config: ProviderConfig | None = None) -> LLMProvider:
        if config is None:
            config = ProviderFactory.config_from_env()
        provider_cls = PROVIDER_MAP.get(config.name.lower())
        if provider_cls is None:
            raise ProviderConfigError(f"Unknown provider: {config.name}")
        return provider_cls(config)

    @staticmethod
    def config_from_env() -> ProviderConfig:
        """Resolve ``LLM_PROVIDER``; the mock backend needs no credentials."""

        provider_name = os.getenv(PROVIDER_ENV_VAR, "mock").strip().lower()
        if provider_name == "mock":
            return ProviderConfig(name="mock", api_key="mock", model="mock")
        return load_provider_config(prefix=provider_name)
