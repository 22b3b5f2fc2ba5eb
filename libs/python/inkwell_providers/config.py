"""Configuration models and helpers for provider selection."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, ValidationError

PROVIDER_ENV_VAR = "LLM_PROVIDER"
DEFAULT_PROVIDER = "gemini"


class ProviderSettings(BaseModel):
    """Per-call default parameters."""

    temperature: float = Field(0.7, ge=0, le=2)
    max_output_tokens: int | None = Field(None, ge=16)
    top_p: float | None = Field(None, ge=0, le=1)
    json_mode: bool = Field(False)
    timeout_seconds: float = Field(
        60.0, gt=0, description="Upper bound for a single backend call"
    )
    image_size: str = Field("1024x1024", description="Illustration size requested from image models")


class ProviderConfig(BaseModel):
    """Configuration for a single provider instance."""

    name: str
    api_key: str
    model: str
    image_model: str | None = None
    settings: ProviderSettings = Field(default_factory=ProviderSettings)

    class Config:
        frozen = True


def load_provider_config(prefix: str | None = None) -> ProviderConfig:
    """Load configuration from environment variables.

    Args:
        prefix: Optional prefix for environment variables (default uses provider name).

    Environment variables used (assuming prefix "GEMINI"):
        GEMINI_API_KEY
        GEMINI_MODEL
        GEMINI_IMAGE_MODEL (optional)
        GEMINI_TEMPERATURE (optional)
        GEMINI_MAX_OUTPUT_TOKENS (optional)
        GEMINI_TOP_P (optional)
        GEMINI_JSON_MODE (optional boolean)
        GEMINI_TIMEOUT_SECONDS (optional)
        GEMINI_IMAGE_SIZE (optional)

    Raises:
        ValidationError: If required variables are missing or invalid.
    """

    provider_name = (prefix or os.getenv(PROVIDER_ENV_VAR, DEFAULT_PROVIDER)).upper()

    def read_env(key: str, default: Any | None = None) -> Any:
        return os.getenv(f"{provider_name}_{key}", default)

    def parse_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        return str(value).strip().lower() in {"true", "1", "yes", "on"}

    api_key = read_env("API_KEY")
    model = read_env("MODEL")
    if not api_key or not model:
        raise ValidationError.from_exception_data(
            "ProviderConfig",
            [
                {
                    "type": "missing",
                    "loc": ("api_key" if not api_key else "model",),
                    "input": None,
                }
            ],
        )

    max_output_raw = read_env("MAX_OUTPUT_TOKENS")
    max_output_tokens = None
    if max_output_raw not in (None, ""):
        parsed_max = int(str(max_output_raw).strip())
        max_output_tokens = parsed_max if parsed_max > 0 else None

    top_p_raw = read_env("TOP_P", "")
    top_p = float(top_p_raw) if str(top_p_raw).strip() else None

    settings = ProviderSettings(
        temperature=float(read_env("TEMPERATURE", 0.7)),
        max_output_tokens=max_output_tokens,
        top_p=top_p,
        json_mode=parse_bool(read_env("JSON_MODE", "false")),
        timeout_seconds=float(read_env("TIMEOUT_SECONDS", 60)),
        image_size=read_env("IMAGE_SIZE", "1024x1024"),
    )

    return ProviderConfig(
        name=provider_name.lower(),
        api_key=api_key,
        model=model,
        image_model=read_env("IMAGE_MODEL") or None,
        settings=settings,
    )
