"""Core interfaces and dataclasses for provider interactions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, MutableMapping


@dataclass(slots=True)
class ProviderRequest:
    """Normalized request passed to providers."""

    prompt: str
    system_prompt: str | None = None
    json_schema: Mapping[str, Any] | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    metadata: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ProviderResponse:
    """Standard response returned by providers."""

    text: str
    raw: Any
    model: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float | None = None
    received_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class ImageRequest:
    prompt: str
    size: str | None = None
    metadata: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ImageResponse:
    """Generated illustration; backends return either a hosted URL or raw bytes."""

    model: str
    url: str | None = None
    image_bytes: bytes | None = None
    mime_type: str = "image/png"
    latency_ms: float | None = None


@dataclass(slots=True)
class ProviderCapabilities:
    """Capability flags used when choosing a provider."""

    supports_json_mode: bool = False
    supports_images: bool = False
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None


class LLMProvider(ABC):
    """Abstract base class implemented by concrete providers."""

    name: str

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return capability metadata."""

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate text or JSON response for the provided prompt."""

    @abstractmethod
    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        """Render one illustration for the provided prompt."""
