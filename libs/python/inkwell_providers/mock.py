"""Deterministic mock provider for tests and offline development."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .base import (
    ImageRequest,
    ImageResponse,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
)
from .config import ProviderConfig, ProviderSettings

DEFAULT_TEXT = "Mock response generated for testing."
MOCK_IMAGE_BASE_URL = "https://mock.invalid/images"


class MockProvider(LLMProvider):
    """Returns canned payloads shaped by ``request.metadata["step"]``."""

    name = "mock"

    def __init__(self, config: ProviderConfig | None = None) -> None:
        if config is None:
            settings = ProviderSettings(temperature=0.1, json_mode=False)
            config = ProviderConfig(name="mock", api_key="mock", model="mock", settings=settings)
        self._config = config

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            supports_images=True,
            max_input_tokens=32000,
            max_output_tokens=2000,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        step = request.metadata.get("step")
        payload: Any
        if step == "chapter_plan":
            payload = {
                "chapter_plan": [
                    {"beat_number": index, "summary": f"Beat {index} of the mock chapter."}
                    for index in range(1, 4)
                ]
            }
        elif step == "story_bible":
            payload = {
                "plot_summary_so_far": DEFAULT_TEXT,
                "character_developments": "",
                "key_objects_or_macguffins": [],
                "unresolved_plot_threads": [],
                "world_building_rules": [],
            }
        elif step == "story_plan":
            page_count = int(request.metadata.get("page_count", 20))
            payload = {
                "pages": [
                    {
                        "page_number": index,
                        "page_text": f"Page {index} of the mock story.",
                        "illustration_prompt": f"Illustration for page {index}.",
                    }
                    for index in range(1, page_count + 1)
                ]
            }
        elif request.json_schema:
            payload = {"message": DEFAULT_TEXT, "echo": request.prompt[:50]}
        else:
            payload = None

        text = json.dumps(payload) if payload is not None else f"{DEFAULT_TEXT}\nPrompt: {request.prompt[:80]}"
        return ProviderResponse(
            text=text,
            raw={"mock": True, "step": step},
            model="mock",
            prompt_tokens=len(request.prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=1.0,
        )

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        digest = hashlib.sha1(request.prompt.encode("utf-8")).hexdigest()[:16]
        return ImageResponse(model="mock", url=f"{MOCK_IMAGE_BASE_URL}/{digest}.png", latency_ms=1.0)
