"""OpenAI provider implementation."""

from __future__ import annotations

import time
from typing import Any, Dict, List

import openai
from openai import AsyncOpenAI

from .base import (
    ImageRequest,
    ImageResponse,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
)
from .config import ProviderConfig
from .exceptions import BLOCKED, MALFORMED, TRANSPORT, GenerationFailed

_TRANSPORT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(
            api_key=config.api_key,
            timeout=config.settings.timeout_seconds,
            max_retries=0,
        )

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            supports_images=True,
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        settings = self._config.settings
        params: Dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": (
                request.temperature if request.temperature is not None else settings.temperature
            ),
        }

        top_p = request.top_p if request.top_p is not None else settings.top_p
        if top_p is not None:
            params["top_p"] = top_p

        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )
        if max_output:
            params["max_completion_tokens"] = max_output

        if request.json_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "structured", "schema": request.json_schema},
            }
        elif settings.json_mode:
            params["response_format"] = {"type": "json_object"}

        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(**params)
        except _TRANSPORT_ERRORS as err:
            raise GenerationFailed(f"OpenAI transport failure: {err}", reason=TRANSPORT) from err
        except openai.APIStatusError as err:
            raise GenerationFailed(f"OpenAI rejected request: {err}", reason=MALFORMED) from err
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            choice = response.choices[0]
        except (IndexError, AttributeError) as err:
            raise GenerationFailed("OpenAI response missing content", reason=MALFORMED) from err
        if choice.finish_reason == "content_filter" or getattr(choice.message, "refusal", None):
            raise GenerationFailed("OpenAI refused the prompt", reason=BLOCKED)
        text = choice.message.content or ""
        if not text.strip():
            raise GenerationFailed("OpenAI response missing content", reason=MALFORMED)

        usage = getattr(response, "usage", None)
        return ProviderResponse(
            text=text,
            raw=response,
            model=response.model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            latency_ms=latency_ms,
        )

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        model = self._config.image_model or "dall-e-3"
        start = time.perf_counter()
        try:
            response = await self._client.images.generate(
                model=model,
                prompt=request.prompt,
                size=request.size or self._config.settings.image_size,
                n=1,
            )
        except _TRANSPORT_ERRORS as err:
            raise GenerationFailed(f"OpenAI transport failure: {err}", reason=TRANSPORT) from err
        except openai.BadRequestError as err:
            # Image policy rejections arrive as 400 with a content_policy_violation code.
            reason = BLOCKED if getattr(err, "code", None) == "content_policy_violation" else MALFORMED
            raise GenerationFailed(f"OpenAI rejected image prompt: {err}", reason=reason) from err
        except openai.APIStatusError as err:
            raise GenerationFailed(f"OpenAI image request failed: {err}", reason=MALFORMED) from err
        latency_ms = (time.perf_counter() - start) * 1000

        data = list(response.data or [])
        if not data:
            raise GenerationFailed("OpenAI returned no images", reason=MALFORMED)
        first = data[0]
        if first.url:
            return ImageResponse(model=model, url=first.url, latency_ms=latency_ms)
        if first.b64_json:
            import base64

            return ImageResponse(
                model=model,
                image_bytes=base64.b64decode(first.b64_json),
                latency_ms=latency_ms,
            )
        raise GenerationFailed("OpenAI image payload is empty", reason=MALFORMED)
