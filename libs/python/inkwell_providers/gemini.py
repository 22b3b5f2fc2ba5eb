"""Google Gemini provider implementation."""

from __future__ import annotations

import time
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

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

_BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY"}


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = genai.Client(
            api_key=config.api_key,
            http_options=types.HttpOptions(timeout=int(config.settings.timeout_seconds * 1000)),
        )

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_json_mode=True,
            supports_images=bool(self._config.image_model),
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        settings = self._config.settings
        config_kwargs: dict[str, Any] = {
            "temperature": (
                request.temperature if request.temperature is not None else settings.temperature
            ),
        }
        if request.system_prompt:
            config_kwargs["system_instruction"] = request.system_prompt

        top_p = request.top_p if request.top_p is not None else settings.top_p
        if top_p is not None:
            config_kwargs["top_p"] = top_p

        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )
        if max_output:
            config_kwargs["max_output_tokens"] = max_output

        if request.json_schema:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_json_schema"] = request.json_schema
        elif settings.json_mode:
            config_kwargs["response_mime_type"] = "application/json"

        start = time.perf_counter()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=request.prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
        except genai_errors.ServerError as err:
            raise GenerationFailed(f"Gemini server error: {err}", reason=TRANSPORT) from err
        except genai_errors.ClientError as err:
            # 429 is a quota signal, not a bad request.
            reason = TRANSPORT if getattr(err, "code", None) == 429 else MALFORMED
            raise GenerationFailed(f"Gemini rejected request: {err}", reason=reason) from err
        except (TimeoutError, OSError) as err:
            raise GenerationFailed(f"Gemini transport failure: {err}", reason=TRANSPORT) from err
        latency_ms = (time.perf_counter() - start) * 1000

        _raise_if_blocked(response)
        text = response.text or ""
        if not text.strip():
            raise GenerationFailed("Gemini response missing text content", reason=MALFORMED)

        usage = getattr(response, "usage_metadata", None)
        return ProviderResponse(
            text=text,
            raw=response,
            model=self._config.model,
            prompt_tokens=(getattr(usage, "prompt_token_count", 0) or 0) if usage else 0,
            completion_tokens=(getattr(usage, "candidates_token_count", 0) or 0) if usage else 0,
            latency_ms=latency_ms,
        )

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        if not self._config.image_model:
            raise GenerationFailed("GEMINI_IMAGE_MODEL is not configured", reason=MALFORMED)

        start = time.perf_counter()
        try:
            response = await self._client.aio.models.generate_images(
                model=self._config.image_model,
                prompt=request.prompt,
                config=types.GenerateImagesConfig(number_of_images=1),
            )
        except genai_errors.ServerError as err:
            raise GenerationFailed(f"Gemini image server error: {err}", reason=TRANSPORT) from err
        except genai_errors.ClientError as err:
            reason = TRANSPORT if getattr(err, "code", None) == 429 else MALFORMED
            raise GenerationFailed(f"Gemini rejected image request: {err}", reason=reason) from err
        except (TimeoutError, OSError) as err:
            raise GenerationFailed(f"Gemini transport failure: {err}", reason=TRANSPORT) from err
        latency_ms = (time.perf_counter() - start) * 1000

        generated = list(response.generated_images or [])
        if not generated:
            raise GenerationFailed("Gemini returned no images; prompt was likely filtered", reason=BLOCKED)
        first = generated[0]
        if getattr(first, "rai_filtered_reason", None):
            raise GenerationFailed(
                f"Gemini filtered illustration: {first.rai_filtered_reason}", reason=BLOCKED
            )
        image = first.image
        if image is None or not image.image_bytes:
            raise GenerationFailed("Gemini image payload is empty", reason=MALFORMED)
        return ImageResponse(
            model=self._config.image_model,
            image_bytes=image.image_bytes,
            mime_type=image.mime_type or "image/png",
            latency_ms=latency_ms,
        )


def _raise_if_blocked(response: Any) -> None:
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise GenerationFailed(f"Gemini blocked the prompt: {block_reason}", reason=BLOCKED)

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        raise GenerationFailed("Gemini returned no candidates", reason=MALFORMED)
    finish_reason = getattr(candidates[0], "finish_reason", None)
    finish_name = getattr(finish_reason, "name", None) or str(finish_reason or "")
    if finish_name in _BLOCKED_FINISH_REASONS:
        raise GenerationFailed(f"Gemini stopped generation: {finish_name}", reason=BLOCKED)
