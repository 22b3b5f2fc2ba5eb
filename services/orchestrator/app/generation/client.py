"""Content generation client: plans and writes chapters, plans and illustrates pages."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from inkwell_observability import observe_provider_response
from inkwell_providers import (
    GenerationFailed,
    ImageRequest,
    ImageResponse,
    LLMProvider,
    ProviderFactory,
    ProviderRequest,
    ProviderResponse,
)
from inkwell_providers.exceptions import MALFORMED
from inkwell_schemas import (
    REQUIRED_PAGE_PLAN_LENGTH,
    ChapterPlan,
    CharacterReference,
    PagePlanEntry,
    StoryBible,
    StoryParameters,
    StoryPlan,
)

from ..context import join_previous_chapters
from .prompts import (
    CHAPTER_PLAN_PROMPT,
    CHAPTER_PLAN_SYSTEM_PROMPT,
    CHAPTER_WRITER_PROMPT,
    CHAPTER_WRITER_SYSTEM_PROMPT,
    FINAL_CHAPTER_NOTE,
    FIRST_CHAPTER_SUMMARY,
    MIDDLE_CHAPTER_NOTE,
    PAGE_ILLUSTRATION_PROMPT,
    STORY_BIBLE_PROMPT,
    STORY_BIBLE_SYSTEM_PROMPT,
    STORY_PLAN_PROMPT,
    STORY_PLAN_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"

STORY_BIBLE_SCHEMA = StoryBible.model_json_schema()
CHAPTER_PLAN_SCHEMA = ChapterPlan.model_json_schema()
STORY_PLAN_SCHEMA = StoryPlan.model_json_schema()

ModelT = TypeVar("ModelT", bound=BaseModel)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ContentGenerationClient:
    """Stateless wrapper around one :class:`LLMProvider`.

    Every backend problem, including output that does not match the expected
    structure, surfaces as :class:`GenerationFailed`.
    """

    def __init__(self, provider: LLMProvider, *, context_token_limit: Optional[int] = None) -> None:
        self._provider = provider
        self._context_token_limit = context_token_limit

    @classmethod
    def from_env(cls) -> "ContentGenerationClient":
        return cls(ProviderFactory.create())

    async def create_story_bible(self, previous_chapters: list[str]) -> StoryBible:
        if not any(text.strip() for text in previous_chapters):
            return StoryBible(plot_summary_so_far=FIRST_CHAPTER_SUMMARY)
        previous_text, _ = join_previous_chapters(previous_chapters, self._context_token_limit)
        return await self._request_model(
            "story_bible",
            StoryBible,
            ProviderRequest(
                prompt=STORY_BIBLE_PROMPT.format(previous_text=previous_text),
                system_prompt=STORY_BIBLE_SYSTEM_PROMPT,
                json_schema=STORY_BIBLE_SCHEMA,
                temperature=0.2,
            ),
        )

    async def plan_chapter(
        self,
        *,
        chapter_number: int,
        total_chapters: int,
        bible: StoryBible,
        parameters: StoryParameters,
        guidance: Optional[str] = None,
    ) -> ChapterPlan:
        prompt = CHAPTER_PLAN_PROMPT.format(
            parameters_json=parameters.model_dump_json(exclude_none=True),
            bible_json=bible.model_dump_json(),
            chapter_number=chapter_number,
            total_chapters=total_chapters,
            position_note=_position_note(chapter_number, total_chapters),
            guidance=guidance or "None provided.",
        )
        return await self._request_model(
            "chapter_plan",
            ChapterPlan,
            ProviderRequest(
                prompt=prompt,
                system_prompt=CHAPTER_PLAN_SYSTEM_PROMPT,
                json_schema=CHAPTER_PLAN_SCHEMA,
            ),
        )

    async def write_chapter(
        self,
        *,
        chapter_number: int,
        total_chapters: int,
        plan: ChapterPlan,
        bible: StoryBible,
        parameters: StoryParameters,
        previous_chapters: list[str],
        target_words: int,
        guidance: Optional[str] = None,
    ) -> str:
        previous_text, trimmed = join_previous_chapters(
            previous_chapters[-2:], self._context_token_limit
        )
        prompt = CHAPTER_WRITER_PROMPT.format(
            parameters_json=parameters.model_dump_json(exclude_none=True),
            bible_json=bible.model_dump_json(),
            previous_text=previous_text or "None, this is the opening chapter.",
            chapter_number=chapter_number,
            total_chapters=total_chapters,
            plan_json=plan.model_dump_json(),
            target_words=target_words,
            position_note=_position_note(chapter_number, total_chapters),
            guidance=guidance or "None provided.",
        )
        response = await self._generate(
            "chapter_text",
            ProviderRequest(
                prompt=prompt,
                system_prompt=CHAPTER_WRITER_SYSTEM_PROMPT,
                # Headroom over the word target: roughly 1.5 tokens per English word.
                max_output_tokens=int(target_words * 2),
                metadata={"context_trimmed": trimmed},
            ),
        )
        text = response.text.strip()
        if not text:
            raise GenerationFailed("Chapter text came back empty", reason=MALFORMED)
        return text

    async def generate_story_plan(
        self,
        *,
        parameters: StoryParameters,
        character: CharacterReference,
        page_count: int = REQUIRED_PAGE_PLAN_LENGTH,
    ) -> list[PagePlanEntry]:
        prompt = STORY_PLAN_PROMPT.format(
            parameters_json=parameters.model_dump_json(exclude_none=True),
            character_json=character.model_dump_json(exclude_none=True),
            page_count=page_count,
        )
        plan = await self._request_model(
            "story_plan",
            StoryPlan,
            ProviderRequest(
                prompt=prompt,
                system_prompt=STORY_PLAN_SYSTEM_PROMPT,
                json_schema=STORY_PLAN_SCHEMA,
                metadata={"page_count": page_count},
            ),
        )
        if len(plan.pages) != page_count:
            raise GenerationFailed(
                f"Story plan returned {len(plan.pages)} pages, expected {page_count}",
                reason=MALFORMED,
            )
        return plan.pages

    async def illustrate_page(
        self,
        *,
        entry: PagePlanEntry,
        character: CharacterReference,
        parameters: Optional[StoryParameters] = None,
        guidance: Optional[str] = None,
    ) -> ImageResponse:
        prompt = PAGE_ILLUSTRATION_PROMPT.format(
            art_style=(parameters.art_style if parameters and parameters.art_style else "Watercolour"),
            character_name=character.name,
            character_description=character.description,
            illustration_prompt=entry.illustration_prompt,
            guidance=f"Adjustment requested: {guidance}" if guidance else "",
        ).strip()
        response = await self._provider.generate_image(
            ImageRequest(prompt=prompt, metadata={"page_number": entry.page_number})
        )
        if not response.url and not response.image_bytes:
            raise GenerationFailed("Illustration response carried no image", reason=MALFORMED)
        return response

    async def _request_model(self, step: str, model: Type[ModelT], request: ProviderRequest) -> ModelT:
        response = await self._generate(step, request)
        return parse_structured(response.text, model)

    async def _generate(self, step: str, request: ProviderRequest) -> ProviderResponse:
        request.metadata.setdefault("step", step)
        response = await self._provider.generate(request)
        observe_provider_response(
            step=step,
            provider=self._provider.name,
            service_name=SERVICE_NAME,
            response=response,
        )
        logger.debug(
            "Generation step completed",
            extra={
                "step": step,
                "provider": self._provider.name,
                "latency_ms": response.latency_ms or 0,
                "output_chars": len(response.text or ""),
            },
        )
        return response


def parse_structured(text: str, model: Type[ModelT]) -> ModelT:
    """Parse JSON output (optionally wrapped in code fences) into ``model``."""

    cleaned = _CODE_FENCE.sub("", (text or "").strip())
    try:
        payload: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise GenerationFailed(f"{model.__name__} output is not valid JSON", reason=MALFORMED) from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise GenerationFailed(
            f"{model.__name__} output failed validation: {exc.error_count()} errors",
            reason=MALFORMED,
        ) from exc


def _position_note(chapter_number: int, total_chapters: int) -> str:
    return FINAL_CHAPTER_NOTE if chapter_number >= total_chapters else MIDDLE_CHAPTER_NOTE
