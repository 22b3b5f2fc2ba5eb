"""Domain models describing projects, their units, and story planning artifacts."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..enums import BookType, ProjectStatus

REQUIRED_PAGE_PLAN_LENGTH = 20


class StoryParameters(BaseModel):
    """User supplied story settings carried into every generation prompt."""

    genre: str = Field("General fiction", max_length=120)
    tone: Optional[str] = Field(None, max_length=200)
    protagonist: Optional[str] = Field(None, max_length=300)
    sidekick: Optional[str] = Field(None, max_length=300)
    setting: Optional[str] = Field(None, max_length=500)
    moral: Optional[str] = Field(None, max_length=500)
    audience: Optional[str] = Field(None, max_length=200)
    art_style: Optional[str] = Field(None, max_length=200)


class StoryBible(BaseModel):
    """Running summary of everything written so far."""

    plot_summary_so_far: str
    character_developments: str = ""
    key_objects_or_macguffins: list[str] = Field(default_factory=list)
    unresolved_plot_threads: list[str] = Field(default_factory=list)
    world_building_rules: list[str] = Field(default_factory=list)


class ChapterBeat(BaseModel):
    beat_number: int = Field(..., ge=1)
    summary: str = Field(..., min_length=1)


class ChapterPlan(BaseModel):
    """Short structured plan produced before a chapter is written."""

    chapter_plan: list[ChapterBeat] = Field(..., min_length=3, max_length=5)


class PagePlanEntry(BaseModel):
    """One entry of an illustrated project's page-by-page outline."""

    page_number: int = Field(..., ge=1)
    page_text: str = Field(..., min_length=1)
    illustration_prompt: str = Field(..., min_length=1)


class StoryPlan(BaseModel):
    pages: list[PagePlanEntry]

    @field_validator("pages")
    @classmethod
    def validate_ordering(cls, pages: list[PagePlanEntry]) -> list[PagePlanEntry]:
        expected = list(range(1, len(pages) + 1))
        if [page.page_number for page in pages] != expected:
            raise ValueError("Page plan numbering must be contiguous starting at 1")
        return pages


class CharacterReference(BaseModel):
    """Chosen character artwork that anchors every page illustration."""

    name: str
    description: str
    image_url: Optional[str] = None


class Project(BaseModel):
    """A user's in-progress or finished book."""

    id: UUID
    owner_id: str
    book_type: BookType
    title: str = "Untitled"
    status: ProjectStatus = ProjectStatus.DRAFT
    product_id: Optional[str] = None
    story_bible: Optional[dict[str, Any]] = None
    story_plan: list[PagePlanEntry] = Field(default_factory=list)
    character_reference: Optional[CharacterReference] = None
    prompt_details: Optional[StoryParameters] = None
    total_units: int = Field(0, ge=0)
    generation_progress: Optional[str] = None
    generation_error: Optional[str] = None
    is_public: bool = False
    like_count: int = 0
    comment_count: int = 0
    last_modified: datetime = Field(default_factory=datetime.utcnow)


class Unit(BaseModel):
    """One chapter (text books) or page (picture books)."""

    project_id: UUID
    unit_index: int = Field(..., ge=1)
    content: str = ""
    image_url: Optional[str] = None
    plan: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
