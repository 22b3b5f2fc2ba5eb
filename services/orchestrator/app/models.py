"""Pydantic models for the orchestrator API."""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from inkwell_schemas import (
    BookType,
    CharacterReference,
    PagePlanEntry,
    ProjectCounter,
    ProjectStatus,
    StoryParameters,
)


class CharacterSelection(BaseModel):
    character: CharacterReference
    story_bible: dict[str, Any] = Field(..., min_length=1)


class StoryPlanDraftRequest(BaseModel):
    parameters: StoryParameters = Field(default_factory=StoryParameters)


class StoryPlanAcceptance(BaseModel):
    pages: List[PagePlanEntry]
    parameters: Optional[StoryParameters] = None


class StoryParametersRequest(BaseModel):
    parameters: StoryParameters
    total_chapters: Optional[int] = Field(None, ge=1, le=100)


class RegenerationRequest(BaseModel):
    unit_index: int = Field(..., ge=1)
    guidance: Optional[str] = Field(None, max_length=2000)


class PrivacyRequest(BaseModel):
    is_public: bool


class CounterRequest(BaseModel):
    counter: ProjectCounter
    delta: int = Field(1, ge=-1, le=1)


class GenerationTicketResponse(BaseModel):
    project_id: UUID
    status: ProjectStatus
    unit_indices: List[int] = Field(default_factory=list)
    group_id: Optional[UUID] = None


class ProjectSummary(BaseModel):
    id: UUID
    book_type: BookType
    title: str
    status: ProjectStatus
    total_units: int
    generation_progress: Optional[str] = None
    generation_error: Optional[str] = None
    is_public: bool
    like_count: int
    comment_count: int
