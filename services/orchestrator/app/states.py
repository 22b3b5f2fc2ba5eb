"""Project state machine expressed as pure transition functions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from inkwell_schemas import (
    REQUIRED_PAGE_PLAN_LENGTH,
    BookType,
    JobGroup,
    PagePlanEntry,
    Project,
    ProjectStatus,
)
from inkwell_schemas.exceptions import ConflictError, ValidationError

ALLOWED_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.DRAFT: frozenset({ProjectStatus.CHARACTER_READY, ProjectStatus.STORY_READY}),
    ProjectStatus.CHARACTER_READY: frozenset(
        {ProjectStatus.CHARACTER_READY, ProjectStatus.STORY_READY}
    ),
    ProjectStatus.STORY_READY: frozenset({ProjectStatus.STORY_READY, ProjectStatus.GENERATING}),
    ProjectStatus.GENERATING: frozenset(
        {ProjectStatus.COMPLETE, ProjectStatus.ERROR, ProjectStatus.FAILED}
    ),
    ProjectStatus.COMPLETE: frozenset({ProjectStatus.ERROR}),
    ProjectStatus.ERROR: frozenset({ProjectStatus.STORY_READY}),
    ProjectStatus.FAILED: frozenset({ProjectStatus.STORY_READY}),
}


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: ProjectStatus, target: ProjectStatus) -> None:
    if not can_transition(current, target):
        raise ConflictError(f"Project cannot move from {current.value} to {target.value}")


def sources_for(target: ProjectStatus) -> frozenset[ProjectStatus]:
    """Every status from which ``target`` may be entered."""

    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


def check_character_ready(project: Project, story_bible: Optional[dict]) -> None:
    if project.book_type is not BookType.PICTURE_BOOK:
        raise ValidationError("Character selection applies to picture books only")
    if not story_bible:
        raise ValidationError("A story bible must be saved before choosing a character")
    ensure_transition(project.status, ProjectStatus.CHARACTER_READY)


def check_story_plan(project: Project, plan: list[PagePlanEntry]) -> None:
    if project.book_type is not BookType.PICTURE_BOOK:
        raise ValidationError("Page plans apply to picture books only")
    if project.character_reference is None:
        raise ValidationError("Choose a character before accepting a story plan")
    if len(plan) != REQUIRED_PAGE_PLAN_LENGTH:
        raise ValidationError(
            f"Story plan must contain exactly {REQUIRED_PAGE_PLAN_LENGTH} pages, got {len(plan)}"
        )
    ensure_transition(project.status, ProjectStatus.STORY_READY)


def check_generation_start(project: Project) -> None:
    """Preconditions shared by every generation start; the lock is checked by the caller."""

    if project.status is not ProjectStatus.STORY_READY:
        raise ConflictError(
            f"Generation can only start from story_ready, project is {project.status.value}"
        )
    if project.book_type is BookType.PICTURE_BOOK:
        if len(project.story_plan) != REQUIRED_PAGE_PLAN_LENGTH:
            raise ValidationError("Picture book has no accepted story plan")
        if project.character_reference is None:
            raise ValidationError("Picture book has no character reference")
    elif project.book_type is BookType.TEXT_BOOK:
        if project.prompt_details is None or project.total_units < 1:
            raise ValidationError("Text book has no story parameters or chapter count")
    else:  # pragma: no cover - exhaustive over BookType
        raise ValidationError(f"Unsupported book type {project.book_type}")


@dataclass(frozen=True, slots=True)
class UnitOutcome:
    """What the orchestrator must persist after a sequential unit settles."""

    status: ProjectStatus
    progress: str
    next_unit: Optional[int] = None


def after_unit_success(unit_index: int, total_units: int) -> UnitOutcome:
    progress = format_progress(unit_index, total_units)
    if unit_index < total_units:
        return UnitOutcome(ProjectStatus.GENERATING, progress, next_unit=unit_index + 1)
    return UnitOutcome(ProjectStatus.COMPLETE, progress)


def after_unit_failure(unit_index: int, total_units: int) -> UnitOutcome:
    # The failed unit was never persisted, so progress stays at the previous unit.
    return UnitOutcome(ProjectStatus.ERROR, format_progress(unit_index - 1, total_units))


def after_group_update(group: JobGroup, *, child_succeeded: bool) -> Optional[ProjectStatus]:
    """Project status implied by a fan-out group after one child settles.

    The first permanent child failure flips the project to ``error``; the
    child that settles the group decides between ``complete`` and ``error``.
    """

    if group.settled:
        return ProjectStatus.COMPLETE if group.failed == 0 else ProjectStatus.ERROR
    if not child_succeeded and group.failed == 1:
        return ProjectStatus.ERROR
    return None


def format_progress(completed: int, total: int) -> str:
    return f"{max(completed, 0)}/{total}"
