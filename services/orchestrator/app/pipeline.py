"""Generation orchestrator: starts generation chains and runs their queued units.

A text book is written one chapter per job, each job enqueuing its successor
only after its own chapter is committed. A picture book fans out one job per
missing page under a job group; the child that settles the group decides the
project's final status. The project lock is taken when a chain starts, kept
(and refreshed) across hand-offs, and released on every terminal path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Mapping, Optional
from uuid import UUID

from inkwell_observability import log_context
from inkwell_schemas import (
    BookType,
    CharacterReference,
    Job,
    JobGroup,
    JobSpec,
    JobType,
    PagePlanEntry,
    Project,
    ProjectCounter,
    ProjectStatus,
    StoryParameters,
    Unit,
    get_product_profile,
)
from inkwell_schemas.exceptions import ConflictError, NotFoundError, ValidationError
from inkwell_schemas.utils.validators import count_words
from inkwell_providers import ImageResponse
from inkwell_store import ArtifactStorage, JobStore, ProjectRepository

from .generation import ContentGenerationClient, target_word_count
from .lock import ProjectLock
from .states import (
    after_group_update,
    after_unit_failure,
    after_unit_success,
    check_character_ready,
    check_generation_start,
    check_story_plan,
    ensure_transition,
    format_progress,
)

logger = logging.getLogger(__name__)

FAN_OUT_MAX_ATTEMPTS = 3
SEQUENTIAL_MAX_ATTEMPTS = 1
REGENERATION_MAX_ATTEMPTS = 1


@dataclass(slots=True)
class GenerationTicket:
    """What a start or regeneration request queued."""

    project_id: UUID
    status: ProjectStatus
    unit_indices: list[int] = field(default_factory=list)
    group_id: Optional[UUID] = None


class GenerationOrchestrator:
    def __init__(
        self,
        projects: Mapping[BookType, ProjectRepository],
        jobs: JobStore,
        lock: ProjectLock,
        client: ContentGenerationClient,
        storage: ArtifactStorage,
        *,
        fan_out_attempts: int = FAN_OUT_MAX_ATTEMPTS,
        sequential_attempts: int = SEQUENTIAL_MAX_ATTEMPTS,
    ) -> None:
        missing = set(BookType) - set(projects)
        if missing:
            raise ValueError(f"No project repository for: {sorted(t.value for t in missing)}")
        self._projects = projects
        self._jobs = jobs
        self._lock = lock
        self._client = client
        self._storage = storage
        self._fan_out_attempts = fan_out_attempts
        self._sequential_attempts = sequential_attempts
        self._handlers: dict[JobType, Callable[[Job], Awaitable[None]]] = {
            JobType.SEQUENTIAL_UNIT: self.process_sequential_unit,
            JobType.FAN_OUT_UNIT: self.process_fan_out_unit,
            JobType.SINGLE_REGENERATION: self.process_single_regeneration,
        }

    # ------------------------------------------------------------------
    # Pre-generation steps

    async def select_character(
        self,
        project_id: UUID,
        owner_id: str,
        character: CharacterReference,
        story_bible: Mapping[str, object],
    ) -> Project:
        repo = self._repo(BookType.PICTURE_BOOK)
        project = await self._load(repo, project_id, owner_id)
        check_character_ready(project, dict(story_bible))
        await repo.save_story_bible(project_id, dict(story_bible))
        await repo.save_character_reference(project_id, character)
        await self._transition_or_conflict(
            repo, project, ProjectStatus.CHARACTER_READY
        )
        return await self._load(repo, project_id, owner_id)

    async def draft_story_plan(
        self, project_id: UUID, owner_id: str, parameters: StoryParameters
    ) -> list[PagePlanEntry]:
        """Ask the planner for a page outline; nothing is stored until it is accepted."""

        repo = self._repo(BookType.PICTURE_BOOK)
        project = await self._load(repo, project_id, owner_id)
        if project.character_reference is None:
            raise ValidationError("Choose a character before drafting a story plan")
        with log_context(project_id=str(project_id), book_type=project.book_type.value):
            plan = await self._client.generate_story_plan(
                parameters=parameters, character=project.character_reference
            )
            logger.info("Story plan drafted", extra={"page_count": len(plan)})
        return plan

    async def save_story_plan(
        self,
        project_id: UUID,
        owner_id: str,
        plan: list[PagePlanEntry],
        parameters: Optional[StoryParameters] = None,
    ) -> Project:
        repo = self._repo(BookType.PICTURE_BOOK)
        project = await self._load(repo, project_id, owner_id)
        check_story_plan(project, plan)
        if parameters is not None:
            await repo.save_prompt_details(project_id, parameters, len(plan))
        await repo.save_story_plan(project_id, plan)
        await self._transition_or_conflict(repo, project, ProjectStatus.STORY_READY)
        return await self._load(repo, project_id, owner_id)

    async def save_story_parameters(
        self,
        project_id: UUID,
        owner_id: str,
        parameters: StoryParameters,
        total_chapters: Optional[int] = None,
    ) -> Project:
        repo = self._repo(BookType.TEXT_BOOK)
        project = await self._load(repo, project_id, owner_id)
        ensure_transition(project.status, ProjectStatus.STORY_READY)
        profile = get_product_profile(project.product_id, project.book_type)
        total = total_chapters or profile.total_chapters
        if total < 1:
            raise ValidationError("A text book needs at least one chapter")
        await repo.save_prompt_details(project_id, parameters, total)
        await self._transition_or_conflict(repo, project, ProjectStatus.STORY_READY)
        return await self._load(repo, project_id, owner_id)

    # ------------------------------------------------------------------
    # Starting and restarting generation

    async def start_chapter_generation(self, project_id: UUID, owner_id: str) -> GenerationTicket:
        repo = self._repo(BookType.TEXT_BOOK)
        project = await self._load(repo, project_id, owner_id)
        return await self._start_locked(project, self._queue_next_chapter)

    async def start_page_generation(self, project_id: UUID, owner_id: str) -> GenerationTicket:
        repo = self._repo(BookType.PICTURE_BOOK)
        project = await self._load(repo, project_id, owner_id)
        return await self._start_locked(project, self._queue_missing_pages)

    async def start_generation(self, book_type: BookType, project_id: UUID, owner_id: str) -> GenerationTicket:
        if book_type is BookType.TEXT_BOOK:
            return await self.start_chapter_generation(project_id, owner_id)
        if book_type is BookType.PICTURE_BOOK:
            return await self.start_page_generation(project_id, owner_id)
        raise ValidationError(f"Unsupported book type {book_type}")  # pragma: no cover

    async def request_regeneration(
        self,
        book_type: BookType,
        project_id: UUID,
        owner_id: str,
        unit_index: int,
        guidance: Optional[str] = None,
    ) -> GenerationTicket:
        repo = self._repo(book_type)
        project = await self._load(repo, project_id, owner_id)
        if project.status is not ProjectStatus.COMPLETE:
            raise ConflictError(
                f"Only complete projects can be regenerated, project is {project.status.value}"
            )
        units = await repo.list_units(project_id)
        latest = max((unit.unit_index for unit in units), default=0)
        if unit_index != latest:
            raise ValidationError(f"Only the most recent unit ({latest}) can be regenerated")
        if not await self._lock.acquire(project_id):
            raise ConflictError("Generation is already running for this project")
        try:
            job = await self._jobs.enqueue(
                JobSpec(
                    job_type=JobType.SINGLE_REGENERATION,
                    project_id=project_id,
                    owner_id=owner_id,
                    book_type=book_type,
                    unit_index=unit_index,
                    guidance=guidance,
                    max_attempts=REGENERATION_MAX_ATTEMPTS,
                )
            )
        except Exception:
            await self._lock.release(project_id)
            raise
        with log_context(project_id=str(project_id), job_id=str(job.id), unit_index=unit_index):
            logger.info("Regeneration queued", extra={"has_guidance": bool(guidance)})
        return GenerationTicket(project_id, project.status, [unit_index])

    async def retry_generation(self, book_type: BookType, project_id: UUID, owner_id: str) -> GenerationTicket:
        """Move an ``error``/``failed`` project back to ``story_ready`` and start a new attempt."""

        repo = self._repo(book_type)
        project = await self._load(repo, project_id, owner_id)
        if project.status not in (ProjectStatus.ERROR, ProjectStatus.FAILED):
            raise ConflictError(f"Nothing to retry, project is {project.status.value}")
        if await self._lock.held(project_id):
            raise ConflictError("A previous attempt is still settling for this project")
        moved = await repo.transition(
            project_id,
            expected=(ProjectStatus.ERROR, ProjectStatus.FAILED),
            status=ProjectStatus.STORY_READY,
        )
        if not moved:
            raise ConflictError("Project status changed while retrying")
        logger.info(
            "Generation retry requested",
            extra={"project_id": str(project_id), "book_type": book_type.value},
        )
        return await self.start_generation(book_type, project_id, owner_id)

    # ------------------------------------------------------------------
    # Social counters and visibility

    async def set_privacy(
        self, book_type: BookType, project_id: UUID, owner_id: str, is_public: bool
    ) -> Project:
        return await self._repo(book_type).set_privacy(project_id, owner_id, is_public)

    async def adjust_counter(
        self, book_type: BookType, project_id: UUID, counter: ProjectCounter, delta: int
    ) -> int:
        return await self._repo(book_type).increment_counter(project_id, counter, delta)

    # ------------------------------------------------------------------
    # Worker entrypoints

    async def handle(self, job: Job) -> None:
        handler = self._handlers.get(job.job_type)
        if handler is None:  # pragma: no cover - exhaustive over JobType
            raise ValidationError(f"No handler for job type {job.job_type}")
        with log_context(
            job_id=str(job.id),
            job_type=job.job_type.value,
            project_id=str(job.project_id),
            book_type=job.book_type.value,
            unit_index=job.unit_index,
        ):
            await handler(job)

    async def process_sequential_unit(self, job: Job) -> None:
        repo = self._repo(job.book_type)
        project = await repo.get(job.project_id)
        if project is None or project.status is not ProjectStatus.GENERATING:
            logger.warning(
                "Dropping chapter job for a project that is not generating",
                extra={"status": project.status.value if project else None},
            )
            await self._lock.release(job.project_id)
            return
        if project.prompt_details is None or project.total_units < 1:
            await self._mark_unresumable(repo, project, "Story parameters are missing")
            return

        units = await repo.list_units(project.id)
        previous = [unit.content for unit in units if unit.unit_index < job.unit_index]
        text, plan = await self._write_chapter(project, job.unit_index, previous, job.guidance)
        await repo.upsert_unit(
            Unit(project_id=project.id, unit_index=job.unit_index, content=text, plan=plan)
        )

        outcome = after_unit_success(job.unit_index, project.total_units)
        if outcome.next_unit is not None:
            await repo.set_progress(project.id, outcome.progress)
            await self._jobs.enqueue(
                JobSpec(
                    job_type=JobType.SEQUENTIAL_UNIT,
                    project_id=project.id,
                    owner_id=project.owner_id,
                    book_type=project.book_type,
                    unit_index=outcome.next_unit,
                    max_attempts=self._sequential_attempts,
                )
            )
            await self._lock.refresh(project.id)
            logger.info("Chapter committed", extra={"progress": outcome.progress})
            return

        await repo.transition(
            project.id,
            expected=(ProjectStatus.GENERATING,),
            status=outcome.status,
            progress=outcome.progress,
        )
        await self._lock.release(project.id)
        logger.info("Text book complete", extra={"progress": outcome.progress})

    async def process_fan_out_unit(self, job: Job) -> None:
        if job.group_id is None:
            raise ValidationError("Fan-out job has no group")
        repo = self._repo(job.book_type)
        project = await repo.get(job.project_id)
        if project is None:
            raise NotFoundError(f"Project {job.project_id} not found")
        entry = _plan_entry(project, job.unit_index)
        if project.character_reference is None:
            raise ValidationError("Picture book has no character reference")

        image = await self._client.illustrate_page(
            entry=entry,
            character=project.character_reference,
            parameters=project.prompt_details,
            guidance=job.guidance,
        )
        image_url = await self._store_image(project.id, job.unit_index, image)
        # The page row was seeded with the story plan; only its image is filled in here.
        await repo.attach_image(project.id, job.unit_index, image_url)
        group = await self._jobs.record_child_outcome(job.group_id, succeeded=True)
        await self._settle_group(repo, project, group, child_succeeded=True)

    async def process_single_regeneration(self, job: Job) -> None:
        repo = self._repo(job.book_type)
        project = await repo.get(job.project_id)
        if project is None:
            raise NotFoundError(f"Project {job.project_id} not found")

        if project.book_type is BookType.TEXT_BOOK:
            units = await repo.list_units(project.id)
            previous = [unit.content for unit in units if unit.unit_index < job.unit_index]
            text, plan = await self._write_chapter(project, job.unit_index, previous, job.guidance)
            await repo.upsert_unit(
                Unit(project_id=project.id, unit_index=job.unit_index, content=text, plan=plan)
            )
        elif project.book_type is BookType.PICTURE_BOOK:
            entry = _plan_entry(project, job.unit_index)
            if project.character_reference is None:
                raise ValidationError("Picture book has no character reference")
            image = await self._client.illustrate_page(
                entry=entry,
                character=project.character_reference,
                parameters=project.prompt_details,
                guidance=job.guidance,
            )
            image_url = await self._store_image(project.id, job.unit_index, image)
            await repo.attach_image(project.id, job.unit_index, image_url)
        else:  # pragma: no cover - exhaustive over BookType
            raise ValidationError(f"Unsupported book type {project.book_type}")

        await self._lock.release(project.id)
        logger.info("Unit regenerated")

    async def abandon(self, job: Job, exc: BaseException) -> None:
        """Record a job that will not be retried again and settle its project."""

        repo = self._repo(job.book_type)
        message = str(exc) or exc.__class__.__name__
        with log_context(
            job_id=str(job.id),
            job_type=job.job_type.value,
            project_id=str(job.project_id),
            unit_index=job.unit_index,
        ):
            logger.error("Generation job abandoned", extra={"error": message})
            if job.job_type is JobType.FAN_OUT_UNIT:
                if job.group_id is None:
                    await self._lock.release(job.project_id)
                    return
                group = await self._jobs.record_child_outcome(job.group_id, succeeded=False)
                project = await repo.get(job.project_id)
                if project is None:
                    await self._lock.release(job.project_id)
                    return
                await self._settle_group(
                    repo, project, group, child_succeeded=False, error=message
                )
                return

            if job.job_type is JobType.SEQUENTIAL_UNIT:
                project = await repo.get(job.project_id)
                total = project.total_units if project else job.unit_index
                outcome = after_unit_failure(job.unit_index, total)
                await repo.transition(
                    job.project_id,
                    expected=(ProjectStatus.GENERATING,),
                    status=outcome.status,
                    error=message,
                    progress=outcome.progress,
                )
            elif job.job_type is JobType.SINGLE_REGENERATION:
                await repo.transition(
                    job.project_id,
                    expected=(ProjectStatus.COMPLETE,),
                    status=ProjectStatus.ERROR,
                    error=message,
                )
            await self._lock.release(job.project_id)

    # ------------------------------------------------------------------
    # Internals

    def _repo(self, book_type: BookType) -> ProjectRepository:
        return self._projects[book_type]

    async def _load(self, repo: ProjectRepository, project_id: UUID, owner_id: str) -> Project:
        project = await repo.get(project_id)
        if project is None or project.owner_id != owner_id:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def _transition_or_conflict(
        self, repo: ProjectRepository, project: Project, target: ProjectStatus
    ) -> None:
        ensure_transition(project.status, target)
        if not await repo.transition(project.id, expected=(project.status,), status=target):
            raise ConflictError("Project status changed concurrently")

    async def _start_locked(
        self,
        project: Project,
        queue: Callable[[ProjectRepository, Project], Awaitable[GenerationTicket]],
    ) -> GenerationTicket:
        check_generation_start(project)
        if not await self._lock.acquire(project.id):
            raise ConflictError("Generation is already running for this project")
        repo = self._repo(project.book_type)
        try:
            ticket = await queue(repo, project)
        except Exception:
            await self._lock.release(project.id)
            raise
        if ticket.status is not ProjectStatus.GENERATING:
            await self._lock.release(project.id)
        return ticket

    async def _enter_generating(self, repo: ProjectRepository, project: Project, progress: str) -> None:
        moved = await repo.transition(
            project.id,
            expected=(ProjectStatus.STORY_READY,),
            status=ProjectStatus.GENERATING,
            progress=progress,
        )
        if not moved:
            raise ConflictError("Project is no longer ready for generation")

    async def _complete_without_work(self, repo: ProjectRepository, project: Project, done: int) -> GenerationTicket:
        progress = format_progress(done, project.total_units)
        await self._enter_generating(repo, project, progress)
        await repo.transition(
            project.id,
            expected=(ProjectStatus.GENERATING,),
            status=ProjectStatus.COMPLETE,
            progress=progress,
        )
        logger.info("Every unit already exists; project marked complete")
        return GenerationTicket(project.id, ProjectStatus.COMPLETE)

    async def _queue_next_chapter(self, repo: ProjectRepository, project: Project) -> GenerationTicket:
        units = await repo.list_units(project.id)
        next_index = _first_missing(unit.unit_index for unit in units)
        if next_index > project.total_units:
            return await self._complete_without_work(repo, project, project.total_units)

        await self._enter_generating(repo, project, format_progress(next_index - 1, project.total_units))
        try:
            job = await self._jobs.enqueue(
                JobSpec(
                    job_type=JobType.SEQUENTIAL_UNIT,
                    project_id=project.id,
                    owner_id=project.owner_id,
                    book_type=project.book_type,
                    unit_index=next_index,
                    max_attempts=self._sequential_attempts,
                )
            )
        except Exception as exc:
            await repo.transition(
                project.id,
                expected=(ProjectStatus.GENERATING,),
                status=ProjectStatus.ERROR,
                error=f"Could not queue chapter {next_index}: {exc}",
            )
            raise
        with log_context(project_id=str(project.id), job_id=str(job.id), unit_index=next_index):
            logger.info("Chapter generation started", extra={"total_units": project.total_units})
        return GenerationTicket(project.id, ProjectStatus.GENERATING, [next_index])

    async def _queue_missing_pages(self, repo: ProjectRepository, project: Project) -> GenerationTicket:
        units = await repo.list_units(project.id)
        done = {unit.unit_index for unit in units if unit.image_url}
        missing = [entry.page_number for entry in project.story_plan if entry.page_number not in done]
        if not missing:
            return await self._complete_without_work(repo, project, len(done))

        await self._enter_generating(repo, project, format_progress(len(done), project.total_units))
        try:
            group = await self._jobs.enqueue_group(
                [
                    JobSpec(
                        job_type=JobType.FAN_OUT_UNIT,
                        project_id=project.id,
                        owner_id=project.owner_id,
                        book_type=project.book_type,
                        unit_index=page_number,
                        max_attempts=self._fan_out_attempts,
                    )
                    for page_number in missing
                ]
            )
        except Exception as exc:
            await repo.transition(
                project.id,
                expected=(ProjectStatus.GENERATING,),
                status=ProjectStatus.ERROR,
                error=f"Could not queue page generation: {exc}",
            )
            raise
        with log_context(project_id=str(project.id), group_id=str(group.id)):
            logger.info("Page generation fanned out", extra={"page_count": len(missing)})
        return GenerationTicket(project.id, ProjectStatus.GENERATING, missing, group.id)

    async def _write_chapter(
        self,
        project: Project,
        chapter_number: int,
        previous: list[str],
        guidance: Optional[str],
    ) -> tuple[str, dict]:
        parameters = project.prompt_details or StoryParameters()
        profile = get_product_profile(project.product_id, project.book_type)
        bible = await self._client.create_story_bible(previous)
        plan = await self._client.plan_chapter(
            chapter_number=chapter_number,
            total_chapters=project.total_units,
            bible=bible,
            parameters=parameters,
            guidance=guidance,
        )
        target_words = target_word_count(
            profile,
            total_units=project.total_units,
            chapter_number=chapter_number,
            words_written=sum(count_words(text) for text in previous),
        )
        text = await self._client.write_chapter(
            chapter_number=chapter_number,
            total_chapters=project.total_units,
            plan=plan,
            bible=bible,
            parameters=parameters,
            previous_chapters=previous,
            target_words=target_words,
            guidance=guidance,
        )
        await self._repo(project.book_type).save_story_bible(project.id, bible.model_dump())
        return text, {**plan.model_dump(), "target_words": target_words}

    async def _settle_group(
        self,
        repo: ProjectRepository,
        project: Project,
        group: JobGroup,
        *,
        child_succeeded: bool,
        error: Optional[str] = None,
    ) -> None:
        units = await repo.list_units(project.id)
        progress = format_progress(
            sum(1 for unit in units if unit.image_url), project.total_units
        )
        status = after_group_update(group, child_succeeded=child_succeeded)
        # Later children keep counting after the project has already flipped to error.
        await repo.set_progress(project.id, progress)
        if status is not None:
            message = None
            if status is ProjectStatus.ERROR:
                message = error or f"{group.failed} of {group.total} pages failed"
            await repo.transition(
                project.id,
                expected=(ProjectStatus.GENERATING,),
                status=status,
                error=message,
                progress=progress,
            )
        if group.settled:
            await self._lock.release(project.id)
            logger.info(
                "Page group settled",
                extra={"group_id": str(group.id), "succeeded": group.succeeded, "failed": group.failed},
            )
        else:
            await self._lock.refresh(project.id)

    async def _mark_unresumable(self, repo: ProjectRepository, project: Project, message: str) -> None:
        await repo.transition(
            project.id,
            expected=(ProjectStatus.GENERATING,),
            status=ProjectStatus.FAILED,
            error=message,
        )
        await self._lock.release(project.id)
        logger.error("Generation cannot resume", extra={"error": message})

    async def _store_image(self, project_id: UUID, page_number: int, image: ImageResponse) -> str:
        if image.image_bytes:
            extension = "jpg" if image.mime_type == "image/jpeg" else "png"
            key = f"projects/{project_id}/pages/{page_number}.{extension}"
            return await asyncio.to_thread(self._storage.save_bytes, key, image.image_bytes)
        if image.url:
            return image.url
        raise ValidationError("Illustration carried no image")


def _first_missing(indices: Iterable[int]) -> int:
    present = set(indices)
    index = 1
    while index in present:
        index += 1
    return index


def _plan_entry(project: Project, page_number: int) -> PagePlanEntry:
    for entry in project.story_plan:
        if entry.page_number == page_number:
            return entry
    raise ValidationError(f"Story plan has no page {page_number}")
