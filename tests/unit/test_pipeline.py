"""Generation orchestrator tests driven through the worker with in-memory stores."""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from inkwell_providers import GenerationFailed, ImageResponse
from inkwell_schemas import (
    BookType,
    CharacterReference,
    JobStatus,
    JobType,
    ProjectCounter,
    ProjectStatus,
    StoryParameters,
    Unit,
)
from inkwell_schemas.exceptions import ConflictError, NotFoundError, ValidationError
from inkwell_store import ArtifactStorage

from services.orchestrator.app.generation import ContentGenerationClient
from services.orchestrator.app.lock import ProjectLock
from services.orchestrator.app.pipeline import GenerationOrchestrator
from services.orchestrator.app.worker import GenerationWorker, WorkerSettings
from tests.utils.fakes import (
    OWNER,
    InMemoryJobStore,
    ScriptedProvider,
    make_lock,
    make_repositories,
    picture_book,
    story_plan,
    text_book,
    transport_error,
)

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingJobStore(InMemoryJobStore):
    """Remembers which units were already stored each time a job was queued."""

    def __init__(self, repos) -> None:
        super().__init__()
        self._repos = repos
        self.snapshots: list[tuple[int, list[int]]] = []

    async def enqueue(self, spec):
        units = self._repos[spec.book_type].units.get(spec.project_id, {})
        self.snapshots.append((spec.unit_index, sorted(units)))
        return await super().enqueue(spec)


@pytest.fixture
def harness(tmp_path):
    repos = make_repositories()
    jobs = RecordingJobStore(repos)
    lock, redis = make_lock()
    provider = ScriptedProvider()
    storage = ArtifactStorage(tmp_path, "http://test/artifacts")
    orchestrator = GenerationOrchestrator(
        repos, jobs, lock, ContentGenerationClient(provider), storage
    )
    worker = GenerationWorker(
        orchestrator, jobs, WorkerSettings(backoff_base_seconds=5.0, poll_seconds=0)
    )

    async def drain(job_type: JobType) -> int:
        processed = 0
        while await worker.run_once(job_type):
            processed += 1
        return processed

    return SimpleNamespace(
        repos=repos,
        text=repos[BookType.TEXT_BOOK],
        pictures=repos[BookType.PICTURE_BOOK],
        jobs=jobs,
        lock=lock,
        redis=redis,
        provider=provider,
        storage=storage,
        orchestrator=orchestrator,
        drain=drain,
    )


# ----------------------------------------------------------------------
# Text books


async def test_chapters_are_written_in_order_and_complete(harness) -> None:
    project = harness.text.add(text_book(total_units=3))

    ticket = await harness.orchestrator.start_chapter_generation(project.id, OWNER)

    assert ticket.status is ProjectStatus.GENERATING
    assert ticket.unit_indices == [1]
    assert await harness.lock.held(project.id)

    assert await harness.drain(JobType.SEQUENTIAL_UNIT) == 3

    stored = await harness.text.get(project.id)
    assert stored.status is ProjectStatus.COMPLETE
    assert stored.generation_progress == "3/3"
    assert [unit.unit_index for unit in await harness.text.list_units(project.id)] == [1, 2, 3]
    # Chapter k+1 is queued only once chapter k is stored.
    assert harness.jobs.snapshots == [(1, []), (2, [1]), (3, [1, 2])]
    assert not await harness.lock.held(project.id)
    assert stored.story_bible is not None


async def test_chapter_plans_record_word_targets(harness) -> None:
    project = harness.text.add(text_book(total_units=1))
    await harness.orchestrator.start_chapter_generation(project.id, OWNER)
    await harness.drain(JobType.SEQUENTIAL_UNIT)

    unit = (await harness.text.list_units(project.id))[0]
    assert unit.plan["target_words"] > 0
    assert len(unit.plan["chapter_plan"]) >= 3


async def test_handoff_refreshes_lock(harness) -> None:
    project = harness.text.add(text_book(total_units=2))
    await harness.orchestrator.start_chapter_generation(project.id, OWNER)
    harness.redis.now += 250

    job = (await harness.jobs.claim(JobType.SEQUENTIAL_UNIT, max_running=1))
    await harness.orchestrator.handle(job)

    assert harness.redis.ttl_of(ProjectLock.key_for(project.id)) == pytest.approx(harness.lock.ttl_seconds)


async def test_start_rejected_while_lock_held(harness) -> None:
    project = harness.text.add(text_book())
    await harness.lock.acquire(project.id)

    with pytest.raises(ConflictError):
        await harness.orchestrator.start_chapter_generation(project.id, OWNER)

    assert harness.jobs.jobs == {}
    assert (await harness.text.get(project.id)).status is ProjectStatus.STORY_READY


async def test_start_requires_story_ready(harness) -> None:
    project = harness.text.add(text_book(status=ProjectStatus.DRAFT))

    with pytest.raises(ConflictError):
        await harness.orchestrator.start_chapter_generation(project.id, OWNER)

    assert not await harness.lock.held(project.id)


async def test_start_hides_other_owners_projects(harness) -> None:
    project = harness.text.add(text_book())
    with pytest.raises(NotFoundError):
        await harness.orchestrator.start_chapter_generation(project.id, "someone-else")


async def test_enqueue_failure_releases_lock_and_marks_error(harness) -> None:
    project = harness.text.add(text_book())
    harness.jobs.fail_enqueue = True

    with pytest.raises(RuntimeError):
        await harness.orchestrator.start_chapter_generation(project.id, OWNER)

    assert (await harness.text.get(project.id)).status is ProjectStatus.ERROR
    assert not await harness.lock.held(project.id)


async def test_failed_chapter_stops_chain_and_keeps_progress(harness) -> None:
    project = harness.text.add(text_book(total_units=3))
    await harness.orchestrator.start_chapter_generation(project.id, OWNER)
    worker_step = GenerationWorker(harness.orchestrator, harness.jobs)
    assert await worker_step.run_once(JobType.SEQUENTIAL_UNIT)

    harness.provider.fail_step("chapter_text", GenerationFailed("unusable", reason="malformed"))
    await harness.drain(JobType.SEQUENTIAL_UNIT)

    stored = await harness.text.get(project.id)
    assert stored.status is ProjectStatus.ERROR
    assert stored.generation_progress == "1/3"
    assert "unusable" in stored.generation_error
    assert [unit.unit_index for unit in await harness.text.list_units(project.id)] == [1]
    assert not await harness.lock.held(project.id)
    assert len(harness.jobs.with_status(JobStatus.FAILED)) == 1


async def test_retry_resumes_at_first_missing_chapter(harness) -> None:
    project = harness.text.add(text_book(total_units=3))
    await harness.text.upsert_unit(Unit(project_id=project.id, unit_index=1, content="Chapter one."))
    harness.text.add((await harness.text.get(project.id)).model_copy(update={"status": ProjectStatus.ERROR}))

    ticket = await harness.orchestrator.retry_generation(BookType.TEXT_BOOK, project.id, OWNER)

    assert ticket.unit_indices == [2]
    await harness.drain(JobType.SEQUENTIAL_UNIT)
    stored = await harness.text.get(project.id)
    assert stored.status is ProjectStatus.COMPLETE
    assert (await harness.text.list_units(project.id))[0].content == "Chapter one."


async def test_retry_refused_while_previous_attempt_holds_lock(harness) -> None:
    project = harness.text.add(text_book(status=ProjectStatus.ERROR))
    await harness.lock.acquire(project.id)

    with pytest.raises(ConflictError):
        await harness.orchestrator.retry_generation(BookType.TEXT_BOOK, project.id, OWNER)

    assert (await harness.text.get(project.id)).status is ProjectStatus.ERROR


async def test_restart_with_every_chapter_present_completes(harness) -> None:
    project = harness.text.add(text_book(total_units=2))
    for index in (1, 2):
        await harness.text.upsert_unit(Unit(project_id=project.id, unit_index=index, content="Done."))

    ticket = await harness.orchestrator.start_chapter_generation(project.id, OWNER)

    assert ticket.status is ProjectStatus.COMPLETE
    assert harness.jobs.jobs == {}
    assert not await harness.lock.held(project.id)


async def test_chapter_job_for_idle_project_is_dropped(harness) -> None:
    project = harness.text.add(text_book(total_units=2))
    await harness.orchestrator.start_chapter_generation(project.id, OWNER)
    harness.text.add((await harness.text.get(project.id)).model_copy(update={"status": ProjectStatus.ERROR}))

    await harness.drain(JobType.SEQUENTIAL_UNIT)

    assert await harness.text.list_units(project.id) == []
    assert not await harness.lock.held(project.id)


async def test_missing_parameters_mark_project_failed(harness) -> None:
    project = harness.text.add(text_book(total_units=2))
    await harness.orchestrator.start_chapter_generation(project.id, OWNER)
    harness.text.add((await harness.text.get(project.id)).model_copy(update={"prompt_details": None}))

    await harness.drain(JobType.SEQUENTIAL_UNIT)

    assert (await harness.text.get(project.id)).status is ProjectStatus.FAILED
    assert not await harness.lock.held(project.id)


# ----------------------------------------------------------------------
# Picture books


async def test_pages_fan_out_and_settle_complete(harness) -> None:
    project = harness.pictures.add(picture_book())

    ticket = await harness.orchestrator.start_page_generation(project.id, OWNER)

    assert ticket.unit_indices == list(range(1, 21))
    assert ticket.group_id in harness.jobs.groups
    assert len(harness.jobs.queued(JobType.FAN_OUT_UNIT)) == 20

    assert await harness.drain(JobType.FAN_OUT_UNIT) == 20
    assert harness.jobs.groups[ticket.group_id].final_status is ProjectStatus.COMPLETE

    stored = await harness.pictures.get(project.id)
    assert stored.status is ProjectStatus.COMPLETE
    assert stored.generation_progress == "20/20"
    units = await harness.pictures.list_units(project.id)
    assert all(unit.image_url for unit in units)
    assert units[0].content == "Page 1 text."
    assert not await harness.lock.held(project.id)


async def test_transient_page_failure_is_retried(harness) -> None:
    project = harness.pictures.add(picture_book())
    harness.provider.fail_page(5, transport_error())

    await harness.orchestrator.start_page_generation(project.id, OWNER)
    await harness.drain(JobType.FAN_OUT_UNIT)

    assert harness.jobs.retry_delays == [5.0]
    assert (await harness.pictures.get(project.id)).status is ProjectStatus.COMPLETE


async def test_permanent_page_failure_keeps_every_page_row(harness) -> None:
    project = harness.pictures.add(picture_book())
    harness.provider.fail_page(7, GenerationFailed("blocked by safety filter", reason="blocked"))

    first = await harness.orchestrator.start_page_generation(project.id, OWNER)
    await harness.drain(JobType.FAN_OUT_UNIT)
    assert harness.jobs.groups[first.group_id].final_status is ProjectStatus.ERROR

    stored = await harness.pictures.get(project.id)
    assert stored.status is ProjectStatus.ERROR
    assert "blocked" in stored.generation_error
    assert stored.generation_progress == "19/20"
    units = await harness.pictures.list_units(project.id)
    assert [unit.unit_index for unit in units] == list(range(1, 21))
    assert [unit.unit_index for unit in units if unit.image_url is None] == [7]
    assert units[6].content == "Page 7 text."
    assert not await harness.lock.held(project.id)

    ticket = await harness.orchestrator.retry_generation(BookType.PICTURE_BOOK, project.id, OWNER)
    assert ticket.unit_indices == [7]
    await harness.drain(JobType.FAN_OUT_UNIT)
    assert (await harness.pictures.get(project.id)).status is ProjectStatus.COMPLETE
    assert all(unit.image_url for unit in await harness.pictures.list_units(project.id))


async def test_image_bytes_are_stored_as_artifacts(harness, monkeypatch) -> None:
    project = harness.pictures.add(picture_book())

    async def png(request):
        return ImageResponse(model="stub", image_bytes=b"\x89PNG fake", mime_type="image/png")

    monkeypatch.setattr(harness.provider, "generate_image", png)
    await harness.orchestrator.start_page_generation(project.id, OWNER)
    await harness.drain(JobType.FAN_OUT_UNIT)

    unit = (await harness.pictures.list_units(project.id))[0]
    assert unit.image_url == f"http://test/artifacts/projects/{project.id}/pages/1.png"
    assert harness.storage.path_for(f"projects/{project.id}/pages/1.png").read_bytes() == b"\x89PNG fake"


# ----------------------------------------------------------------------
# Regeneration


async def _complete_text_book(harness, total_units: int = 3):
    project = harness.text.add(text_book(status=ProjectStatus.COMPLETE, total_units=total_units))
    for index in range(1, total_units + 1):
        await harness.text.upsert_unit(Unit(project_id=project.id, unit_index=index, content=f"Old {index}"))
    return project


async def test_regenerates_latest_chapter_with_guidance(harness) -> None:
    project = await _complete_text_book(harness)

    ticket = await harness.orchestrator.request_regeneration(
        BookType.TEXT_BOOK, project.id, OWNER, 3, "Give it a twist ending"
    )
    assert ticket.unit_indices == [3]
    assert await harness.lock.held(project.id)

    await harness.drain(JobType.SINGLE_REGENERATION)

    units = await harness.text.list_units(project.id)
    assert units[2].content != "Old 3"
    assert units[1].content == "Old 2"
    assert any("Give it a twist ending" in request.prompt for request in harness.provider.requests)
    assert (await harness.text.get(project.id)).status is ProjectStatus.COMPLETE
    assert not await harness.lock.held(project.id)


async def test_only_latest_unit_can_be_regenerated(harness) -> None:
    project = await _complete_text_book(harness)
    with pytest.raises(ValidationError):
        await harness.orchestrator.request_regeneration(BookType.TEXT_BOOK, project.id, OWNER, 2, None)


async def test_regeneration_needs_complete_project(harness) -> None:
    project = harness.text.add(text_book(status=ProjectStatus.GENERATING))
    with pytest.raises(ConflictError):
        await harness.orchestrator.request_regeneration(BookType.TEXT_BOOK, project.id, OWNER, 1, None)


async def test_regeneration_conflicts_with_running_chain(harness) -> None:
    project = await _complete_text_book(harness)
    await harness.lock.acquire(project.id)
    with pytest.raises(ConflictError):
        await harness.orchestrator.request_regeneration(BookType.TEXT_BOOK, project.id, OWNER, 3, None)


async def test_failed_regeneration_moves_project_to_error(harness) -> None:
    project = await _complete_text_book(harness)
    harness.provider.fail_step("chapter_text", GenerationFailed("nothing usable", reason="malformed"))

    await harness.orchestrator.request_regeneration(BookType.TEXT_BOOK, project.id, OWNER, 3, None)
    await harness.drain(JobType.SINGLE_REGENERATION)

    stored = await harness.text.get(project.id)
    assert stored.status is ProjectStatus.ERROR
    assert (await harness.text.list_units(project.id))[2].content == "Old 3"
    assert not await harness.lock.held(project.id)


async def test_regenerates_latest_page_illustration(harness) -> None:
    project = harness.pictures.add(picture_book(status=ProjectStatus.COMPLETE))
    for entry in project.story_plan:
        await harness.pictures.upsert_unit(
            Unit(project_id=project.id, unit_index=entry.page_number, content=entry.page_text, image_url="old")
        )

    await harness.orchestrator.request_regeneration(
        BookType.PICTURE_BOOK, project.id, OWNER, 20, "Brighter colours"
    )
    await harness.drain(JobType.SINGLE_REGENERATION)

    units = await harness.pictures.list_units(project.id)
    assert units[19].image_url != "old"
    assert units[0].image_url == "old"
    assert "Brighter colours" in harness.provider.image_requests[-1].prompt


# ----------------------------------------------------------------------
# Pre-generation steps and social fields


async def test_picture_book_setup_reaches_story_ready(harness) -> None:
    project = harness.pictures.add(
        picture_book(status=ProjectStatus.DRAFT, character_reference=None, story_plan=[], total_units=0)
    )
    character = CharacterReference(name="Pip", description="A small grey mouse")

    updated = await harness.orchestrator.select_character(
        project.id, OWNER, character, {"plot_summary_so_far": "Pip finds a map."}
    )
    assert updated.status is ProjectStatus.CHARACTER_READY

    draft = await harness.orchestrator.draft_story_plan(project.id, OWNER, StoryParameters())
    assert len(draft) == 20
    assert (await harness.pictures.get(project.id)).story_plan == []

    accepted = await harness.orchestrator.save_story_plan(project.id, OWNER, draft, StoryParameters())
    assert accepted.status is ProjectStatus.STORY_READY
    assert accepted.total_units == 20
    units = await harness.pictures.list_units(project.id)
    assert [unit.unit_index for unit in units] == list(range(1, 21))
    assert all(unit.image_url is None for unit in units)
    assert units[0].content == draft[0].page_text


async def test_story_plan_must_have_twenty_pages(harness) -> None:
    project = harness.pictures.add(picture_book(status=ProjectStatus.CHARACTER_READY))
    with pytest.raises(ValidationError):
        await harness.orchestrator.save_story_plan(project.id, OWNER, story_plan(18))


async def test_story_parameters_default_chapter_count(harness) -> None:
    project = harness.text.add(text_book(status=ProjectStatus.DRAFT, total_units=0, prompt_details=None))

    updated = await harness.orchestrator.save_story_parameters(
        project.id, OWNER, StoryParameters(genre="Mystery")
    )

    assert updated.status is ProjectStatus.STORY_READY
    assert updated.total_units == 15
    assert updated.prompt_details.genre == "Mystery"


async def test_privacy_is_owner_only(harness) -> None:
    project = harness.text.add(text_book())
    with pytest.raises(NotFoundError):
        await harness.orchestrator.set_privacy(BookType.TEXT_BOOK, project.id, "intruder", True)
    updated = await harness.orchestrator.set_privacy(BookType.TEXT_BOOK, project.id, OWNER, True)
    assert updated.is_public is True


async def test_counters_never_go_negative(harness) -> None:
    project = harness.text.add(text_book())
    assert await harness.orchestrator.adjust_counter(BookType.TEXT_BOOK, project.id, ProjectCounter.LIKES, 1) == 1
    assert await harness.orchestrator.adjust_counter(BookType.TEXT_BOOK, project.id, ProjectCounter.LIKES, -1) == 0
    assert await harness.orchestrator.adjust_counter(BookType.TEXT_BOOK, project.id, ProjectCounter.LIKES, -1) == 0


def test_orchestrator_needs_every_repository(harness) -> None:
    with pytest.raises(ValueError):
        GenerationOrchestrator(
            {BookType.TEXT_BOOK: harness.text},
            harness.jobs,
            harness.lock,
            ContentGenerationClient(harness.provider),
            harness.storage,
        )


async def test_unknown_project_is_not_found(harness) -> None:
    with pytest.raises(NotFoundError):
        await harness.orchestrator.start_page_generation(uuid4(), OWNER)
