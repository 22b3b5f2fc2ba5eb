"""FastAPI entrypoint for the generation orchestrator."""

from __future__ import annotations

import logging
import os
from typing import List, NoReturn
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from inkwell_observability import log_context, setup_fastapi_metrics, setup_logging
from inkwell_providers import GenerationFailed
from inkwell_schemas import BookType, PagePlanEntry, Project
from inkwell_schemas.exceptions import PipelineError

from .deps import get_runtime
from .models import (
    CharacterSelection,
    CounterRequest,
    GenerationTicketResponse,
    PrivacyRequest,
    ProjectSummary,
    RegenerationRequest,
    StoryParametersRequest,
    StoryPlanAcceptance,
    StoryPlanDraftRequest,
)
from .pipeline import GenerationOrchestrator, GenerationTicket

SERVICE_NAME = "orchestrator"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Owner-Id"
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("INKWELL_ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

app = FastAPI(title="Inkwell Generation Orchestrator", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup() -> None:
    await get_runtime().open()


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_runtime().close()


def get_orchestrator() -> GenerationOrchestrator:
    return get_runtime().orchestrator


async def current_owner(x_owner_id: str | None = Header(None, alias=OWNER_HEADER)) -> str:
    # Identity is verified upstream; the gateway forwards the caller's id.
    if not x_owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_owner_id


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, PipelineError):
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    if isinstance(exc, GenerationFailed):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Generation failed ({exc.reason})"
        ) from exc
    raise exc


def _ticket(ticket: GenerationTicket) -> GenerationTicketResponse:
    return GenerationTicketResponse(
        project_id=ticket.project_id,
        status=ticket.status,
        unit_indices=ticket.unit_indices,
        group_id=ticket.group_id,
    )


def _summary(project: Project) -> ProjectSummary:
    return ProjectSummary.model_validate(project.model_dump())


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/picture-books/{project_id}/character", response_model=ProjectSummary, tags=["picture-books"])
async def select_character(
    project_id: UUID,
    payload: CharacterSelection,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ProjectSummary:
    try:
        project = await orchestrator.select_character(
            project_id, owner_id, payload.character, payload.story_bible
        )
    except PipelineError as exc:
        _raise_http(exc)
    return _summary(project)


@app.post(
    "/picture-books/{project_id}/story-plan/draft",
    response_model=List[PagePlanEntry],
    tags=["picture-books"],
)
async def draft_story_plan(
    project_id: UUID,
    payload: StoryPlanDraftRequest,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> List[PagePlanEntry]:
    try:
        return await orchestrator.draft_story_plan(project_id, owner_id, payload.parameters)
    except (PipelineError, GenerationFailed) as exc:
        _raise_http(exc)


@app.put("/picture-books/{project_id}/story-plan", response_model=ProjectSummary, tags=["picture-books"])
async def save_story_plan(
    project_id: UUID,
    payload: StoryPlanAcceptance,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ProjectSummary:
    try:
        project = await orchestrator.save_story_plan(
            project_id, owner_id, payload.pages, payload.parameters
        )
    except PipelineError as exc:
        _raise_http(exc)
    return _summary(project)


@app.put("/text-books/{project_id}/parameters", response_model=ProjectSummary, tags=["text-books"])
async def save_story_parameters(
    project_id: UUID,
    payload: StoryParametersRequest,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ProjectSummary:
    try:
        project = await orchestrator.save_story_parameters(
            project_id, owner_id, payload.parameters, payload.total_chapters
        )
    except PipelineError as exc:
        _raise_http(exc)
    return _summary(project)


@app.post(
    "/text-books/{project_id}/generate",
    response_model=GenerationTicketResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["text-books"],
)
async def start_chapter_generation(
    project_id: UUID,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationTicketResponse:
    with log_context(project_id=str(project_id), book_type=BookType.TEXT_BOOK.value):
        try:
            ticket = await orchestrator.start_chapter_generation(project_id, owner_id)
        except PipelineError as exc:
            logger.info("Generation start rejected", extra={"status_code": exc.status_code})
            _raise_http(exc)
    return _ticket(ticket)


@app.post(
    "/picture-books/{project_id}/generate",
    response_model=GenerationTicketResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["picture-books"],
)
async def start_page_generation(
    project_id: UUID,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationTicketResponse:
    with log_context(project_id=str(project_id), book_type=BookType.PICTURE_BOOK.value):
        try:
            ticket = await orchestrator.start_page_generation(project_id, owner_id)
        except PipelineError as exc:
            logger.info("Generation start rejected", extra={"status_code": exc.status_code})
            _raise_http(exc)
    return _ticket(ticket)


@app.post(
    "/projects/{book_type}/{project_id}/regenerate",
    response_model=GenerationTicketResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["projects"],
)
async def request_regeneration(
    book_type: BookType,
    project_id: UUID,
    payload: RegenerationRequest,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationTicketResponse:
    try:
        ticket = await orchestrator.request_regeneration(
            book_type, project_id, owner_id, payload.unit_index, payload.guidance
        )
    except PipelineError as exc:
        _raise_http(exc)
    return _ticket(ticket)


@app.post(
    "/projects/{book_type}/{project_id}/retry",
    response_model=GenerationTicketResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["projects"],
)
async def retry_generation(
    book_type: BookType,
    project_id: UUID,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationTicketResponse:
    try:
        ticket = await orchestrator.retry_generation(book_type, project_id, owner_id)
    except PipelineError as exc:
        _raise_http(exc)
    return _ticket(ticket)


@app.put("/projects/{book_type}/{project_id}/privacy", response_model=ProjectSummary, tags=["projects"])
async def set_privacy(
    book_type: BookType,
    project_id: UUID,
    payload: PrivacyRequest,
    owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ProjectSummary:
    try:
        project = await orchestrator.set_privacy(book_type, project_id, owner_id, payload.is_public)
    except PipelineError as exc:
        _raise_http(exc)
    return _summary(project)


@app.post("/projects/{book_type}/{project_id}/counters", tags=["projects"])
async def adjust_counter(
    book_type: BookType,
    project_id: UUID,
    payload: CounterRequest,
    _owner_id: str = Depends(current_owner),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> dict[str, int]:
    try:
        value = await orchestrator.adjust_counter(book_type, project_id, payload.counter, payload.delta)
    except PipelineError as exc:
        _raise_http(exc)
    return {payload.counter.value: value}
