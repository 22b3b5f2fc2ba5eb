"""Prefect flows that kick off generation chains and drain the job queue on demand."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from prefect import flow

from inkwell_observability import log_context
from inkwell_schemas import BookType, JobType

from .deps import get_runtime
from .worker import GenerationWorker

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"


@flow(name="inkwell-start-generation", version="0.1.0")
async def start_generation_flow(project_id: str, owner_id: str, book_type: str) -> dict:
    runtime = get_runtime()
    await runtime.open()
    with log_context(project_id=project_id, book_type=book_type):
        ticket = await runtime.orchestrator.start_generation(
            BookType(book_type), UUID(project_id), owner_id
        )
        logger.info(
            "Generation flow queued work",
            extra={"unit_count": len(ticket.unit_indices), "status": ticket.status.value},
        )
    return {
        "project_id": str(ticket.project_id),
        "status": ticket.status.value,
        "unit_indices": ticket.unit_indices,
        "group_id": str(ticket.group_id) if ticket.group_id else None,
    }


@flow(name="inkwell-regenerate-unit", version="0.1.0")
async def regenerate_unit_flow(
    project_id: str,
    owner_id: str,
    book_type: str,
    unit_index: int,
    guidance: Optional[str] = None,
) -> dict:
    runtime = get_runtime()
    await runtime.open()
    with log_context(project_id=project_id, book_type=book_type, unit_index=unit_index):
        ticket = await runtime.orchestrator.request_regeneration(
            BookType(book_type), UUID(project_id), owner_id, unit_index, guidance
        )
    return {
        "project_id": str(ticket.project_id),
        "status": ticket.status.value,
        "unit_indices": ticket.unit_indices,
    }


@flow(name="inkwell-drain-queue", version="0.1.0")
async def drain_queue_flow(job_type: str, max_jobs: int = 50) -> int:
    """Run up to ``max_jobs`` queued jobs of one type inside a Prefect run."""

    runtime = get_runtime()
    await runtime.open()
    worker = GenerationWorker(runtime.orchestrator, runtime.jobs)
    processed = 0
    while processed < max_jobs and await worker.run_once(JobType(job_type)):
        processed += 1
    logger.info("Queue drained", extra={"job_type": job_type, "processed": processed})
    return processed
