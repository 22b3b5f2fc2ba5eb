"""Durable generation job records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..enums import BookType, JobStatus, JobType, ProjectStatus


class JobSpec(BaseModel):
    """Payload used to enqueue one unit of generation work."""

    job_type: JobType
    project_id: UUID
    owner_id: str
    book_type: BookType
    unit_index: int = Field(..., ge=1)
    guidance: Optional[str] = None
    group_id: Optional[UUID] = None
    max_attempts: int = Field(1, ge=1)


class Job(JobSpec):
    id: UUID
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    error: Optional[str] = None
    available_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class JobGroup(BaseModel):
    """Parent record tracking a fan-out of child jobs."""

    id: UUID
    project_id: UUID
    book_type: BookType
    total: int = Field(..., ge=1)
    succeeded: int = 0
    failed: int = 0
    # Written by the child that settles the group.
    final_status: Optional[ProjectStatus] = None

    @property
    def settled(self) -> bool:
        return self.succeeded + self.failed >= self.total
