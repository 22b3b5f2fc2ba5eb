"""Durable generation job queue backed by Postgres.

Workers claim jobs with ``FOR UPDATE SKIP LOCKED``; a per-job-type advisory
lock serialises claims so the configured concurrency cap holds across every
worker process, not just within one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from inkwell_schemas import Job, JobGroup, JobSpec, JobStatus, JobType, ProjectStatus

DEFAULT_LEASE_SECONDS = 900


class JobStore(ABC):
    @abstractmethod
    async def enqueue(self, spec: JobSpec) -> Job:
        ...

    @abstractmethod
    async def enqueue_group(self, specs: Sequence[JobSpec]) -> JobGroup:
        """Create a parent group and one child job per spec, atomically."""

    @abstractmethod
    async def claim(self, job_type: JobType, *, max_running: int) -> Optional[Job]:
        """Mark the oldest runnable job of ``job_type`` as running, if capacity allows."""

    @abstractmethod
    async def complete(self, job_id: UUID) -> None:
        ...

    @abstractmethod
    async def retry_later(self, job_id: UUID, error: str, delay_seconds: float) -> None:
        ...

    @abstractmethod
    async def fail(self, job_id: UUID, error: str) -> None:
        ...

    @abstractmethod
    async def record_child_outcome(self, group_id: UUID, *, succeeded: bool) -> JobGroup:
        """Atomically bump the group's counters and return the updated totals."""


class PostgresJobStore(JobStore):
    def __init__(self, pool: AsyncConnectionPool, *, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self._pool = pool
        self._lease_seconds = lease_seconds

    async def enqueue(self, spec: JobSpec) -> Job:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    row = await _insert_job(cur, spec)
        return _job_from_row(row)

    async def enqueue_group(self, specs: Sequence[JobSpec]) -> JobGroup:
        if not specs:
            raise ValueError("A job group needs at least one child job")
        first = specs[0]
        group_id = uuid4()
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        INSERT INTO job_groups (id, project_id, book_type, total)
                        VALUES (%s, %s, %s, %s)
                        RETURNING *
                        """,
                        (group_id, first.project_id, first.book_type.value, len(specs)),
                    )
                    group_row = await cur.fetchone()
                    for spec in specs:
                        await _insert_job(cur, spec.model_copy(update={"group_id": group_id}))
        return JobGroup.model_validate(group_row)

    async def claim(self, job_type: JobType, *, max_running: int) -> Optional[Job]:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (job_type.value,))
                    await cur.execute(
                        """
                        SELECT COUNT(*) AS running
                        FROM generation_jobs
                        WHERE job_type = %s AND status = %s AND lease_expires_at > NOW()
                        """,
                        (job_type.value, JobStatus.RUNNING.value),
                    )
                    counts = await cur.fetchone()
                    if counts and counts["running"] >= max_running:
                        return None
                    await cur.execute(
                        """
                        UPDATE generation_jobs
                        SET status = %s,
                            attempts = attempts + 1,
                            lease_expires_at = NOW() + make_interval(secs => %s),
                            updated_at = NOW()
                        WHERE id = (
                            SELECT id FROM generation_jobs
                            WHERE job_type = %s
                              AND (
                                (status = %s AND available_at <= NOW())
                                OR (status = %s AND lease_expires_at <= NOW())
                              )
                            ORDER BY created_at ASC, unit_index ASC
                            FOR UPDATE SKIP LOCKED
                            LIMIT 1
                        )
                        RETURNING *
                        """,
                        (
                            JobStatus.RUNNING.value,
                            self._lease_seconds,
                            job_type.value,
                            JobStatus.QUEUED.value,
                            JobStatus.RUNNING.value,
                        ),
                    )
                    row = await cur.fetchone()
        return _job_from_row(row) if row else None

    async def complete(self, job_id: UUID) -> None:
        await self._finish(job_id, JobStatus.SUCCEEDED, None)

    async def fail(self, job_id: UUID, error: str) -> None:
        await self._finish(job_id, JobStatus.FAILED, error)

    async def retry_later(self, job_id: UUID, error: str, delay_seconds: float) -> None:
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE generation_jobs
                SET status = %s, error = %s, lease_expires_at = NULL,
                    available_at = NOW() + make_interval(secs => %s), updated_at = NOW()
                WHERE id = %s
                """,
                (JobStatus.QUEUED.value, error[:2000], delay_seconds, job_id),
            )

    async def record_child_outcome(self, group_id: UUID, *, succeeded: bool) -> JobGroup:
        succeeded_delta, failed_delta = (1, 0) if succeeded else (0, 1)
        async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            # Right-hand sides see the counters as they were before this update.
            await cur.execute(
                """
                UPDATE job_groups
                SET succeeded = succeeded + %s,
                    failed = failed + %s,
                    final_status = CASE
                        WHEN succeeded + failed + 1 >= total
                            THEN CASE WHEN failed + %s = 0 THEN %s ELSE %s END
                        ELSE final_status
                    END
                WHERE id = %s
                RETURNING *
                """,
                (
                    succeeded_delta,
                    failed_delta,
                    failed_delta,
                    ProjectStatus.COMPLETE.value,
                    ProjectStatus.ERROR.value,
                    group_id,
                ),
            )
            row = await cur.fetchone()
        if row is None:
            raise LookupError(f"Job group {group_id} not found")
        return JobGroup.model_validate(row)

    async def _finish(self, job_id: UUID, status: JobStatus, error: Optional[str]) -> None:
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE generation_jobs
                SET status = %s, error = %s, lease_expires_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (status.value, error[:2000] if error else None, job_id),
            )


async def _insert_job(cur: Any, spec: JobSpec) -> Mapping[str, Any]:
    await cur.execute(
        """
        INSERT INTO generation_jobs (
            id, job_type, project_id, owner_id, book_type, unit_index,
            guidance, group_id, max_attempts
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            uuid4(),
            spec.job_type.value,
            spec.project_id,
            spec.owner_id,
            spec.book_type.value,
            spec.unit_index,
            spec.guidance,
            spec.group_id,
            spec.max_attempts,
        ),
    )
    return await cur.fetchone()


def _job_from_row(row: Mapping[str, Any]) -> Job:
    data = {key: value for key, value in row.items() if key not in {"lease_expires_at", "updated_at"}}
    return Job.model_validate(data)
