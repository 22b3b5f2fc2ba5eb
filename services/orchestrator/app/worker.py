"""Generation worker: claims queued jobs per job type and runs them."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from time import perf_counter
from typing import Optional

from inkwell_observability import (
    log_context,
    observe_job,
    record_worker_heartbeat,
    setup_logging,
    start_metrics_server,
)
from inkwell_providers import GenerationFailed
from inkwell_schemas import Job, JobType
from inkwell_schemas.exceptions import TransientExternalError
from inkwell_store import JobStore

from .pipeline import GenerationOrchestrator

SERVICE_NAME = "generation_worker"
logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = {
    JobType.SEQUENTIAL_UNIT: 1,
    JobType.FAN_OUT_UNIT: 5,
    JobType.SINGLE_REGENERATION: 1,
}

_CONCURRENCY_ENV = {
    JobType.SEQUENTIAL_UNIT: "WORKER_CONCURRENCY_SEQUENTIAL",
    JobType.FAN_OUT_UNIT: "WORKER_CONCURRENCY_FAN_OUT",
    JobType.SINGLE_REGENERATION: "WORKER_CONCURRENCY_REGENERATION",
}


@dataclass(slots=True)
class WorkerSettings:
    concurrency: dict[JobType, int] = field(default_factory=lambda: dict(DEFAULT_CONCURRENCY))
    poll_seconds: float = 2.0
    backoff_base_seconds: float = 5.0
    metrics_port: int = 9500

    @classmethod
    def from_env(cls) -> "WorkerSettings":
        concurrency = {
            job_type: max(1, int(os.getenv(env_name, str(DEFAULT_CONCURRENCY[job_type]))))
            for job_type, env_name in _CONCURRENCY_ENV.items()
        }
        return cls(
            concurrency=concurrency,
            poll_seconds=float(os.getenv("WORKER_POLL_SECONDS", "2")),
            backoff_base_seconds=float(os.getenv("WORKER_BACKOFF_SECONDS", "5")),
            metrics_port=int(os.getenv("WORKER_METRICS_PORT", "9500")),
        )


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, GenerationFailed):
        return exc.retryable
    return isinstance(exc, TransientExternalError)


class GenerationWorker:
    """Runs ``concurrency[job_type]`` claim loops per job type.

    The cap is also passed to :meth:`JobStore.claim`, which enforces it across
    every worker process sharing the queue.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        jobs: JobStore,
        settings: Optional[WorkerSettings] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._jobs = jobs
        self.settings = settings or WorkerSettings()

    async def run_once(self, job_type: JobType) -> bool:
        """Claim and execute a single job; returns ``False`` when none was runnable."""

        job = await self._jobs.claim(job_type, max_running=self.settings.concurrency[job_type])
        if job is None:
            return False
        await self._execute(job)
        return True

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        lanes = [
            asyncio.create_task(self._lane(job_type, stop), name=f"{job_type.value}-{slot}")
            for job_type, count in self.settings.concurrency.items()
            for slot in range(count)
        ]
        logger.info(
            "Generation worker started",
            extra={"lanes": {job_type.value: count for job_type, count in self.settings.concurrency.items()}},
        )
        try:
            await stop.wait()
        finally:
            for lane in lanes:
                lane.cancel()
            await asyncio.gather(*lanes, return_exceptions=True)

    async def _lane(self, job_type: JobType, stop: asyncio.Event) -> None:
        while not stop.is_set():
            record_worker_heartbeat(SERVICE_NAME)
            try:
                ran = await self.run_once(job_type)
            except Exception:  # keep the lane alive when the queue itself is unavailable
                logger.exception("Job claim failed", extra={"job_type": job_type.value})
                ran = False
            if not ran:
                await asyncio.sleep(self.settings.poll_seconds)

    async def _execute(self, job: Job) -> None:
        started = perf_counter()
        status = "success"
        with log_context(job_id=str(job.id), job_type=job.job_type.value, attempt=job.attempts):
            try:
                await self._orchestrator.handle(job)
                await self._jobs.complete(job.id)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                if is_transient(exc) and job.attempts < job.max_attempts:
                    status = "retry"
                    delay = self.settings.backoff_base_seconds * (2 ** (job.attempts - 1))
                    logger.warning(
                        "Transient job failure, retrying",
                        extra={"error": message, "delay_seconds": delay},
                    )
                    await self._jobs.retry_later(job.id, message, delay)
                else:
                    status = "failed"
                    await self._orchestrator.abandon(job, exc)
                    await self._jobs.fail(job.id, message)
            finally:
                observe_job(
                    job.job_type.value,
                    perf_counter() - started,
                    service_name=SERVICE_NAME,
                    status=status,
                )


def main() -> None:
    from .deps import get_runtime

    setup_logging(SERVICE_NAME)
    settings = WorkerSettings.from_env()
    start_metrics_server(settings.metrics_port)
    logger.info("generation worker booted", extra={"metrics_port": settings.metrics_port})

    async def _run() -> None:
        runtime = get_runtime()
        await runtime.open()
        try:
            await GenerationWorker(runtime.orchestrator, runtime.jobs, settings).run()
        finally:
            await runtime.close()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
