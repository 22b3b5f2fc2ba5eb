"""Process-wide wiring of the orchestrator's collaborators."""

from __future__ import annotations

import os
from functools import lru_cache

from psycopg_pool import AsyncConnectionPool

from inkwell_providers import ProviderFactory
from inkwell_store import (
    ArtifactStorage,
    PostgresJobStore,
    build_project_repositories,
    create_pool,
    ensure_schema,
)

from .context import DEFAULT_TOKEN_LIMIT
from .generation import ContentGenerationClient
from .lock import ProjectLock
from .pipeline import GenerationOrchestrator


class Runtime:
    def __init__(self, pool: AsyncConnectionPool, lock: ProjectLock) -> None:
        self.pool = pool
        self.lock = lock
        self.jobs = PostgresJobStore(pool)
        self.projects = build_project_repositories(pool)
        self.orchestrator = GenerationOrchestrator(
            self.projects,
            self.jobs,
            lock,
            ContentGenerationClient(ProviderFactory.create(), context_token_limit=DEFAULT_TOKEN_LIMIT),
            ArtifactStorage.from_env(),
        )
        self._opened = False

    async def open(self) -> None:
        if self._opened:
            return
        await self.pool.open()
        if os.getenv("INKWELL_BOOTSTRAP_SCHEMA", "true").lower() in {"1", "true", "yes"}:
            await ensure_schema(self.pool)
        self._opened = True

    async def close(self) -> None:
        if not self._opened:
            return
        await self.pool.close()
        self._opened = False


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return Runtime(create_pool(), ProjectLock.from_env())
