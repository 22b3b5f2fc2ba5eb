"""Per-project generation lock stored in Redis."""

from __future__ import annotations

import logging
import os
from uuid import UUID, uuid4

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = int(os.getenv("PROJECT_LOCK_TTL_SECONDS", "300"))


class ProjectLock:
    """Advisory ``SET NX EX`` lock keyed by ``project:<id>``.

    A ``False`` from :meth:`acquire` means a generation chain is already active
    for the project; callers surface it as a conflict and never retry. The TTL
    bounds how long a crashed worker can strand a project.
    """

    def __init__(self, redis: Redis, *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = redis
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_env(cls) -> "ProjectLock":
        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        return cls(Redis.from_url(redis_url, encoding="utf-8", decode_responses=True))

    @staticmethod
    def key_for(project_id: UUID | str) -> str:
        return f"project:{project_id}"

    async def acquire(self, project_id: UUID | str) -> bool:
        acquired = await self._redis.set(
            self.key_for(project_id), uuid4().hex, nx=True, ex=self.ttl_seconds
        )
        logger.debug(
            "Project lock acquire attempted",
            extra={"project_id": str(project_id), "acquired": bool(acquired)},
        )
        return bool(acquired)

    async def release(self, project_id: UUID | str) -> None:
        await self._redis.delete(self.key_for(project_id))

    async def held(self, project_id: UUID | str) -> bool:
        return bool(await self._redis.exists(self.key_for(project_id)))

    async def refresh(self, project_id: UUID | str) -> bool:
        """Push the expiry out again while a chain hands off to its next unit."""

        return bool(await self._redis.expire(self.key_for(project_id), self.ttl_seconds))
