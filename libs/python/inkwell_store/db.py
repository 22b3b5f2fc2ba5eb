"""Connection pool helpers shared by every repository."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool


def conninfo_from_env() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    # psycopg connection URLs do not use SQLAlchemy's driver suffix.
    return database_url.replace("+psycopg", "")


def create_pool(conninfo: str | None = None, *, min_size: int = 1, max_size: int = 10) -> AsyncConnectionPool:
    """Build a closed pool; callers ``await pool.open()`` inside their event loop."""

    return AsyncConnectionPool(
        conninfo or conninfo_from_env(),
        min_size=min_size,
        max_size=max_size,
        open=False,
    )


@asynccontextmanager
async def transaction(pool: AsyncConnectionPool) -> AsyncIterator[AsyncConnection]:
    """Yield a pooled connection inside one explicit transaction block.

    Leaving the block normally commits; any exception rolls back and propagates.
    """

    async with pool.connection() as conn:
        async with conn.transaction():
            yield conn
