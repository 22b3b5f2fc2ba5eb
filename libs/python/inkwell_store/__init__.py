"""Persistence layer: pooled psycopg access, repositories and the job queue."""

from .artifacts import ArtifactStorage
from .db import conninfo_from_env, create_pool, transaction
from .jobs import JobStore, PostgresJobStore
from .orders import OrderClaim, OrderRepository, PostgresOrderRepository
from .projects import (
    BOOK_TABLES,
    BookTables,
    PostgresProjectRepository,
    ProjectRepository,
    build_project_repositories,
)
from .schema import ensure_schema

__all__ = [
    "ArtifactStorage",
    "conninfo_from_env",
    "create_pool",
    "transaction",
    "JobStore",
    "PostgresJobStore",
    "OrderClaim",
    "OrderRepository",
    "PostgresOrderRepository",
    "BOOK_TABLES",
    "BookTables",
    "PostgresProjectRepository",
    "ProjectRepository",
    "build_project_repositories",
    "ensure_schema",
]
