"""Table definitions bootstrapped at service start-up."""

from __future__ import annotations

import logging

from psycopg_pool import AsyncConnectionPool

from .db import transaction

logger = logging.getLogger(__name__)

_PROJECT_COLUMNS = """
    id UUID PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'Untitled',
    status TEXT NOT NULL DEFAULT 'draft',
    product_id TEXT,
    story_bible JSONB,
    story_plan JSONB,
    character_reference JSONB,
    prompt_details JSONB,
    total_units INTEGER NOT NULL DEFAULT 0,
    generation_progress TEXT,
    generation_error TEXT,
    is_public BOOLEAN NOT NULL DEFAULT FALSE,
    like_count INTEGER NOT NULL DEFAULT 0 CHECK (like_count >= 0),
    comment_count INTEGER NOT NULL DEFAULT 0 CHECK (comment_count >= 0),
    last_modified TIMESTAMPTZ NOT NULL DEFAULT NOW()
"""

_UNIT_COLUMNS = """
    book_id UUID NOT NULL REFERENCES {projects}(id) ON DELETE CASCADE,
    {unit_column} INTEGER NOT NULL CHECK ({unit_column} >= 1),
    content TEXT NOT NULL DEFAULT '',
    image_url TEXT,
    plan JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (book_id, {unit_column})
"""

DDL_STATEMENTS = [
    f"CREATE TABLE IF NOT EXISTS text_books ({_PROJECT_COLUMNS})",
    f"CREATE TABLE IF NOT EXISTS picture_books ({_PROJECT_COLUMNS})",
    "CREATE TABLE IF NOT EXISTS chapters ("
    + _UNIT_COLUMNS.format(projects="text_books", unit_column="chapter_number")
    + ")",
    "CREATE TABLE IF NOT EXISTS pages ("
    + _UNIT_COLUMNS.format(projects="picture_books", unit_column="page_number")
    + ")",
    """
    CREATE TABLE IF NOT EXISTS orders (
        id UUID PRIMARY KEY,
        project_id UUID NOT NULL,
        owner_id TEXT NOT NULL,
        book_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        print_cost NUMERIC(10, 2) NOT NULL,
        shipping_cost NUMERIC(10, 2) NOT NULL DEFAULT 0,
        margin NUMERIC(10, 2) NOT NULL,
        total NUMERIC(10, 2) NOT NULL,
        currency TEXT NOT NULL DEFAULT 'USD',
        interior_url TEXT NOT NULL,
        cover_url TEXT NOT NULL,
        actual_page_count INTEGER NOT NULL,
        is_fallback BOOLEAN NOT NULL DEFAULT FALSE,
        product_sku TEXT NOT NULL,
        shipping_level TEXT NOT NULL DEFAULT 'MAIL',
        shipping_address JSONB,
        payment_session_id TEXT UNIQUE,
        vendor_job_id TEXT,
        vendor_job_status TEXT,
        customer_email TEXT,
        error_message TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS orders_project_idx ON orders (project_id)",
    """
    CREATE TABLE IF NOT EXISTS job_groups (
        id UUID PRIMARY KEY,
        project_id UUID NOT NULL,
        book_type TEXT NOT NULL,
        total INTEGER NOT NULL CHECK (total >= 1),
        succeeded INTEGER NOT NULL DEFAULT 0,
        failed INTEGER NOT NULL DEFAULT 0,
        final_status TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "ALTER TABLE job_groups ADD COLUMN IF NOT EXISTS final_status TEXT",
    """
    CREATE TABLE IF NOT EXISTS generation_jobs (
        id UUID PRIMARY KEY,
        job_type TEXT NOT NULL,
        project_id UUID NOT NULL,
        owner_id TEXT NOT NULL,
        book_type TEXT NOT NULL,
        unit_index INTEGER NOT NULL CHECK (unit_index >= 1),
        guidance TEXT,
        group_id UUID REFERENCES job_groups(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'queued',
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 1,
        error TEXT,
        available_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        lease_expires_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS generation_jobs_claim_idx ON generation_jobs (job_type, status, available_at)",
]


async def ensure_schema(pool: AsyncConnectionPool) -> None:
    async with transaction(pool) as conn:
        for statement in DDL_STATEMENTS:
            await conn.execute(statement)
    logger.info("Database schema ensured", extra={"statement_count": len(DDL_STATEMENTS)})
