"""Project and unit persistence, routed per book type through a lookup table."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from inkwell_schemas import (
    BookType,
    CharacterReference,
    PagePlanEntry,
    Project,
    ProjectCounter,
    ProjectStatus,
    StoryParameters,
    Unit,
)
from inkwell_schemas.exceptions import NotFoundError


@dataclass(frozen=True, slots=True)
class BookTables:
    projects: str
    units: str
    unit_column: str


BOOK_TABLES: dict[BookType, BookTables] = {
    BookType.TEXT_BOOK: BookTables("text_books", "chapters", "chapter_number"),
    BookType.PICTURE_BOOK: BookTables("picture_books", "pages", "page_number"),
}

_unmapped = set(BookType) - set(BOOK_TABLES)
if _unmapped:  # pragma: no cover - guards enum additions
    raise RuntimeError(f"No table mapping for book types: {sorted(t.value for t in _unmapped)}")


class ProjectRepository(ABC):
    """Operations every book type supports, whatever tables back it."""

    book_type: BookType

    @abstractmethod
    async def get(self, project_id: UUID) -> Optional[Project]:
        ...

    @abstractmethod
    async def transition(
        self,
        project_id: UUID,
        *,
        expected: Iterable[ProjectStatus],
        status: ProjectStatus,
        error: Optional[str] = None,
        progress: Optional[str] = None,
    ) -> bool:
        """Compare-and-set the status; returns ``False`` when the current status is not expected."""

    @abstractmethod
    async def set_progress(self, project_id: UUID, progress: str) -> None:
        ...

    @abstractmethod
    async def save_story_bible(self, project_id: UUID, bible: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def save_story_plan(self, project_id: UUID, plan: list[PagePlanEntry]) -> None:
        """Store the plan and seed one unit per page with its text and no image.

        Units beyond the plan are dropped, so unit indices always run 1..len(plan).
        """

    @abstractmethod
    async def save_character_reference(self, project_id: UUID, reference: CharacterReference) -> None:
        ...

    @abstractmethod
    async def save_prompt_details(
        self, project_id: UUID, details: StoryParameters, total_units: int
    ) -> None:
        ...

    @abstractmethod
    async def upsert_unit(self, unit: Unit) -> Unit:
        """Insert or replace the unit keyed by ``(project_id, unit_index)``."""

    @abstractmethod
    async def attach_image(self, project_id: UUID, unit_index: int, image_url: str) -> Unit:
        """Set the image of an existing unit; raises ``NotFoundError`` when there is none."""

    @abstractmethod
    async def list_units(self, project_id: UUID) -> list[Unit]:
        ...

    @abstractmethod
    async def increment_counter(self, project_id: UUID, counter: ProjectCounter, delta: int = 1) -> int:
        ...

    @abstractmethod
    async def set_privacy(self, project_id: UUID, owner_id: str, is_public: bool) -> Project:
        ...


class PostgresProjectRepository(ProjectRepository):
    def __init__(self, pool: AsyncConnectionPool, book_type: BookType) -> None:
        self._pool = pool
        self.book_type = book_type
        self._tables = BOOK_TABLES[book_type]
        self._projects = sql.Identifier(self._tables.projects)
        self._units = sql.Identifier(self._tables.units)
        self._unit_column = sql.Identifier(self._tables.unit_column)

    async def get(self, project_id: UUID) -> Optional[Project]:
        query = sql.SQL("SELECT * FROM {projects} WHERE id = %s").format(projects=self._projects)
        async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, (project_id,))
            row = await cur.fetchone()
        return self._project_from_row(row) if row else None

    async def transition(
        self,
        project_id: UUID,
        *,
        expected: Iterable[ProjectStatus],
        status: ProjectStatus,
        error: Optional[str] = None,
        progress: Optional[str] = None,
    ) -> bool:
        query = sql.SQL(
            """
            UPDATE {projects}
            SET status = %s,
                generation_error = %s,
                generation_progress = COALESCE(%s, generation_progress),
                last_modified = NOW()
            WHERE id = %s AND status = ANY(%s)
            """
        ).format(projects=self._projects)
        expected_values = [item.value for item in expected]
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(query, (status.value, error, progress, project_id, expected_values))
            return cur.rowcount == 1

    async def set_progress(self, project_id: UUID, progress: str) -> None:
        await self._update_columns(project_id, {"generation_progress": progress})

    async def save_story_bible(self, project_id: UUID, bible: Mapping[str, Any]) -> None:
        await self._update_columns(project_id, {"story_bible": Jsonb(dict(bible))})

    async def save_story_plan(self, project_id: UUID, plan: list[PagePlanEntry]) -> None:
        payload = [entry.model_dump(mode="json") for entry in plan]
        update = sql.SQL(
            "UPDATE {projects} SET story_plan = %s, total_units = %s, last_modified = NOW() WHERE id = %s"
        ).format(projects=self._projects)
        seed = sql.SQL(
            """
            INSERT INTO {units} (book_id, {unit_column}, content, image_url, plan)
            VALUES (%s, %s, %s, NULL, %s)
            ON CONFLICT (book_id, {unit_column}) DO UPDATE
            SET content = EXCLUDED.content,
                image_url = NULL,
                plan = EXCLUDED.plan,
                updated_at = NOW()
            """
        ).format(units=self._units, unit_column=self._unit_column)
        prune = sql.SQL("DELETE FROM {units} WHERE book_id = %s AND {unit_column} > %s").format(
            units=self._units, unit_column=self._unit_column
        )
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(update, (Jsonb(payload), len(plan), project_id))
                    if cur.rowcount != 1:
                        raise NotFoundError(f"Project {project_id} not found")
                    await cur.executemany(
                        seed,
                        [
                            (project_id, entry.page_number, entry.page_text, Jsonb(data))
                            for entry, data in zip(plan, payload)
                        ],
                    )
                    await cur.execute(prune, (project_id, len(plan)))

    async def save_character_reference(self, project_id: UUID, reference: CharacterReference) -> None:
        await self._update_columns(
            project_id, {"character_reference": Jsonb(reference.model_dump(mode="json"))}
        )

    async def save_prompt_details(
        self, project_id: UUID, details: StoryParameters, total_units: int
    ) -> None:
        await self._update_columns(
            project_id,
            {"prompt_details": Jsonb(details.model_dump(mode="json")), "total_units": total_units},
        )

    async def upsert_unit(self, unit: Unit) -> Unit:
        query = sql.SQL(
            """
            INSERT INTO {units} (book_id, {unit_column}, content, image_url, plan)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (book_id, {unit_column}) DO UPDATE
            SET content = EXCLUDED.content,
                image_url = EXCLUDED.image_url,
                plan = EXCLUDED.plan,
                updated_at = NOW()
            RETURNING book_id, {unit_column} AS unit_index, content, image_url, plan, created_at, updated_at
            """
        ).format(units=self._units, unit_column=self._unit_column)
        touch = sql.SQL("UPDATE {projects} SET last_modified = NOW() WHERE id = %s").format(
            projects=self._projects
        )
        plan = Jsonb(unit.plan) if unit.plan is not None else None
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        query, (unit.project_id, unit.unit_index, unit.content, unit.image_url, plan)
                    )
                    row = await cur.fetchone()
                    await cur.execute(touch, (unit.project_id,))
        return _unit_from_row(row)

    async def attach_image(self, project_id: UUID, unit_index: int, image_url: str) -> Unit:
        query = sql.SQL(
            """
            UPDATE {units}
            SET image_url = %s, updated_at = NOW()
            WHERE book_id = %s AND {unit_column} = %s
            RETURNING book_id, {unit_column} AS unit_index, content, image_url, plan, created_at, updated_at
            """
        ).format(units=self._units, unit_column=self._unit_column)
        touch = sql.SQL("UPDATE {projects} SET last_modified = NOW() WHERE id = %s").format(
            projects=self._projects
        )
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, (image_url, project_id, unit_index))
                    row = await cur.fetchone()
                    if row is None:
                        raise NotFoundError(f"Project {project_id} has no unit {unit_index}")
                    await cur.execute(touch, (project_id,))
        return _unit_from_row(row)

    async def list_units(self, project_id: UUID) -> list[Unit]:
        query = sql.SQL(
            """
            SELECT book_id, {unit_column} AS unit_index, content, image_url, plan, created_at, updated_at
            FROM {units}
            WHERE book_id = %s
            ORDER BY {unit_column} ASC
            """
        ).format(units=self._units, unit_column=self._unit_column)
        async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, (project_id,))
            rows = await cur.fetchall()
        return [_unit_from_row(row) for row in rows]

    async def increment_counter(self, project_id: UUID, counter: ProjectCounter, delta: int = 1) -> int:
        column = sql.Identifier(counter.value)
        query = sql.SQL(
            "UPDATE {projects} SET {column} = GREATEST({column} + %s, 0) WHERE id = %s RETURNING {column}"
        ).format(projects=self._projects, column=column)
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(query, (delta, project_id))
                    row = await cur.fetchone()
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        return int(row[0])

    async def set_privacy(self, project_id: UUID, owner_id: str, is_public: bool) -> Project:
        query = sql.SQL(
            """
            UPDATE {projects}
            SET is_public = %s, last_modified = NOW()
            WHERE id = %s AND owner_id = %s
            RETURNING *
            """
        ).format(projects=self._projects)
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, (is_public, project_id, owner_id))
                    row = await cur.fetchone()
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        return self._project_from_row(row)

    async def _update_columns(self, project_id: UUID, values: Mapping[str, Any]) -> None:
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in values
        )
        query = sql.SQL(
            "UPDATE {projects} SET {assignments}, last_modified = NOW() WHERE id = %s"
        ).format(projects=self._projects, assignments=assignments)
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(query, (*values.values(), project_id))
            if cur.rowcount != 1:
                raise NotFoundError(f"Project {project_id} not found")

    def _project_from_row(self, row: Mapping[str, Any]) -> Project:
        data = dict(row)
        data["book_type"] = self.book_type
        data["story_plan"] = data.get("story_plan") or []
        return Project.model_validate(data)


def _unit_from_row(row: Mapping[str, Any]) -> Unit:
    data = dict(row)
    data["project_id"] = data.pop("book_id")
    return Unit.model_validate(data)


def build_project_repositories(pool: AsyncConnectionPool) -> dict[BookType, ProjectRepository]:
    return {book_type: PostgresProjectRepository(pool, book_type) for book_type in BOOK_TABLES}
