"""PostgreSQL task store using asyncpg."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import asyncpg

from researcher.errors import TaskNotFound
from researcher.models.research import ResearchTask, SearchResult
from researcher.services import logger as log_service
from researcher.services.task_store import clean_updates

TASK_COLUMNS = "id, query, status, progress, report, error, created_at, started_at, completed_at"

SCHEMA = """
CREATE TABLE IF NOT EXISTS research_tasks (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    query TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    progress INTEGER NOT NULL DEFAULT 0,
    report TEXT,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS research_sources (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    task_id UUID NOT NULL REFERENCES research_tasks(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    content TEXT NOT NULL,
    snippet TEXT,
    relevance_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

ALTER TABLE research_sources ADD COLUMN IF NOT EXISTS position INTEGER NOT NULL DEFAULT 0;

CREATE INDEX IF NOT EXISTS research_sources_task_id_idx ON research_sources (task_id);
"""


def _as_uuid(task_id: str) -> UUID | None:
    try:
        return UUID(str(task_id))
    except ValueError:
        return None


async def _update_row(conn: asyncpg.Connection, uid: UUID, updates: dict[str, Any]):
    set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(updates))
    return await conn.fetchrow(
        f"""
        UPDATE research_tasks
        SET {set_clause}
        WHERE id = $1
        RETURNING {TASK_COLUMNS}
        """,
        uid,
        *updates.values(),
    )


class PostgresTaskStore:
    def __init__(self, database_url: str, *, min_size: int = 1, max_size: int = 10):
        if not database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        return self._pool

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # --- Tasks ---

    async def create_task(self, query: str) -> ResearchTask:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO research_tasks (query, status, progress)
                    VALUES ($1, 'pending', 0)
                    RETURNING {TASK_COLUMNS}
                    """,
                    query,
                )
        except asyncpg.PostgresError as e:
            log_service.log_store_operation("postgres", "create_task", None, "error", error=str(e))
            raise
        log_service.log_store_operation("postgres", "create_task", str(row["id"]))
        return ResearchTask.from_row(dict(row))

    async def update_task(self, task_id: str, **fields: Any) -> ResearchTask:
        uid = _as_uuid(task_id)
        if uid is None:
            raise TaskNotFound(task_id)
        updates = clean_updates(fields)
        if not updates:
            task = await self.get_task(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            return task

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await _update_row(conn, uid, updates)
        except asyncpg.PostgresError as e:
            log_service.log_store_operation("postgres", "update_task", task_id, "error", error=str(e))
            raise
        if row is None:
            raise TaskNotFound(task_id)
        log_service.log_store_operation(
            "postgres", "update_task", task_id, details=", ".join(sorted(updates))
        )
        return ResearchTask.from_row(dict(row))

    async def complete_task(
        self, task_id: str, sources: list[SearchResult], **fields: Any
    ) -> ResearchTask:
        """Replace the task's sources and update it in one transaction.

        A retried attempt therefore never leaves duplicate or partial sources.
        """
        uid = _as_uuid(task_id)
        if uid is None:
            raise TaskNotFound(task_id)
        updates = clean_updates(fields)
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("DELETE FROM research_sources WHERE task_id = $1", uid)
                    if sources:
                        await conn.executemany(
                            """
                            INSERT INTO research_sources
                                (task_id, title, url, content, snippet, relevance_score, position)
                            VALUES ($1, $2, $3, $4, $5, $6, $7)
                            """,
                            [
                                (uid, r.title, r.url, r.content, r.snippet, r.score or 0.0, i)
                                for i, r in enumerate(sources)
                            ],
                        )
                    if updates:
                        row = await _update_row(conn, uid, updates)
                    else:
                        row = await conn.fetchrow(
                            f"SELECT {TASK_COLUMNS} FROM research_tasks WHERE id = $1", uid
                        )
                    if row is None:
                        raise TaskNotFound(task_id)
        except asyncpg.PostgresError as e:
            log_service.log_store_operation("postgres", "complete_task", task_id, "error", error=str(e))
            raise
        log_service.log_store_operation(
            "postgres", "complete_task", task_id, details=f"{len(sources)} sources"
        )
        return ResearchTask.from_row(dict(row))

    async def get_task(self, task_id: str) -> ResearchTask | None:
        uid = _as_uuid(task_id)
        if uid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {TASK_COLUMNS} FROM research_tasks WHERE id = $1",
                uid,
            )
        return ResearchTask.from_row(dict(row)) if row else None

    # --- Sources ---

    async def create_source(self, task_id: str, result: SearchResult) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_sources
                    (task_id, title, url, content, snippet, relevance_score, position)
                SELECT $1, $2, $3, $4, $5, $6, COALESCE(MAX(position) + 1, 0)
                FROM research_sources
                WHERE task_id = $1
                """,
                UUID(str(task_id)),
                result.title,
                result.url,
                result.content,
                result.snippet,
                result.score or 0.0,
            )

    async def get_sources(self, task_id: str) -> list[SearchResult]:
        uid = _as_uuid(task_id)
        if uid is None:
            return []
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT title, url, content, snippet, relevance_score
                FROM research_sources
                WHERE task_id = $1
                ORDER BY position, created_at
                """,
                uid,
            )
        return [
            SearchResult(
                title=r["title"],
                url=r["url"],
                content=r["content"],
                snippet=r["snippet"],
                score=r["relevance_score"],
            )
            for r in rows
        ]
