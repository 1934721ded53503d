from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from researcher.errors import TaskNotFound
from researcher.models.research import ResearchTask, SearchResult, TaskStatus
from researcher.services import logger as log_service

UPDATABLE_FIELDS = frozenset(
    {"status", "progress", "report", "error", "started_at", "completed_at"}
)


class TaskStore(Protocol):
    async def create_task(self, query: str) -> ResearchTask: ...
    async def update_task(self, task_id: str, **fields: Any) -> ResearchTask: ...
    async def get_task(self, task_id: str) -> ResearchTask | None: ...
    async def create_source(self, task_id: str, result: SearchResult) -> None: ...

    async def complete_task(
        self, task_id: str, sources: list[SearchResult], **fields: Any
    ) -> ResearchTask:
        """Replace the task's sources and apply `fields` as one write."""
        ...

    async def get_sources(self, task_id: str) -> list[SearchResult]: ...
    async def close(self) -> None: ...


def clean_updates(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown task fields: {sorted(unknown)}")
    updates = dict(fields)
    if isinstance(updates.get("status"), TaskStatus):
        updates["status"] = updates["status"].value
    return updates


class InMemoryTaskStore:
    """Process-local store used for tests and single-process deployments."""

    def __init__(self) -> None:
        self._tasks: dict[str, ResearchTask] = {}
        self._sources: dict[str, list[SearchResult]] = {}

    async def create_task(self, query: str) -> ResearchTask:
        task = ResearchTask(
            id=str(uuid4()),
            query=query,
            status=TaskStatus.PENDING,
            progress=0,
            created_at=datetime.now(timezone.utc),
        )
        self._tasks[task.id] = task
        self._sources[task.id] = []
        log_service.log_store_operation("memory", "create_task", task.id)
        return dataclasses.replace(task)

    def _apply(self, task_id: str, fields: dict[str, Any]) -> ResearchTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        updates = clean_updates(fields)
        if "status" in updates:
            updates["status"] = TaskStatus(updates["status"])
        return dataclasses.replace(task, **updates)

    async def update_task(self, task_id: str, **fields: Any) -> ResearchTask:
        updated = self._apply(task_id, fields)
        self._tasks[task_id] = updated
        log_service.log_store_operation(
            "memory", "update_task", task_id, details=", ".join(sorted(fields))
        )
        return dataclasses.replace(updated)

    async def complete_task(
        self, task_id: str, sources: list[SearchResult], **fields: Any
    ) -> ResearchTask:
        updated = self._apply(task_id, fields)
        self._tasks[task_id] = updated
        self._sources[task_id] = list(sources)
        log_service.log_store_operation(
            "memory", "complete_task", task_id, details=f"{len(sources)} sources"
        )
        return dataclasses.replace(updated)

    async def get_task(self, task_id: str) -> ResearchTask | None:
        task = self._tasks.get(task_id)
        return dataclasses.replace(task) if task is not None else None

    async def create_source(self, task_id: str, result: SearchResult) -> None:
        if task_id not in self._tasks:
            raise TaskNotFound(task_id)
        self._sources[task_id].append(result)

    async def get_sources(self, task_id: str) -> list[SearchResult]:
        return list(self._sources.get(task_id, []))

    async def close(self) -> None:
        return None
