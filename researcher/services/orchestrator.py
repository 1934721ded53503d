from __future__ import annotations

from typing import Any

from researcher.errors import QueryValidationError, TaskNotFound
from researcher.models.research import ResearchTask
from researcher.models.schemas import QUERY_MAX_LENGTH, QUERY_MIN_LENGTH
from researcher.services import logger as log_service
from researcher.services.job_queue import JobQueue
from researcher.services.task_store import TaskStore


def validate_query(query: Any) -> str:
    if not isinstance(query, str):
        raise QueryValidationError("query must be a string")
    if not QUERY_MIN_LENGTH <= len(query) <= QUERY_MAX_LENGTH:
        raise QueryValidationError(
            f"query must be between {QUERY_MIN_LENGTH} and {QUERY_MAX_LENGTH} characters"
        )
    return query


class TaskOrchestrator:
    """Creates research tasks, queues their jobs, and serves read-only views."""

    def __init__(self, store: TaskStore, queue: JobQueue):
        self.store = store
        self.queue = queue

    async def start_research(self, query: str) -> ResearchTask:
        query = validate_query(query)
        task = await self.store.create_task(query)
        log_service.log_event(
            event_type="task_created",
            message="Research task created",
            task_id=task.id,
            query=query[:100],
        )
        await self.queue.enqueue(task.id, query)
        return task

    async def get_research(self, task_id: str) -> ResearchTask:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        task.sources = await self.store.get_sources(task_id)
        return task

    async def get_status(self, task_id: str) -> dict[str, Any]:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return {
            "status": task.status.value,
            "progress": task.progress,
            "error": task.error,
        }
