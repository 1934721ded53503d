from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from researcher.agents.pipeline import AgentPipeline
from researcher.errors import InvalidTransition, TaskNotFound
from researcher.models.research import (
    ALLOWED_TRANSITIONS,
    ResearchJob,
    ResearchState,
    ResearchTask,
    SearchResult,
    TaskStatus,
)
from researcher.services import logger as log_service
from researcher.services.broadcaster import ProgressBroadcaster
from researcher.services.task_store import TaskStore

PROGRESS_BY_STEP = {
    "planning": 20,
    "searching": 40,
    "analyzing": 70,
    "generating": 95,
}


def progress_for_step(step: str) -> int:
    return PROGRESS_BY_STEP.get(step, 0)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResearchProcessor:
    """Executes one attempt of a research job and records the outcome.

    Only the final attempt's failure marks the task failed and notifies
    subscribers; earlier failures are re-raised for the queue to retry
    while the task stays in ``processing``.
    """

    def __init__(
        self,
        store: TaskStore,
        pipeline: AgentPipeline,
        broadcaster: ProgressBroadcaster,
    ):
        self.store = store
        self.pipeline = pipeline
        self.broadcaster = broadcaster

    async def process(self, job: ResearchJob) -> ResearchState | None:
        task = await self.store.get_task(job.task_id)
        if task is None:
            raise TaskNotFound(job.task_id)
        if task.status.is_terminal:
            log_service.log_event(
                event_type="job_skipped",
                message="Task already finished; nothing to do",
                level=logging.WARNING,
                task_id=task.id,
                status=task.status.value,
            )
            return None

        task = await self._transition(task, TaskStatus.PROCESSING, started_at=_now(), progress=0)
        log_service.log_event(
            event_type="job_started",
            message="Research attempt started",
            task_id=task.id,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
        )

        async def on_progress(step: str) -> None:
            value = progress_for_step(step)
            job.progress = value
            if value:
                await self.store.update_task(job.task_id, progress=value)
            await self.broadcaster.emit_progress(job.task_id, step)

        try:
            state = await self.pipeline.execute(
                job.query,
                on_progress,
                task_id=job.task_id,
                job_id=job.id,
                attempt=job.attempt,
            )
            task = await self._transition(
                task,
                TaskStatus.COMPLETE,
                sources=state.search_results,
                report=state.report,
                error=None,
                progress=100,
                completed_at=_now(),
            )
        except Exception as exc:
            await self._record_failure(task, job, exc)
            raise

        job.progress = 100
        log_service.log_event(
            event_type="job_completed",
            message="Research completed",
            task_id=task.id,
            attempt=job.attempt,
            sources=len(state.search_results),
            findings=len(state.findings),
            duration_seconds=round(state.elapsed_seconds(), 3),
        )
        await self.broadcaster.emit_complete(job.task_id, state.report)
        return state

    async def _record_failure(self, task: ResearchTask, job: ResearchJob, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        if not job.is_final_attempt:
            log_service.log_event(
                event_type="attempt_failed",
                message="Research attempt failed; task stays processing",
                level=logging.WARNING,
                task_id=task.id,
                attempt=job.attempt,
                max_attempts=job.max_attempts,
                error=message,
            )
            return

        await self._transition(
            task,
            TaskStatus.FAILED,
            error=message,
            report=None,
            completed_at=_now(),
        )
        log_service.log_event(
            event_type="task_failed",
            message="Research failed after final attempt",
            level=logging.ERROR,
            task_id=task.id,
            attempts=job.attempt,
            error=message,
        )
        await self.broadcaster.emit_error(job.task_id, message)

    async def _transition(
        self,
        task: ResearchTask,
        target: TaskStatus,
        *,
        sources: list[SearchResult] | None = None,
        **fields: Any,
    ) -> ResearchTask:
        if target not in ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransition(task.id, task.status.value, target.value)
        if sources is not None:
            # Sources replace any left by an earlier attempt, in the same write.
            return await self.store.complete_task(task.id, sources, status=target, **fields)
        return await self.store.update_task(task.id, status=target, **fields)
