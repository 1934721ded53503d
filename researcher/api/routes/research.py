from __future__ import annotations

import json as _json

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from researcher.api.deps import get_broadcaster, get_orchestrator
from researcher.errors import QueryValidationError, TaskNotFound
from researcher.models.events import SSEEvent
from researcher.models.research import ResearchTask, TaskStatus
from researcher.models.schemas import CreateResearchRequest, ResearchResponse, StatusResponse
from researcher.services import logger as log_service
from researcher.services import streaming
from researcher.services.broadcaster import ProgressBroadcaster
from researcher.services.orchestrator import TaskOrchestrator

router = APIRouter(prefix="/api/research", tags=["research"])


def _terminal_event(task: ResearchTask) -> SSEEvent | None:
    if task.status == TaskStatus.COMPLETE:
        return streaming.complete(task.report or "")
    if task.status == TaskStatus.FAILED:
        return streaming.error(task.error or "Research failed")
    return None


def _to_sse(event: SSEEvent) -> dict[str, str]:
    return {"event": event.event.value, "data": _json.dumps(event.data)}


@router.post("/start", response_model=ResearchResponse, status_code=201)
async def start_research(
    request: CreateResearchRequest,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """Create a research task and queue it. Poll or stream by the returned id."""
    log_service.log_event(
        event_type="research_requested",
        message="Starting research",
        query=request.query[:100],
    )
    try:
        task = await orchestrator.start_research(request.query)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ResearchResponse.from_task(task)


@router.get("/{task_id}", response_model=ResearchResponse)
async def get_research(
    task_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    try:
        task = await orchestrator.get_research(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ResearchResponse.from_task(task)


@router.get("/{task_id}/status", response_model=StatusResponse)
async def get_status(
    task_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    try:
        status = await orchestrator.get_status(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return StatusResponse(**status)


@router.get("/{task_id}/events")
async def stream_research(
    task_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """SSE stream of progress, complete and error events for one task."""
    try:
        task = await orchestrator.get_research(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    async def event_generator():
        finished = _terminal_event(task)
        if finished is not None:
            yield _to_sse(finished)
            return

        async with broadcaster.subscribe(task_id) as subscription:
            # The task may have finished between the lookup and the subscribe.
            latest = await orchestrator.get_research(task_id)
            finished = _terminal_event(latest)
            if finished is not None:
                yield _to_sse(finished)
                return

            async for event in subscription:
                yield _to_sse(event)

    return EventSourceResponse(event_generator())
