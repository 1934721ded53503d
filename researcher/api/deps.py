from __future__ import annotations

from fastapi import Request

from researcher.services.broadcaster import ProgressBroadcaster
from researcher.services.orchestrator import TaskOrchestrator


def get_orchestrator(request: Request) -> TaskOrchestrator:
    return request.app.state.components.orchestrator


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.components.broadcaster
