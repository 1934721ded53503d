from __future__ import annotations

from datetime import datetime, timezone

from researcher.models.events import EventType, SSEEvent

STEP_MESSAGES = {
    "planning": "Planning research strategy...",
    "searching": "Searching the web for relevant sources...",
    "analyzing": "Analyzing and synthesizing findings...",
    "generating": "Generating comprehensive report...",
}
DEFAULT_STEP_MESSAGE = "Processing..."


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def step_message(step: str) -> str:
    return STEP_MESSAGES.get(step, DEFAULT_STEP_MESSAGE)


def progress(step: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.PROGRESS,
        data={"step": step, "message": step_message(step), "timestamp": _timestamp()},
    )


def complete(report: str) -> SSEEvent:
    return SSEEvent(event=EventType.COMPLETE, data={"report": report, "timestamp": _timestamp()})


def error(message: str) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"error": message, "timestamp": _timestamp()})
