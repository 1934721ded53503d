from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.FAILED)


# processing -> processing covers a retried attempt picking the task up again.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.PROCESSING, TaskStatus.COMPLETE, TaskStatus.FAILED}
    ),
    TaskStatus.COMPLETE: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    content: str
    snippet: str | None = None
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "snippet": self.snippet,
            "relevance_score": self.score or 0.0,
        }


@dataclass(frozen=True)
class Finding:
    title: str
    content: str
    sources: tuple[str, ...] = ()


@dataclass
class ResearchTask:
    id: str
    query: str
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    report: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sources: list[SearchResult] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ResearchTask":
        return cls(
            id=str(row["id"]),
            query=row["query"],
            status=TaskStatus(row["status"]),
            progress=int(row.get("progress") or 0),
            report=row.get("report"),
            error=row.get("error"),
            created_at=row.get("created_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "status": self.status.value,
            "progress": self.progress,
            "report": self.report,
            "error": self.error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "sources": [s.to_dict() for s in self.sources],
        }


@dataclass
class ResearchState:
    """Working memory for one pipeline execution. Never persisted as-is."""

    query: str
    plan: str = ""
    search_queries: list[str] = field(default_factory=list)
    search_results: list[SearchResult] = field(default_factory=list)
    analysis: str = ""
    findings: list[Finding] = field(default_factory=list)
    report: str = ""
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    steps_completed: list[str] = field(default_factory=list)

    def elapsed_seconds(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ResearchJob:
    """Queue envelope for one task; `attempt` is 1-based while running."""

    id: str
    task_id: str
    query: str
    max_attempts: int = 3
    attempt: int = 0
    progress: int = 0
    state: JobState = JobState.WAITING
    last_error: str | None = None
    backoff_schedule: tuple[float, ...] = ()

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def retry_delay(self) -> float | None:
        """Seconds to wait before the next attempt, or None when none is left."""
        if self.is_final_attempt or not 0 < self.attempt <= len(self.backoff_schedule):
            return None
        return self.backoff_schedule[self.attempt - 1]
