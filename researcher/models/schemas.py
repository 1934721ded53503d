from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from researcher.models.research import ResearchTask

QUERY_MIN_LENGTH = 5
QUERY_MAX_LENGTH = 500


# --- Requests ---


class CreateResearchRequest(BaseModel):
    query: str = Field(min_length=QUERY_MIN_LENGTH, max_length=QUERY_MAX_LENGTH)


# --- Responses ---


class SourceResponse(BaseModel):
    title: str
    url: str
    content: str
    snippet: str | None = None
    relevance_score: float = 0.0


class ResearchResponse(BaseModel):
    id: str
    query: str
    status: str
    progress: int
    report: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sources: list[SourceResponse] = []

    @classmethod
    def from_task(cls, task: ResearchTask) -> "ResearchResponse":
        return cls(**task.to_dict())


class StatusResponse(BaseModel):
    status: str
    progress: int
    error: str | None = None
