"""Exceptions raised across the research core.

Messages are meant to be shown to clients as-is, so they never carry
tracebacks or internal codes.
"""
from __future__ import annotations


class ResearchError(Exception):
    """Base class for every error raised by the research core."""


class QueryValidationError(ResearchError):
    """The research query is malformed; no task is created."""


class UpstreamFailure(ResearchError):
    """The text-generation or search capability failed."""


class SearchFailed(UpstreamFailure):
    def __init__(self, query: str, cause: BaseException):
        self.query = query
        self.cause = cause
        super().__init__(f"Search failed for '{query}': {cause}")


class PipelineFailed(ResearchError):
    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} stage failed: {cause}")


class TaskNotFound(ResearchError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Research task {task_id} not found")


class InvalidTransition(ResearchError):
    def __init__(self, task_id: str, current: str, target: str):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id} cannot move from {current} to {target}")
