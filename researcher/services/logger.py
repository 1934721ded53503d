"""Centralized logging for the API process and the job workers."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from researcher.config import settings

APP_LOG_LEVEL = getattr(logging, settings.app_log_level.upper(), logging.INFO)
NOISY_LOG_LEVEL = getattr(logging, settings.noisy_log_level.upper(), logging.WARNING)

_handlers: list[logging.Handler] = [logging.StreamHandler()]
if settings.log_file:
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _handlers.append(logging.FileHandler(log_path))

logging.basicConfig(
    level=APP_LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=_handlers,
)

# Keep framework and network chatter out of the research logs.
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "arq.worker",
    "arq.connections",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(NOISY_LOG_LEVEL)

logger = logging.getLogger("researcher")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    duration_ms: int = 0,
    status: str = "success",
    *,
    prompt_chars: int = 0,
    response_chars: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a text-generation call with the size of what went in and out."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "duration_ms": duration_ms,
        "status": status,
        "prompt_chars": prompt_chars,
        "response_chars": response_chars,
    }
    if error:
        call_data["error"] = error
    level = logging.WARNING if status == "error" else logging.INFO
    logger.log(level, f"LLM_CALL: {json.dumps(call_data)}")


def log_research_step(
    task_id: Optional[str],
    stage: str,
    status: str,
    *,
    job_id: Optional[str] = None,
    attempt: Optional[int] = None,
    duration_ms: Optional[int] = None,
    error: Optional[str] = None,
    **data: Any,
) -> None:
    """Log one pipeline stage outcome, tagged with the job attempt that ran it."""
    step_data: dict[str, Any] = {
        "timestamp": _now(),
        "task_id": task_id,
        "job_id": job_id,
        "attempt": attempt,
        "stage": stage,
        "status": status,
    }
    if duration_ms is not None:
        step_data["duration_ms"] = duration_ms
    if error:
        step_data["error"] = error
    step_data.update(data)
    level = logging.WARNING if status == "failed" else logging.INFO
    logger.log(level, f"RESEARCH_STEP: {json.dumps(step_data, default=str)}")


def log_store_operation(
    backend: str,
    operation: str,
    task_id: Optional[str],
    status: str = "success",
    *,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a task store write. Failures go out at ERROR, the rest at DEBUG."""
    op_data = {
        "timestamp": _now(),
        "backend": backend,
        "operation": operation,
        "task_id": task_id,
        "status": status,
    }
    if details:
        op_data["details"] = details
    if error:
        op_data["error"] = error
    level = logging.ERROR if status == "error" else logging.DEBUG
    logger.log(level, f"STORE_OPERATION: {json.dumps(op_data)}")


def log_event(
    event_type: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.log(level, f"EVENT: {json.dumps(event_data, default=str)}")
