from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in (EventType.COMPLETE, EventType.ERROR)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"

    def to_json(self) -> str:
        return json.dumps({"event": self.event.value, "data": self.data})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SSEEvent":
        payload = json.loads(raw)
        return cls(event=EventType(payload["event"]), data=payload.get("data") or {})
