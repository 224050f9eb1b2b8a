import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum


class EventType(StrEnum):
    RUN_UPDATE = "run_update"
    RUN_COMPLETED = "run_completed"
    DATA_CHANGED = "data_changed"
    TOOLING_CHANGED = "tooling_changed"


@dataclass(frozen=True)
class SSEEvent:
    type: EventType

    def to_sse(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return {"event": self.type.value, "data": json.dumps(data, default=str)}

    def to_sse_string(self) -> str:
        sse = self.to_sse()
        return f"event: {sse['event']}\ndata: {sse['data']}\n\n"


@dataclass(frozen=True)
class RunUpdateEvent(SSEEvent):
    type: EventType = field(default=EventType.RUN_UPDATE, init=False)
    kind: str
    run: dict


@dataclass(frozen=True)
class RunCompletedEvent(SSEEvent):
    type: EventType = field(default=EventType.RUN_COMPLETED, init=False)
    kind: str
    request_id: str
    status: str
    duration_ms: int | None = None


@dataclass(frozen=True)
class DataChangedEvent(SSEEvent):
    type: EventType = field(default=EventType.DATA_CHANGED, init=False)
    batch_id: str
    kinds: list[str]


@dataclass(frozen=True)
class ToolingChangedEvent(SSEEvent):
    type: EventType = field(default=EventType.TOOLING_CHANGED, init=False)
    mcp_servers: int
    skills: int
    commands: int
