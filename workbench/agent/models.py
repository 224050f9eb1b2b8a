from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from workbench.constants import RUN_EVENT_LIMIT
from workbench.utils import new_id, utc_now


def _to_dt(v):
    return datetime.fromisoformat(v) if isinstance(v, str) else v


def _iso(v: datetime | None) -> str | None:
    return v.isoformat() if v else None


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ActionType(StrEnum):
    TODO_CREATE = "todo.create"
    TODO_UPDATE = "todo.update"
    TODO_DELETE = "todo.delete"
    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE_PROGRESS = "project.update_progress"
    PROJECT_DELETE = "project.delete"
    EVENT_CREATE = "event.create"
    EVENT_UPDATE = "event.update"
    EVENT_DELETE = "event.delete"
    PERSONAL_CREATE = "personal.create"
    PERSONAL_UPDATE = "personal.update"
    PERSONAL_DELETE = "personal.delete"
    QUERY_SNAPSHOT = "query.snapshot"


class Stage(StrEnum):
    RUNTIME_DETECT = "runtime_detect"
    MCP_CONNECT = "mcp_connect"
    EXEC_FALLBACK = "exec_fallback"
    PLANNING = "planning"
    EXECUTING = "executing"
    FALLBACK = "fallback"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    FALLBACK = "fallback"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.ERROR})


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    created_at: datetime

    @classmethod
    def create(cls, role: Role, content: str) -> "Message":
        return cls(id=new_id(), role=role, content=content, created_at=utc_now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data["content"],
            created_at=_to_dt(data.get("created_at") or data.get("createdAt")),
        )


@dataclass(frozen=True)
class ActionProposal:
    id: str
    type: str
    title: str
    reason: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    requires_approval: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ActionProposal":
        """Accepts both snake_case and the camelCase keys backends tend to emit."""
        if not isinstance(data, dict):
            raise ValueError("Action proposal must be an object")
        action_id = data.get("id")
        action_type = data.get("type")
        if not isinstance(action_id, str) or not action_id.strip():
            raise ValueError("Action proposal is missing an id")
        if not isinstance(action_type, str) or not action_type.strip():
            raise ValueError(f"Action proposal {action_id} is missing a type")
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError(f"Action proposal {action_id} payload must be an object")
        return cls(
            id=action_id,
            type=action_type,
            title=str(data.get("title") or action_type),
            reason=str(data.get("reason") or ""),
            payload=payload,
            # approval is never optional, whatever the backend claims
            requires_approval=True,
        )


@dataclass(frozen=True)
class StreamEvent:
    request_id: str
    stage: Stage
    message: str
    meta: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "stage": self.stage.value,
            "message": self.message,
            "meta": self.meta,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ActionProgress:
    total: int = 0
    completed: int = 0
    success: int = 0
    failed: int = 0


@dataclass(frozen=True)
class RunError:
    reason: str
    retryable: bool = True


@dataclass(frozen=True)
class RunState:
    request_id: str
    status: RunStatus
    stage: Stage
    percent: int
    message: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_ms: int | None = None
    action_progress: ActionProgress = field(default_factory=ActionProgress)
    events: deque[StreamEvent] = field(default_factory=lambda: deque(maxlen=RUN_EVENT_LIMIT))
    error: RunError | None = None
    applied: int = 0  # events accepted so far, including evicted ones

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "status": self.status.value,
            "stage": self.stage.value,
            "percent": self.percent,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "ended_at": _iso(self.ended_at),
            "duration_ms": self.duration_ms,
            "action_progress": asdict(self.action_progress),
            "events": [e.to_dict() for e in self.events],
            "error": asdict(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class AuditRecord:
    id: str
    batch_id: str
    action_id: str
    action_type: str
    payload: dict[str, Any]
    success: bool
    created_at: datetime
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AuditRecord":
        return cls(
            id=data["id"],
            batch_id=data["batch_id"],
            action_id=data["action_id"],
            action_type=data["action_type"],
            payload=data.get("payload") or {},
            success=bool(data["success"]),
            created_at=_to_dt(data["created_at"]),
            before_state=data.get("before_state"),
            after_state=data.get("after_state"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ChatResponse:
    reply: str
    actions: tuple[ActionProposal, ...] = ()

    def to_dict(self) -> dict:
        return {"reply": self.reply, "actions": [a.to_dict() for a in self.actions]}


@dataclass(frozen=True)
class ExecuteResponse:
    success: bool
    message: str


@dataclass(frozen=True)
class BatchResult:
    success: bool
    batch_id: str
    message: str
    records: tuple[AuditRecord, ...]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "batch_id": self.batch_id,
            "message": self.message,
            "records": [r.to_dict() for r in self.records],
        }
