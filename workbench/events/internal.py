from dataclasses import dataclass, field

from workbench.agent.models import RunState


@dataclass(frozen=True)
class RunStarted:
    request_id: str
    kind: str  # "chat" | "execution"


@dataclass(frozen=True)
class RunUpdated:
    run: RunState
    kind: str


@dataclass(frozen=True)
class RunCompleted:
    request_id: str
    kind: str
    status: str
    duration_ms: int | None


@dataclass(frozen=True)
class DataChanged:
    """Refresh signal: dependent read-models should re-fetch these entity kinds."""

    batch_id: str
    kinds: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ToolingChanged:
    mcp_servers: int
    skills: int
    commands: int
