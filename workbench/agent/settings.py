import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from workbench.constants import DEFAULT_EXEC_ARGS, DEFAULT_MCP_ARGS, DEFAULT_REQUEST_TIMEOUT_MS

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

SlashMode = Literal["insert", "execute"]


class CodexSettings(BaseModel):
    enabled: bool = True
    binary_path: str | None = None
    prefer_mcp: bool = True
    exec_args: list[str] = Field(default_factory=lambda: list(DEFAULT_EXEC_ARGS))
    mcp_args: list[str] = Field(default_factory=lambda: list(DEFAULT_MCP_ARGS))
    request_timeout_ms: int = Field(default=DEFAULT_REQUEST_TIMEOUT_MS, ge=1000)


class AgentSettings(BaseModel):
    enabled: bool = True
    default_layout: Literal["split", "single"] = "split"
    morning_brief_time: str = "08:30"
    event_reminder_lead_minutes: int = Field(default=30, ge=0, le=24 * 60)
    slash_mode: SlashMode = "insert"
    provider: Literal["codex_local"] = "codex_local"
    codex: CodexSettings = Field(default_factory=CodexSettings)

    @field_validator("morning_brief_time")
    @classmethod
    def _validate_time(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError(f"morning_brief_time must be HH:MM, got {v!r}")
        return v

    def merged(self, **updates) -> "AgentSettings":
        """Return a validated copy with top-level fields replaced."""
        data = self.model_dump()
        data.update(updates)
        return AgentSettings.model_validate(data)

    def with_codex(self, **updates) -> "AgentSettings":
        codex = self.codex.model_dump()
        codex.update({k: v for k, v in updates.items() if v is not None})
        return self.merged(codex=codex)


def restore_settings(raw: dict | None, base: AgentSettings | None = None) -> AgentSettings:
    """Overlay persisted settings on `base` (or the defaults); a corrupt blob falls back to `base`."""
    base = base or AgentSettings()
    if not raw:
        return base
    defaults = base.model_dump()
    codex = {**defaults["codex"], **(raw.get("codex") or {})}
    try:
        return AgentSettings.model_validate({**defaults, **raw, "codex": codex})
    except ValueError:
        return base
