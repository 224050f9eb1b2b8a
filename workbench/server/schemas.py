from typing import Literal

from pydantic import BaseModel, Field

# --- Conversation ---


class SendMessageRequest(BaseModel):
    content: str


class ExecuteBatchRequest(BaseModel):
    # None executes every pending proposal
    action_ids: list[str] | None = None


# --- Settings ---


class CodexUpdate(BaseModel):
    enabled: bool | None = None
    binary_path: str | None = None
    prefer_mcp: bool | None = None
    exec_args: list[str] | None = None
    mcp_args: list[str] | None = None
    request_timeout_ms: int | None = Field(default=None, ge=1000)


class UpdateSettingsRequest(BaseModel):
    enabled: bool | None = None
    morning_brief_time: str | None = None
    event_reminder_lead_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    slash_mode: Literal["insert", "execute"] | None = None
    codex: CodexUpdate | None = None


# --- Tooling ---


class ImportPathRequest(BaseModel):
    path: str = Field(..., min_length=1)


class ToggleSkillRequest(BaseModel):
    enabled: bool
