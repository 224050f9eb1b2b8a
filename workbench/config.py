import json
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workbench.constants import CODEX_BINARY, DEFAULT_REQUEST_TIMEOUT_MS
from workbench.logging import get_logger

WORKBENCH_DIR = Path.home() / ".workbench"
SETTINGS_PATH = WORKBENCH_DIR / "settings.json"

_logger = get_logger(__name__)


def load_user_settings() -> dict:
    if not SETTINGS_PATH.exists():
        return {}
    try:
        return json.loads(SETTINGS_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        _logger.warning("Failed to load user settings", exc_info=True)
        return {}


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WORKBENCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        populate_by_name=True,
    )

    # Where workbench.db and the user tooling tree live (defaults to ~/.workbench)
    data_dir: Path | None = None

    # Codex binary used by both backend channels; resolved on PATH when bare
    codex_binary: str = CODEX_BINARY
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS

    host: str = "127.0.0.1"
    port: int = 8000

    # Bearer token for the HTTP API; set it before binding beyond localhost
    api_key: str | None = None

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator("request_timeout_ms")
    @classmethod
    def _validate_timeout(cls, v: int) -> int:
        if v < 1000:
            raise ValueError(f"request_timeout_ms must be at least 1000, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper()

    @property
    def db_dir(self) -> Path:
        return self.data_dir or WORKBENCH_DIR

    @property
    def db_path(self) -> Path:
        return self.db_dir / "workbench.db"

    @property
    def tooling_dir(self) -> Path:
        return self.db_dir / "agent"


PERSIST_KEYS = frozenset(
    {
        "data_dir",
        "codex_binary",
        "request_timeout_ms",
        "log_level",
        "log_format",
    }
)


def get_config() -> Config:
    settings = load_user_settings()
    # Build config: init args (settings.json) > env vars > defaults
    overrides = {k: settings[k] for k in PERSIST_KEYS if k in settings}
    return Config(**overrides)  # type: ignore - pydantic handles validation
