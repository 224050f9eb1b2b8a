import asyncio
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path

from workbench.agent.settings import CodexSettings
from workbench.constants import CODEX_BINARY
from workbench.logging import get_logger

_logger = get_logger(__name__)

VERSION_TIMEOUT_S = 5


@dataclass(frozen=True)
class CodexHealth:
    found: bool
    mcp_available: bool
    exec_available: bool
    message: str
    binary: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_binary(settings: CodexSettings, default: str = CODEX_BINARY) -> str | None:
    candidate = (settings.binary_path or "").strip() or default
    path = Path(candidate).expanduser()
    if path.is_absolute() or path.parent != Path("."):
        return str(path) if path.is_file() else None
    return shutil.which(candidate)


class CodexProbe:
    def __init__(self, default_binary: str = CODEX_BINARY):
        self.default_binary = default_binary

    async def check(self, settings: CodexSettings) -> CodexHealth:
        if not settings.enabled:
            return CodexHealth(found=False, mcp_available=False, exec_available=False, message="Codex backend is disabled")

        binary = resolve_binary(settings, self.default_binary)
        if not binary:
            wanted = settings.binary_path or self.default_binary
            return CodexHealth(
                found=False,
                mcp_available=False,
                exec_available=False,
                message=f"Codex binary {wanted!r} not found",
            )

        version = await self._version(binary)
        if version is None:
            return CodexHealth(
                found=True,
                binary=binary,
                mcp_available=False,
                exec_available=False,
                message=f"{binary} did not respond to --version",
            )
        return CodexHealth(
            found=True,
            binary=binary,
            mcp_available=True,
            exec_available=True,
            message=version,
        )

    async def _version(self, binary: str) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            _logger.warning("Failed to spawn %s", binary, exc_info=True)
            return None
        try:
            async with asyncio.timeout(VERSION_TIMEOUT_S):
                stdout, _ = await proc.communicate()
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return None
        if proc.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip() or binary
