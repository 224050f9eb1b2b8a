"""Backend channels: how a prompt reaches the local codex binary.

McpChannel speaks MCP over stdio to `codex mcp-server` and calls its `codex`
tool. ExecChannel runs `codex exec` as a one-shot subprocess. Both raise
ChannelUnavailable when the backend cannot be started and DispatchError when
it starts but fails to answer.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import TextContent

from workbench.agent.errors import ChannelUnavailable, DispatchError
from workbench.agent.settings import CodexSettings
from workbench.constants import CODEX_MCP_TOOL, EXEC_OUTPUT_LIMIT
from workbench.logging import get_logger
from workbench.utils import truncate

_logger = get_logger(__name__)

type OnReady = Callable[[], None]


class BackendChannel(Protocol):
    name: str

    async def complete(self, prompt: str, on_ready: OnReady | None = None) -> str: ...


class McpChannel:
    name = "mcp"

    def __init__(self, binary: str, args: list[str], tool: str = CODEX_MCP_TOOL):
        self.binary = binary
        self.args = args
        self.tool = tool

    async def complete(self, prompt: str, on_ready: OnReady | None = None) -> str:
        params = StdioServerParameters(command=self.binary, args=self.args)
        try:
            async with stdio_client(params) as (read, write), ClientSession(read, write) as session:
                await session.initialize()
                if on_ready:
                    on_ready()
                result = await session.call_tool(self.tool, {"prompt": prompt})
        except DispatchError:
            raise
        except OSError as e:
            raise ChannelUnavailable(f"Failed to start MCP server {self.binary}: {e}") from e
        except Exception as e:
            raise ChannelUnavailable(f"MCP session failed: {e}") from e

        text = "\n".join(block.text for block in result.content if isinstance(block, TextContent))
        if result.isError:
            raise DispatchError(f"codex tool returned an error: {truncate(text, 300)}")
        return text


class ExecChannel:
    name = "exec"

    def __init__(self, binary: str, args: list[str]):
        self.binary = binary
        self.args = args

    async def complete(self, prompt: str, on_ready: OnReady | None = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *self.args,
                "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ChannelUnavailable(f"Failed to spawn {self.binary}: {e}") from e

        if on_ready:
            on_ready()
        try:
            stdout, stderr = await proc.communicate(prompt.encode("utf-8"))
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise DispatchError(f"codex exec exited with {proc.returncode}: {truncate(detail, 300)}")
        output = stdout.decode("utf-8", errors="replace")
        if len(output) > EXEC_OUTPUT_LIMIT:
            # a truncated reply would lose its JSON envelope and parse as plain text
            raise DispatchError(f"codex exec output exceeded {EXEC_OUTPUT_LIMIT} characters ({len(output)})")
        return output


def make_channels(settings: CodexSettings, binary: str) -> tuple[BackendChannel, BackendChannel]:
    return McpChannel(binary, list(settings.mcp_args)), ExecChannel(binary, list(settings.exec_args))
