import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from workbench.agent.channels import BackendChannel, make_channels
from workbench.agent.errors import ChannelUnavailable, DispatchError, DispatchTimeout
from workbench.agent.models import ChatResponse, Message, Stage, StreamEvent
from workbench.agent.probe import CodexHealth, CodexProbe
from workbench.agent.prompts import build_prompt, build_system_prompt, parse_reply
from workbench.agent.settings import AgentSettings, CodexSettings
from workbench.core.stream import EventStream
from workbench.data.base import DataStore
from workbench.logging import get_logger
from workbench.tooling.registry import ToolingRegistry

_logger = get_logger(__name__)

type ChannelFactory = Callable[[CodexSettings, str], tuple[BackendChannel, BackendChannel]]


@dataclass(frozen=True)
class ChatRequest:
    request_id: str
    messages: tuple[Message, ...]
    settings: AgentSettings


class Dispatcher:
    """Sends one chat request to the backend and reports progress as stage events.

    The caller owns the event stream's consumer; the dispatcher always closes
    the stream before returning or raising. On failure an `error` event is the
    last event on the stream.
    """

    def __init__(
        self,
        data: DataStore,
        probe: CodexProbe,
        registry: ToolingRegistry | None = None,
        channel_factory: ChannelFactory = make_channels,
    ):
        self.data = data
        self.probe = probe
        self.registry = registry
        self.channel_factory = channel_factory

    async def dispatch(self, request: ChatRequest, events: EventStream[StreamEvent]) -> ChatResponse:
        def emit(stage: Stage, message: str, meta: dict | None = None) -> None:
            events.put(StreamEvent(request_id=request.request_id, stage=stage, message=message, meta=meta))

        timeout_ms = request.settings.codex.request_timeout_ms
        try:
            try:
                async with asyncio.timeout(timeout_ms / 1000):
                    response = await self._exchange(request, emit)
            except TimeoutError:
                raise DispatchTimeout(f"No reply from the agent backend within {timeout_ms / 1000:g}s") from None
        except DispatchError as e:
            _logger.warning("Dispatch %s failed: %s", request.request_id, e)
            emit(Stage.ERROR, str(e), {"reason": str(e), "retryable": e.retryable})
            raise
        finally:
            events.close()
        return response

    async def _exchange(self, request: ChatRequest, emit: Callable[..., None]) -> ChatResponse:
        codex = request.settings.codex
        emit(Stage.RUNTIME_DETECT, "Detecting agent runtime")
        health = await self.probe.check(codex)
        if not health.found or not health.binary:
            raise ChannelUnavailable(health.message)

        prompt = await self._build_prompt(request)
        mcp, exec_ = self.channel_factory(codex, health.binary)

        if codex.prefer_mcp:
            emit(Stage.MCP_CONNECT, "Connecting to the codex MCP server")
            try:
                content = await self._via_mcp(mcp, prompt, health, emit)
                channel = mcp.name
            except DispatchError as e:
                # unavailable or failed mid-call: either way exec gets the request
                _logger.info("MCP channel failed, falling back to exec: %s", e)
                emit(Stage.EXEC_FALLBACK, f"MCP failed, falling back to codex exec: {e}", {"reason": str(e)})
                content = await self._via_exec(exec_, prompt, health, emit, Stage.FALLBACK)
                channel = exec_.name
        else:
            content = await self._via_exec(exec_, prompt, health, emit, Stage.PLANNING)
            channel = exec_.name

        response = parse_reply(content)
        emit(
            Stage.COMPLETED,
            "Plan ready" if response.actions else "Reply ready",
            {"channel": channel, "actions": len(response.actions)},
        )
        return response

    async def _via_mcp(self, channel: BackendChannel, prompt: str, health: CodexHealth, emit) -> str:
        if not health.mcp_available:
            raise ChannelUnavailable(health.message)
        return await channel.complete(prompt, on_ready=lambda: emit(Stage.PLANNING, "Planning via MCP"))

    async def _via_exec(self, channel: BackendChannel, prompt: str, health: CodexHealth, emit, stage: Stage) -> str:
        if not health.exec_available:
            raise ChannelUnavailable(health.message)
        message = "Running codex exec" if stage == Stage.FALLBACK else "Planning via codex exec"
        return await channel.complete(prompt, on_ready=lambda: emit(stage, message))

    async def _build_prompt(self, request: ChatRequest) -> str:
        try:
            snapshot = await self.data.snapshot()
        except Exception as e:
            raise DispatchError(f"Failed to build context snapshot: {e}") from e
        capabilities = self.registry.capabilities() if self.registry else None
        return build_prompt(build_system_prompt(snapshot, capabilities), request.messages)
