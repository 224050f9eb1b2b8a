import asyncio

import workbench.database as database
from workbench.agent.dispatcher import Dispatcher
from workbench.agent.executor import BatchExecutor
from workbench.agent.probe import CodexProbe
from workbench.agent.session import AgentSession
from workbench.agent.settings import AgentSettings
from workbench.agent.store import AgentStateStore
from workbench.channel import Channel
from workbench.config import Config, get_config
from workbench.data.store import WorkbenchStore
from workbench.events.internal import DataChanged, RunCompleted, ToolingChanged
from workbench.logging import get_logger
from workbench.tooling.registry import ToolingRegistry

_logger = get_logger(__name__)


class Runtime:
    def __init__(self, config: Config | None = None):
        self.config = config or get_config()
        self.channel = Channel()

        self.probe = CodexProbe(default_binary=self.config.codex_binary)
        self.registry = ToolingRegistry(user_dir=self.config.tooling_dir, channel=self.channel)

        self.data: WorkbenchStore | None = None
        self.state_store: AgentStateStore | None = None
        self.session: AgentSession | None = None
        self._conn = None
        self._connected = False

    async def connect(self) -> None:
        if self._connected:
            return

        self.config.db_dir.mkdir(parents=True, exist_ok=True)
        self.config.tooling_dir.mkdir(parents=True, exist_ok=True)

        self._conn = await database.connect(self.config.db_path)
        self.data = WorkbenchStore(self._conn)
        await self.data.init_schema()
        self.state_store = AgentStateStore(self._conn)
        await self.state_store.init_schema()

        self.registry.load()

        self.session = AgentSession(
            dispatcher=Dispatcher(self.data, self.probe, registry=self.registry),
            executor=BatchExecutor(self.data),
            data=self.data,
            store=self.state_store,
            registry=self.registry,
            channel=self.channel,
            settings=AgentSettings().with_codex(request_timeout_ms=self.config.request_timeout_ms),
        )
        await self.session.load()
        if "request_timeout_ms" in self.config.model_fields_set:
            # an explicitly configured timeout beats the one saved with the session
            await self.session.update_codex_config(request_timeout_ms=self.config.request_timeout_ms)

        self.channel.subscribe(RunCompleted, self._on_run_completed)
        self.channel.subscribe(DataChanged, self._on_data_changed)
        self.channel.subscribe(ToolingChanged, self._on_tooling_changed)

        self._connected = True
        _logger.info("Runtime connected (db: %s)", self.config.db_path)

    async def _on_run_completed(self, event: RunCompleted) -> None:
        _logger.info("%s run %s finished: %s (%sms)", event.kind, event.request_id, event.status, event.duration_ms)

    async def _on_data_changed(self, event: DataChanged) -> None:
        _logger.info("Batch %s changed: %s", event.batch_id, ", ".join(event.kinds) or "nothing")

    async def _on_tooling_changed(self, event: ToolingChanged) -> None:
        _logger.debug(
            "Tooling changed: %d MCP, %d skills, %d commands", event.mcp_servers, event.skills, event.commands
        )

    async def close(self) -> None:
        await self.channel.drain()
        if self._conn:
            await self._conn.close()
            self._conn = None
        self._connected = False


_runtime: Runtime | None = None
_runtime_lock = asyncio.Lock()


async def get_runtime_async() -> Runtime:
    global _runtime
    async with _runtime_lock:
        if _runtime is None:
            _runtime = Runtime()
            await _runtime.connect()
    return _runtime


def get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call get_runtime_async() first.")
    if not _runtime._connected:
        raise RuntimeError("Runtime not connected. Call await runtime.connect() first.")
    return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    global _runtime
    _runtime = runtime


async def reset_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.close()
        _runtime = None
