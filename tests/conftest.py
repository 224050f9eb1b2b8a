from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio

import workbench.database as database
from tests.fakes import Backend, FakeProbe
from workbench.agent.dispatcher import Dispatcher
from workbench.agent.executor import BatchExecutor
from workbench.agent.session import AgentSession
from workbench.agent.store import AgentStateStore
from workbench.channel import Channel
from workbench.data.store import WorkbenchStore


@pytest_asyncio.fixture
async def conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection]:
    conn = await database.connect(tmp_path / "workbench.db")
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def data_store(conn: aiosqlite.Connection) -> WorkbenchStore:
    store = WorkbenchStore(conn)
    await store.init_schema()
    return store


@pytest_asyncio.fixture
async def state_store(conn: aiosqlite.Connection) -> AgentStateStore:
    store = AgentStateStore(conn)
    await store.init_schema()
    return store


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def channel() -> Channel:
    return Channel()


@pytest_asyncio.fixture
async def session(data_store, state_store, backend, probe, channel) -> AgentSession:
    dispatcher = Dispatcher(data_store, probe, channel_factory=backend.factory)
    return AgentSession(
        dispatcher=dispatcher,
        executor=BatchExecutor(data_store),
        data=data_store,
        store=state_store,
        channel=channel,
    )
