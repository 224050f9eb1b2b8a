import pytest

from workbench.agent.dispatcher import ChatRequest, Dispatcher
from workbench.agent.errors import ChannelUnavailable, DispatchError, DispatchTimeout
from workbench.agent.models import Message, Role, Stage, StreamEvent
from workbench.core.stream import EventStream
from tests.fakes import Backend, FakeProbe, fast_settings, reply_json, todo_action


def _request(**settings) -> ChatRequest:
    return ChatRequest(
        request_id="req-1",
        messages=(Message.create(Role.USER, "plan my day"),),
        settings=fast_settings(**settings),
    )


async def _dispatch(dispatcher: Dispatcher, request: ChatRequest):
    stream: EventStream[StreamEvent] = EventStream()
    error = None
    try:
        response = await dispatcher.dispatch(request, stream)
    except DispatchError as e:
        response, error = None, e
    stages = [event.stage async for event in stream]
    return response, stages, error


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_mcp_path(self, data_store, backend: Backend):
        backend.mcp.reply = reply_json("Plan", [todo_action("a1")])
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        response, stages, error = await _dispatch(dispatcher, _request())

        assert error is None
        assert response.reply == "Plan"
        assert [a.id for a in response.actions] == ["a1"]
        assert stages == [Stage.RUNTIME_DETECT, Stage.MCP_CONNECT, Stage.PLANNING, Stage.COMPLETED]
        assert backend.exec.prompts == []
        assert "plan my day" in backend.mcp.prompts[0]

    @pytest.mark.asyncio
    async def test_falls_back_when_mcp_fails(self, data_store, backend: Backend):
        backend.mcp_down()
        backend.exec.reply = reply_json("From exec")
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        response, stages, error = await _dispatch(dispatcher, _request())

        assert response.reply == "From exec"
        assert stages == [
            Stage.RUNTIME_DETECT,
            Stage.MCP_CONNECT,
            Stage.EXEC_FALLBACK,
            Stage.FALLBACK,
            Stage.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_falls_back_when_mcp_tool_errors(self, data_store, backend: Backend):
        backend.mcp.error = DispatchError("codex tool returned an error")
        backend.exec.reply = reply_json("From exec")
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        response, stages, error = await _dispatch(dispatcher, _request())

        assert error is None
        assert response.reply == "From exec"
        assert stages == [
            Stage.RUNTIME_DETECT,
            Stage.MCP_CONNECT,
            Stage.EXEC_FALLBACK,
            Stage.FALLBACK,
            Stage.COMPLETED,
        ]
        assert len(backend.exec.prompts) == 1

    @pytest.mark.asyncio
    async def test_falls_back_when_health_check_reports_mcp_unavailable(self, data_store, backend: Backend):
        dispatcher = Dispatcher(data_store, FakeProbe(mcp=False), channel_factory=backend.factory)

        _, stages, _ = await _dispatch(dispatcher, _request())

        assert Stage.EXEC_FALLBACK in stages
        assert backend.mcp.prompts == []
        assert len(backend.exec.prompts) == 1

    @pytest.mark.asyncio
    async def test_exec_only(self, data_store, backend: Backend):
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        _, stages, _ = await _dispatch(dispatcher, _request(prefer_mcp=False))

        assert stages == [Stage.RUNTIME_DETECT, Stage.PLANNING, Stage.COMPLETED]
        assert backend.mcp.prompts == []

    @pytest.mark.asyncio
    async def test_missing_binary(self, data_store, backend: Backend):
        dispatcher = Dispatcher(data_store, FakeProbe(found=False), channel_factory=backend.factory)

        response, stages, error = await _dispatch(dispatcher, _request())

        assert response is None
        assert isinstance(error, ChannelUnavailable)
        assert stages == [Stage.RUNTIME_DETECT, Stage.ERROR]

    @pytest.mark.asyncio
    async def test_both_channels_fail(self, data_store, backend: Backend):
        backend.mcp_down()
        backend.exec.error = DispatchError("codex exec exited with 1")
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        _, stages, error = await _dispatch(dispatcher, _request())

        assert str(error) == "codex exec exited with 1"
        assert stages[-1] == Stage.ERROR

    @pytest.mark.asyncio
    async def test_timeout(self, data_store, backend: Backend):
        backend.mcp.delay = 5
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)

        stream: EventStream[StreamEvent] = EventStream()
        with pytest.raises(DispatchTimeout):
            await dispatcher.dispatch(_request(timeout_ms=50), stream)
        events = [event async for event in stream]

        assert events[-1].stage == Stage.ERROR
        assert events[-1].meta["retryable"] is True
        assert Stage.EXEC_FALLBACK not in [e.stage for e in events]
        assert backend.exec.prompts == []

    @pytest.mark.asyncio
    async def test_stream_is_closed_on_success(self, data_store, backend: Backend):
        dispatcher = Dispatcher(data_store, FakeProbe(), channel_factory=backend.factory)
        stream: EventStream[StreamEvent] = EventStream()
        await dispatcher.dispatch(_request(), stream)
        assert stream.closed
