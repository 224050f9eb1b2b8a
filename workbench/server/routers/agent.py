import asyncio
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from workbench.agent.session import AgentSession
from workbench.events.internal import DataChanged, RunCompleted, RunUpdated, ToolingChanged
from workbench.events.sse import (
    DataChangedEvent,
    RunCompletedEvent,
    RunUpdateEvent,
    SSEEvent,
    ToolingChangedEvent,
)
from workbench.server.runtime import get_runtime
from workbench.server.schemas import ExecuteBatchRequest, SendMessageRequest, UpdateSettingsRequest

router = APIRouter(prefix="/agent", tags=["agent"])

SSE_KEEPALIVE_S = 15


def _session() -> AgentSession:
    return get_runtime().session


def _session_state(session: AgentSession) -> dict:
    return {
        "messages": [m.to_dict() for m in session.messages],
        "pending": [a.to_dict() for a in session.pending],
        "run": session.run.to_dict() if session.run else None,
        "execution_run": session.execution_run.to_dict() if session.execution_run else None,
        "is_sending": session.is_sending,
        "is_executing": session.is_executing,
        "settings": session.settings.model_dump(),
    }


@router.get("/session")
async def get_session():
    return _session_state(_session())


@router.post("/messages")
async def send_message(request: SendMessageRequest):
    session = _session()
    if not request.content.strip():
        raise HTTPException(status_code=400, detail="Message is empty")
    if session.is_sending:
        raise HTTPException(status_code=409, detail="A run is already in progress")
    response = await session.send_message(request.content)
    if response is None:
        raise HTTPException(status_code=409, detail="A run is already in progress")
    return {**response.to_dict(), "run": session.run.to_dict() if session.run else None}


@router.post("/retry")
async def retry():
    session = _session()
    if session.is_sending:
        raise HTTPException(status_code=409, detail="A run is already in progress")
    if not session.last_user_input:
        raise HTTPException(status_code=404, detail="Nothing to retry")
    response = await session.retry_last_message()
    if response is None:
        raise HTTPException(status_code=409, detail="A run is already in progress")
    return {**response.to_dict(), "run": session.run.to_dict() if session.run else None}


@router.post("/clear")
async def clear():
    session = _session()
    await session.clear_session()
    return _session_state(session)


@router.get("/run")
async def get_run():
    session = _session()
    return {
        "run": session.run.to_dict() if session.run else None,
        "execution_run": session.execution_run.to_dict() if session.execution_run else None,
    }


@router.get("/events")
async def stream_events() -> StreamingResponse:
    channel = get_runtime().channel
    queue: asyncio.Queue[SSEEvent] = asyncio.Queue()

    async def on_run_updated(event: RunUpdated) -> None:
        queue.put_nowait(RunUpdateEvent(kind=event.kind, run=event.run.to_dict()))

    async def on_run_completed(event: RunCompleted) -> None:
        queue.put_nowait(
            RunCompletedEvent(
                kind=event.kind,
                request_id=event.request_id,
                status=event.status,
                duration_ms=event.duration_ms,
            )
        )

    async def on_data_changed(event: DataChanged) -> None:
        queue.put_nowait(DataChangedEvent(batch_id=event.batch_id, kinds=list(event.kinds)))

    async def on_tooling_changed(event: ToolingChanged) -> None:
        queue.put_nowait(
            ToolingChangedEvent(mcp_servers=event.mcp_servers, skills=event.skills, commands=event.commands)
        )

    handlers = (
        (RunUpdated, on_run_updated),
        (RunCompleted, on_run_completed),
        (DataChanged, on_data_changed),
        (ToolingChanged, on_tooling_changed),
    )

    async def event_generator() -> AsyncGenerator[str]:
        with channel.subscribed(handlers):
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_S)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse_string()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/actions/{action_id}/execute")
async def execute_action(action_id: str):
    session = _session()
    if session.is_executing:
        raise HTTPException(status_code=409, detail="Another execution is in progress")
    result = await session.execute_action(action_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No pending action: {action_id}")
    return {"success": result.success, "message": result.message}


@router.post("/actions/execute")
async def execute_actions(request: ExecuteBatchRequest):
    session = _session()
    if session.is_executing:
        raise HTTPException(status_code=409, detail="Another execution is in progress")
    ids = request.action_ids if request.action_ids is not None else [a.id for a in session.pending]
    result = await session.execute_actions(ids)
    if result is None:
        raise HTTPException(status_code=404, detail="None of the requested actions are pending")
    return result.to_dict()


@router.delete("/actions/{action_id}")
async def dismiss_action(action_id: str):
    session = _session()
    dismissed = session.dismiss_action(action_id)
    return {"dismissed": dismissed, "pending": [a.to_dict() for a in session.pending]}


@router.patch("/settings")
async def update_settings(request: UpdateSettingsRequest):
    session = _session()
    # validate the whole patch before anything is saved
    try:
        settings = session.settings.merged(**request.model_dump(exclude_none=True, exclude={"codex"}))
        if request.codex is not None:
            settings = settings.with_codex(**request.codex.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return (await session.apply_settings(settings)).model_dump()


@router.get("/audit")
async def get_audit(limit: int = 50):
    session = _session()
    return {"records": [r.to_dict() for r in list(session.audit)[:limit]]}


@router.get("/capabilities")
async def get_capabilities():
    return get_runtime().registry.capabilities().model_dump()


@router.get("/health")
async def get_health():
    runtime = get_runtime()
    health = await runtime.probe.check(runtime.session.settings.codex)
    return health.to_dict()
