"""Conversation session: messages, the current run, pending proposals and the audit trail.

All collections are replaced, never mutated in place, so a reader holding a
reference always sees a consistent value. `is_sending` and `is_executing`
are independent single-flight guards; each is set before the first await.
"""

import asyncio
from collections import deque
from collections.abc import Iterable
from datetime import datetime, timedelta

from workbench.agent.dispatcher import ChatRequest, Dispatcher
from workbench.agent.errors import DispatchError
from workbench.agent.executor import BatchExecutor
from workbench.agent.models import (
    ActionProposal,
    AuditRecord,
    BatchResult,
    ChatResponse,
    ExecuteResponse,
    Message,
    Role,
    RunState,
    Stage,
    StreamEvent,
)
from workbench.agent.runstate import apply_event, start_run
from workbench.agent.settings import AgentSettings, SlashMode, restore_settings
from workbench.agent.store import AgentStateStore
from workbench.channel import Channel
from workbench.constants import (
    AUDIT_MEMORY_LIMIT,
    AUDIT_PERSIST_LIMIT,
    CLEARED_GREETING,
    DISPATCH_FALLBACK_REPLY,
    GREETING,
    MESSAGE_PERSIST_LIMIT,
    MORNING_BRIEF_WINDOW_MINUTES,
)
from workbench.core.stream import EventStream
from workbench.data.base import DataStore
from workbench.events.internal import DataChanged, RunCompleted, RunStarted, RunUpdated
from workbench.logging import bind_run, get_logger
from workbench.tooling.models import ToolingConfig
from workbench.tooling.registry import ToolingRegistry
from workbench.utils import new_id

_logger = get_logger(__name__)

MORNING_BRIEF_HEADER = "Good morning. Here is where things stand today:"

CHAT = "chat"
EXECUTION = "execution"


def expand_slash_command(message: str, tooling: ToolingConfig) -> tuple[str, bool]:
    stripped = message.strip()
    if not stripped.startswith("/"):
        return message, False
    parts = stripped[1:].split(None, 1)
    if not parts:
        return message, False
    command = tooling.find_command(parts[0])
    if command is None:
        return message, False
    args = parts[1] if len(parts) > 1 else ""
    expanded = command.body
    if args:
        expanded += f"\n\nUser request: {args}"
    return expanded, True


def build_morning_brief(snapshot: dict) -> str:
    todos = snapshot.get("pending_todos") or []
    projects = snapshot.get("active_projects") or []
    events = snapshot.get("today_events") or []
    lines = [
        MORNING_BRIEF_HEADER,
        f"- {len(todos)} pending todo(s)" + (f", starting with \"{todos[0]['title']}\"" if todos else ""),
        f"- {len(projects)} active project(s)",
        f"- {len(events)} event(s) on the calendar today",
    ]
    for event in events[:3]:
        lines.append(f"  - {event['title']}")
    return "\n".join(lines)


def in_brief_window(brief_time: str, now: datetime) -> bool:
    hour, minute = (int(p) for p in brief_time.split(":"))
    start = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return start <= now < start + timedelta(minutes=MORNING_BRIEF_WINDOW_MINUTES)


def _failed(run: RunState, exc: Exception) -> RunState:
    if run.is_terminal:
        return run
    reason = str(exc) or type(exc).__name__
    event = StreamEvent(
        request_id=run.request_id,
        stage=Stage.ERROR,
        message=reason,
        meta={"reason": reason, "retryable": True},
    )
    return apply_event(run, event)


class AgentSession:
    def __init__(
        self,
        dispatcher: Dispatcher,
        executor: BatchExecutor,
        data: DataStore,
        store: AgentStateStore | None = None,
        registry: ToolingRegistry | None = None,
        channel: Channel | None = None,
        settings: AgentSettings | None = None,
    ):
        self.dispatcher = dispatcher
        self.executor = executor
        self.data = data
        self.store = store
        self.registry = registry
        self.channel = channel

        self.settings = settings or AgentSettings()
        self.messages: tuple[Message, ...] = (Message.create(Role.ASSISTANT, GREETING),)
        self.pending: tuple[ActionProposal, ...] = ()
        self.audit: deque[AuditRecord] = deque(maxlen=AUDIT_MEMORY_LIMIT)
        self.run: RunState | None = None
        self.execution_run: RunState | None = None
        self.is_sending = False
        self.is_executing = False
        self.last_user_input: str | None = None

    # --- persistence ---

    async def load(self, now: datetime | None = None) -> None:
        if self.store:
            persisted = await self.store.load()
            self.settings = restore_settings(persisted.settings, base=self.settings)
            messages = []
            for raw in persisted.messages[-MESSAGE_PERSIST_LIMIT:]:
                try:
                    messages.append(Message.from_dict(raw))
                except (KeyError, ValueError, TypeError):
                    _logger.warning("Dropping malformed persisted message")
            if messages:
                self.messages = tuple(messages)
            audit = []
            for raw in persisted.audit[:AUDIT_PERSIST_LIMIT]:
                try:
                    audit.append(AuditRecord.from_dict(raw))
                except (KeyError, ValueError, TypeError):
                    _logger.warning("Dropping malformed persisted audit record")
            self.audit = deque(audit, maxlen=AUDIT_MEMORY_LIMIT)
            self.last_user_input = next((m.content for m in reversed(self.messages) if m.role == Role.USER), None)

        await self._maybe_morning_brief(now or datetime.now())

    async def save(self) -> None:
        if not self.store:
            return
        await self.store.save(
            settings=self.settings.model_dump(),
            messages=[m.to_dict() for m in self.messages[-MESSAGE_PERSIST_LIMIT:]],
            audit=[r.to_dict() for r in list(self.audit)[:AUDIT_PERSIST_LIMIT]],
        )

    async def _maybe_morning_brief(self, now: datetime) -> None:
        if not self.settings.enabled or not in_brief_window(self.settings.morning_brief_time, now):
            return
        last = self.messages[-1] if self.messages else None
        if last and last.content.startswith(MORNING_BRIEF_HEADER) and last.created_at.astimezone().date() == now.date():
            return
        try:
            snapshot = await self.data.snapshot()
        except Exception:
            _logger.exception("Failed to build morning brief")
            return
        self._append(Message.create(Role.ASSISTANT, build_morning_brief(snapshot)))
        await self.save()

    # --- conversation ---

    def _append(self, *messages: Message) -> None:
        self.messages = (*self.messages, *messages)

    def expand(self, content: str) -> str:
        if not self.registry:
            return content
        expanded, _ = expand_slash_command(content, self.registry.config)
        return expanded

    async def send_message(self, content: str) -> ChatResponse | None:
        text = content.strip()
        if not text or self.is_sending:
            return None
        self.is_sending = True
        try:
            return await self._send(text)
        finally:
            self.is_sending = False

    async def retry_last_message(self) -> ChatResponse | None:
        if not self.last_user_input or self.is_sending:
            return None
        return await self.send_message(self.last_user_input)

    async def _send(self, text: str) -> ChatResponse:
        self.last_user_input = text
        self._append(Message.create(Role.USER, self.expand(text)))

        request_id = new_id()
        with bind_run(request_id, CHAT):
            return await self._dispatch(request_id)

    async def _dispatch(self, request_id: str) -> ChatResponse:
        run = start_run(request_id)
        self.run = run
        self._publish(RunStarted(request_id=request_id, kind=CHAT))
        request = ChatRequest(request_id=request_id, messages=self.messages, settings=self.settings)

        stream: EventStream[StreamEvent] = EventStream()
        drain = asyncio.create_task(self._drain(stream, run, CHAT))
        try:
            response = await self.dispatcher.dispatch(request, stream)
        except Exception as e:
            stream.close()
            run = await drain
            current = self.run is run
            run = _failed(run, e)
            if current:
                self.run = run
                self._append(Message.create(Role.ASSISTANT, DISPATCH_FALLBACK_REPLY))
                await self.save()
            self._publish_completed(CHAT, run)
            if isinstance(e, DispatchError):
                raise
            raise DispatchError(f"Agent run failed: {e}") from e

        stream.close()
        run = await drain
        if self.run is run:
            self._append(Message.create(Role.ASSISTANT, response.reply))
            self.pending = response.actions
            await self.save()
        else:
            _logger.info("Session was cleared during run %s; reply not recorded", request_id)
        self._publish_completed(CHAT, run)
        return response

    def _current(self, kind: str) -> RunState | None:
        return self.run if kind == CHAT else self.execution_run

    async def _drain(self, stream: EventStream[StreamEvent], run: RunState, kind: str) -> RunState:
        """Fold the stream into `run`; the session's run is only updated while it is still this one."""
        async for event in stream:
            folded = apply_event(run, event)
            if self._current(kind) is run:
                if kind == CHAT:
                    self.run = folded
                else:
                    self.execution_run = folded
            run = folded
            self._publish(RunUpdated(run=run, kind=kind))
        return run

    async def clear_session(self) -> None:
        self.messages = (Message.create(Role.ASSISTANT, CLEARED_GREETING),)
        self.pending = ()
        self.run = None
        self.execution_run = None
        self.last_user_input = None
        await self.save()

    # --- approval gate ---

    def dismiss_action(self, action_id: str) -> bool:
        remaining = tuple(a for a in self.pending if a.id != action_id)
        if len(remaining) == len(self.pending):
            return False
        self.pending = remaining
        return True

    async def execute_action(self, action_id: str) -> ExecuteResponse | None:
        result = await self.execute_actions([action_id])
        if result is None:
            return None
        record = result.records[0]
        if record.success:
            return ExecuteResponse(success=True, message=f"Executed {record.action_type}")
        return ExecuteResponse(success=False, message=record.error or "Execution failed")

    async def execute_actions(self, action_ids: Iterable[str]) -> BatchResult | None:
        if self.is_executing:
            return None
        wanted = set(action_ids)
        selected = [a for a in self.pending if a.id in wanted]
        if not selected:
            return None

        self.is_executing = True
        # leave the pending set before the first await so a second call cannot pick them up
        self.pending = tuple(a for a in self.pending if a.id not in wanted)
        try:
            result = await self._execute(selected)
        finally:
            self.is_executing = False
        return result

    async def _execute(self, actions: list[ActionProposal]) -> BatchResult:
        request_id = new_id()
        with bind_run(request_id, EXECUTION):
            return await self._run_batch(request_id, actions)

    async def _run_batch(self, request_id: str, actions: list[ActionProposal]) -> BatchResult:
        run = start_run(request_id, message=f"Preparing {len(actions)} action(s)")
        self.execution_run = run
        self._publish(RunStarted(request_id=request_id, kind=EXECUTION))

        stream: EventStream[StreamEvent] = EventStream()
        drain = asyncio.create_task(self._drain(stream, run, EXECUTION))
        try:
            result = await self.executor.execute(actions, stream, request_id=request_id)
        finally:
            stream.close()
            run = await drain

        audit = deque(self.audit, maxlen=AUDIT_MEMORY_LIMIT)
        audit.extendleft(result.records)
        self.audit = audit
        await self.save()

        self._publish_completed(EXECUTION, run)
        if any(r.success for r in result.records):
            kinds = tuple(sorted({r.action_type.split(".")[0] for r in result.records if r.success} - {"query"}))
            self._publish(DataChanged(batch_id=result.batch_id, kinds=kinds))
        return result

    # --- settings ---

    async def apply_settings(self, settings: AgentSettings) -> AgentSettings:
        self.settings = settings
        await self.save()
        return settings

    async def update_reminder_config(self, morning_brief_time: str, event_reminder_lead_minutes: int) -> AgentSettings:
        return await self.apply_settings(
            self.settings.merged(
                morning_brief_time=morning_brief_time,
                event_reminder_lead_minutes=event_reminder_lead_minutes,
            )
        )

    async def update_codex_config(self, **updates) -> AgentSettings:
        return await self.apply_settings(self.settings.with_codex(**updates))

    async def set_slash_mode(self, mode: SlashMode) -> AgentSettings:
        return await self.apply_settings(self.settings.merged(slash_mode=mode))

    async def set_enabled(self, enabled: bool) -> AgentSettings:
        return await self.apply_settings(self.settings.merged(enabled=enabled))

    # --- events ---

    def _publish(self, event) -> None:
        if self.channel:
            self.channel.publish(event)

    def _publish_completed(self, kind: str, run: RunState | None) -> None:
        if run is None:
            return
        self._publish(
            RunCompleted(
                request_id=run.request_id,
                kind=kind,
                status=run.status.value,
                duration_ms=run.duration_ms,
            )
        )
