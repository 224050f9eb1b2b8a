"""Run-state machine: folds stream events into an immutable RunState.

apply_event() is a pure function. Callers replace their RunState with the
returned value; the previous value is never touched, so readers holding an
old snapshot keep seeing a consistent run.
"""

from collections import deque
from dataclasses import replace
from datetime import datetime

from workbench.agent.models import (
    ActionProgress,
    RunError,
    RunState,
    RunStatus,
    Stage,
    StreamEvent,
)
from workbench.constants import EXECUTING_BASE, EXECUTING_SPAN, RUN_EVENT_LIMIT, STAGE_PERCENT
from workbench.utils import utc_now

_PROGRESS_FIELDS = ("total", "completed", "success", "failed")


def start_run(request_id: str, message: str = "Detecting agent runtime", now: datetime | None = None) -> RunState:
    return RunState(
        request_id=request_id,
        status=RunStatus.RUNNING,
        stage=Stage.RUNTIME_DETECT,
        percent=STAGE_PERCENT[Stage.RUNTIME_DETECT],
        message=message,
        started_at=now or utc_now(),
    )


def stage_percent(stage: Stage, progress: ActionProgress, current: int) -> int:
    if stage == Stage.EXECUTING and progress.total > 0:
        ratio = min(1.0, progress.completed / progress.total)
        return round(EXECUTING_BASE + ratio * EXECUTING_SPAN)
    if stage == Stage.ERROR:
        return current
    return STAGE_PERCENT[stage]


def merge_progress(progress: ActionProgress, meta: dict | None) -> ActionProgress:
    if not meta:
        return progress
    updates = {}
    for name in _PROGRESS_FIELDS:
        value = meta.get(name)
        # bool is an int subclass; a stray True must not count as 1
        if isinstance(value, int) and not isinstance(value, bool):
            updates[name] = max(0, value)
    return replace(progress, **updates) if updates else progress


def _error_from(event: StreamEvent) -> RunError:
    meta = event.meta or {}
    reason = meta.get("reason")
    if not isinstance(reason, str) or not reason:
        reason = event.message or "Agent run failed"
    retryable = meta.get("retryable")
    return RunError(reason=reason, retryable=retryable if isinstance(retryable, bool) else True)


def accepts(state: RunState, event: StreamEvent) -> bool:
    if event.request_id == state.request_id:
        return True
    # A backend may mint its own id; only the very first event may rebind the run.
    return state.applied == 0


def apply_event(state: RunState, event: StreamEvent) -> RunState:
    if not accepts(state, event):
        return state

    progress = merge_progress(state.action_progress, event.meta)
    events = deque(state.events, maxlen=RUN_EVENT_LIMIT)
    events.append(event)

    changes = dict(
        request_id=event.request_id,
        stage=event.stage,
        message=event.message,
        action_progress=progress,
        percent=stage_percent(event.stage, progress, state.percent),
        events=events,
        applied=state.applied + 1,
    )

    match event.stage:
        case Stage.FALLBACK:
            changes["status"] = RunStatus.FALLBACK
        case Stage.COMPLETED:
            changes["status"] = RunStatus.COMPLETED
            changes.update(_ended(state, event))
        case Stage.ERROR:
            changes["status"] = RunStatus.ERROR
            changes["error"] = _error_from(event)
            changes.update(_ended(state, event))
        case _:
            changes["status"] = RunStatus.RUNNING

    return replace(state, **changes)


def _ended(state: RunState, event: StreamEvent) -> dict:
    ended_at = event.created_at
    duration_ms = max(0, int((ended_at - state.started_at).total_seconds() * 1000))
    return {"ended_at": ended_at, "duration_ms": duration_ms}
