from collections.abc import Sequence
from typing import Any, assert_never

from workbench.agent.actions import (
    EventCreate,
    EventDelete,
    EventUpdate,
    PersonalCreate,
    PersonalDelete,
    PersonalUpdate,
    ProjectCreate,
    ProjectDelete,
    ProjectUpdateProgress,
    QuerySnapshot,
    TodoCreate,
    TodoDelete,
    TodoUpdate,
    parse_command,
)
from workbench.agent.errors import MutationError, ProposalValidationError
from workbench.agent.models import ActionProposal, AuditRecord, BatchResult, Stage, StreamEvent
from workbench.core.stream import EventStream
from workbench.data.base import DataStore
from workbench.logging import get_logger
from workbench.utils import new_id, utc_now

_logger = get_logger(__name__)


class BatchExecutor:
    """Runs approved proposals against the data store, one audit record per action.

    A failing action never stops its siblings. Progress is reported as
    `executing` events carrying {total, completed, success, failed}.
    """

    def __init__(self, data: DataStore):
        self.data = data

    async def execute(
        self,
        actions: Sequence[ActionProposal],
        events: EventStream[StreamEvent] | None = None,
        request_id: str | None = None,
    ) -> BatchResult:
        batch_id = new_id()
        request_id = request_id or batch_id
        total = len(actions)
        success = failed = 0

        def emit(stage: Stage, message: str) -> None:
            if events is not None:
                meta = {"total": total, "completed": success + failed, "success": success, "failed": failed}
                events.put(StreamEvent(request_id=request_id, stage=stage, message=message, meta=meta))

        records: list[AuditRecord] = []
        try:
            emit(Stage.EXECUTING, f"Executing {total} action(s)")
            for action in actions:
                record = await self._execute_one(batch_id, action)
                records.append(record)
                if record.success:
                    success += 1
                else:
                    failed += 1
                emit(Stage.EXECUTING, f"{action.title}: {'done' if record.success else record.error}")

            message = f"Executed {success}/{total} action(s)" + (f", {failed} failed" if failed else "")
            emit(Stage.COMPLETED, message)
        finally:
            if events is not None:
                events.close()

        _logger.info("Batch %s: %d succeeded, %d failed", batch_id, success, failed)
        return BatchResult(
            success=total > 0 and failed == 0,
            batch_id=batch_id,
            message=message,
            records=tuple(records),
        )

    async def _execute_one(self, batch_id: str, action: ActionProposal) -> AuditRecord:
        before: dict | None = None
        after: dict | None = None
        error: str | None = None
        try:
            command = parse_command(action)
            before, after = await self._apply(command)
        except (ProposalValidationError, MutationError) as e:
            error = str(e)
        except Exception as e:
            _logger.exception("Action %s (%s) failed", action.id, action.type)
            error = f"Unexpected error: {e}"

        return AuditRecord(
            id=new_id(),
            batch_id=batch_id,
            action_id=action.id,
            action_type=action.type,
            payload=action.payload,
            success=error is None,
            created_at=utc_now(),
            before_state=before,
            after_state=after,
            error=error,
        )

    async def _apply(self, command) -> tuple[dict | None, dict | None]:
        match command:
            case TodoCreate() | ProjectCreate() | EventCreate() | PersonalCreate():
                fields = command.model_dump(exclude={"kind"})
                return None, await self.data.create(command.entity, fields)
            case TodoUpdate() | EventUpdate() | PersonalUpdate():
                before = await self._require(command.entity, command.id)
                return before, await self.data.update(command.entity, command.id, command.changes())
            case ProjectUpdateProgress():
                before = await self._require(command.entity, command.id)
                return before, await self.data.update(command.entity, command.id, {"progress": command.progress})
            case TodoDelete() | ProjectDelete() | EventDelete() | PersonalDelete():
                before = await self._require(command.entity, command.id)
                await self.data.delete(command.entity, command.id)
                return before, None
            case QuerySnapshot():
                return None, await self.data.snapshot()
            case _:
                assert_never(command)

    async def _require(self, entity: str, item_id: str) -> dict[str, Any]:
        row = await self.data.get(entity, item_id)
        if row is None:
            raise MutationError(f"{entity} {item_id} not found")
        return row
