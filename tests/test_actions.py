import pytest

from workbench.agent.actions import (
    EventUpdate,
    ProjectUpdateProgress,
    QuerySnapshot,
    TodoCreate,
    parse_command,
)
from workbench.agent.errors import ProposalValidationError
from workbench.agent.models import ActionProposal


def _proposal(action_type: str, **payload) -> ActionProposal:
    return ActionProposal(id="a1", type=action_type, title="t", payload=payload)


class TestParseCommand:
    def test_todo_create(self):
        command = parse_command(_proposal("todo.create", title="  Ship it  "))
        assert isinstance(command, TodoCreate)
        assert command.title == "Ship it"
        assert command.priority == "normal"

    def test_update_keeps_only_given_fields(self):
        command = parse_command(_proposal("event.update", id="e1", note="moved"))
        assert isinstance(command, EventUpdate)
        assert command.changes() == {"note": "moved"}

    def test_update_requires_a_change(self):
        with pytest.raises(ProposalValidationError, match="Invalid event.update payload"):
            parse_command(_proposal("event.update", id="e1"))

    def test_progress_range(self):
        assert isinstance(parse_command(_proposal("project.update_progress", id="p1", progress=100)), ProjectUpdateProgress)
        with pytest.raises(ProposalValidationError):
            parse_command(_proposal("project.update_progress", id="p1", progress=101))

    def test_missing_required_field(self):
        with pytest.raises(ProposalValidationError, match="title"):
            parse_command(_proposal("todo.create"))

    def test_blank_id_rejected(self):
        with pytest.raises(ProposalValidationError):
            parse_command(_proposal("todo.delete", id="   "))

    def test_unknown_type(self):
        with pytest.raises(ProposalValidationError, match="Unsupported action type: todo.archive"):
            parse_command(_proposal("todo.archive", id="x"))

    def test_snapshot_takes_no_payload(self):
        assert isinstance(parse_command(_proposal("query.snapshot")), QuerySnapshot)


class TestProposalFromDict:
    def test_approval_is_forced(self):
        proposal = ActionProposal.from_dict(
            {"id": "a1", "type": "todo.create", "payload": {"title": "x"}, "requiresApproval": False}
        )
        assert proposal.requires_approval is True
        assert proposal.title == "todo.create"

    def test_rejects_missing_id(self):
        with pytest.raises(ValueError, match="missing an id"):
            ActionProposal.from_dict({"type": "todo.create"})

    def test_rejects_non_object_payload(self):
        with pytest.raises(ValueError, match="payload must be an object"):
            ActionProposal.from_dict({"id": "a1", "type": "todo.create", "payload": [1]})
