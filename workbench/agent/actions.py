"""Typed action payloads.

A proposal's `payload` stays an opaque dict until execution time, when it is
resolved into exactly one of the commands below by its `type`. Resolution
failures surface as ProposalValidationError and are audited per action.
"""

from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from workbench.agent.errors import ProposalValidationError
from workbench.agent.models import ActionProposal

NonBlank = Annotated[str, Field(min_length=1)]


class _Command(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    entity: ClassVar[str | None] = None


class _Targeted(_Command):
    id: NonBlank


class _Update(_Targeted):
    def changes(self) -> dict:
        return self.model_dump(exclude={"kind", "id"}, exclude_none=True)

    @model_validator(mode="after")
    def _require_change(self):
        if not self.changes():
            raise ValueError(f"{self.kind} has no fields to update")
        return self


# --- todos ---


class TodoCreate(_Command):
    entity: ClassVar[str] = "todo"
    kind: Literal["todo.create"]
    title: NonBlank
    priority: str = "normal"


class TodoUpdate(_Update):
    entity: ClassVar[str] = "todo"
    kind: Literal["todo.update"]
    title: NonBlank | None = None
    completed: bool | None = None
    priority: NonBlank | None = None


class TodoDelete(_Targeted):
    entity: ClassVar[str] = "todo"
    kind: Literal["todo.delete"]


# --- projects ---


class ProjectCreate(_Command):
    entity: ClassVar[str] = "project"
    kind: Literal["project.create"]
    title: NonBlank
    deadline: NonBlank


class ProjectUpdateProgress(_Targeted):
    entity: ClassVar[str] = "project"
    kind: Literal["project.update_progress"]
    progress: int = Field(ge=0, le=100)


class ProjectDelete(_Targeted):
    entity: ClassVar[str] = "project"
    kind: Literal["project.delete"]


# --- calendar events ---


class EventCreate(_Command):
    entity: ClassVar[str] = "event"
    kind: Literal["event.create"]
    title: NonBlank
    date: NonBlank
    color: str = "blue"
    note: str | None = None


class EventUpdate(_Update):
    entity: ClassVar[str] = "event"
    kind: Literal["event.update"]
    title: NonBlank | None = None
    date: NonBlank | None = None
    color: NonBlank | None = None
    note: NonBlank | None = None


class EventDelete(_Targeted):
    entity: ClassVar[str] = "event"
    kind: Literal["event.delete"]


# --- personal tasks ---


class PersonalCreate(_Command):
    entity: ClassVar[str] = "personal"
    kind: Literal["personal.create"]
    title: NonBlank
    budget: float | None = None
    date: str | None = None
    location: str | None = None
    note: str | None = None


class PersonalUpdate(_Update):
    entity: ClassVar[str] = "personal"
    kind: Literal["personal.update"]
    title: NonBlank | None = None
    budget: float | None = None
    date: NonBlank | None = None
    location: NonBlank | None = None
    note: NonBlank | None = None


class PersonalDelete(_Targeted):
    entity: ClassVar[str] = "personal"
    kind: Literal["personal.delete"]


class QuerySnapshot(_Command):
    kind: Literal["query.snapshot"]


ActionCommand = Annotated[
    TodoCreate
    | TodoUpdate
    | TodoDelete
    | ProjectCreate
    | ProjectUpdateProgress
    | ProjectDelete
    | EventCreate
    | EventUpdate
    | EventDelete
    | PersonalCreate
    | PersonalUpdate
    | PersonalDelete
    | QuerySnapshot,
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[ActionCommand] = TypeAdapter(ActionCommand)


def _describe(exc: ValidationError, tag: str) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"] if p != tag) or "payload"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_command(proposal: ActionProposal) -> ActionCommand:
    try:
        return _adapter.validate_python({**proposal.payload, "kind": proposal.type})
    except ValidationError as e:
        if any(err["type"] == "union_tag_invalid" for err in e.errors()):
            raise ProposalValidationError(f"Unsupported action type: {proposal.type}") from None
        raise ProposalValidationError(f"Invalid {proposal.type} payload: {_describe(e, proposal.type)}") from None
