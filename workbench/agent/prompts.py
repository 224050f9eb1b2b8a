import json
import re
from collections.abc import Sequence
from datetime import datetime

from workbench.agent.errors import DispatchError
from workbench.agent.models import ActionProposal, ActionType, ChatResponse, Message, Role
from workbench.logging import get_logger
from workbench.tooling.models import Capabilities

_logger = get_logger(__name__)

_JSON_FENCE_RE = re.compile(r"```json\s*(.*?)```", re.DOTALL)

DEFAULT_REPLY = "Here is my suggestion."

SYSTEM_PROMPT = """You are the workbench planning agent. You help the user manage their todos, projects, calendar events and personal tasks.

## RULES

- Ground every suggestion in the context snapshot below.
- You never change data yourself. Propose actions; the user approves them one by one.
- Reply with JSON only, in this exact shape:
  {{"reply": "string", "actions": [{{"id": "string", "type": "string", "title": "string", "reason": "string", "payload": {{}}, "requiresApproval": true}}]}}
- Action ids must be unique within a reply.
- If no action is needed, return an empty actions array.

## ACTION TYPES

{action_types}

{tooling}## CONTEXT
Now: {now}
{snapshot}"""

ACTION_PAYLOADS = {
    ActionType.TODO_CREATE: "{title, priority?}",
    ActionType.TODO_UPDATE: "{id, title?, completed?, priority?}",
    ActionType.TODO_DELETE: "{id}",
    ActionType.PROJECT_CREATE: "{title, deadline}",
    ActionType.PROJECT_UPDATE_PROGRESS: "{id, progress 0-100}",
    ActionType.PROJECT_DELETE: "{id}",
    ActionType.EVENT_CREATE: "{title, date YYYY-MM-DD, color?, note?}",
    ActionType.EVENT_UPDATE: "{id, title?, date?, color?, note?}",
    ActionType.EVENT_DELETE: "{id}",
    ActionType.PERSONAL_CREATE: "{title, budget?, date?, location?, note?}",
    ActionType.PERSONAL_UPDATE: "{id, title?, budget?, date?, location?, note?}",
    ActionType.PERSONAL_DELETE: "{id}",
    ActionType.QUERY_SNAPSHOT: "{}",
}


def _tooling_section(capabilities: Capabilities | None) -> str:
    if not capabilities:
        return ""
    lines = []
    if capabilities.skills:
        lines.append(f"Skills: {', '.join(capabilities.skills)}")
    if capabilities.commands:
        lines.append(f"Commands: {', '.join('/' + c for c in capabilities.commands)}")
    if capabilities.mcp_servers:
        lines.append(f"MCP servers: {', '.join(capabilities.mcp_servers)}")
    if not lines:
        return ""
    return "## TOOLING\n\n" + "\n".join(lines) + "\n\n"


def build_system_prompt(
    snapshot: dict,
    capabilities: Capabilities | None = None,
    now: datetime | None = None,
) -> str:
    action_types = "\n".join(f"- {t.value} {payload}" for t, payload in ACTION_PAYLOADS.items())
    return SYSTEM_PROMPT.format(
        action_types=action_types,
        tooling=_tooling_section(capabilities),
        now=(now or datetime.now()).strftime("%Y-%m-%d %H:%M"),
        snapshot=json.dumps(snapshot, ensure_ascii=False, default=str),
    )


def render_transcript(messages: Sequence[Message]) -> str:
    parts = []
    for msg in messages:
        if msg.role == Role.SYSTEM:
            continue
        label = "User" if msg.role == Role.USER else "Assistant"
        parts.append(f"[{label}]\n{msg.content}")
    return "\n\n".join(parts)


def build_prompt(system_prompt: str, messages: Sequence[Message]) -> str:
    """Single-string prompt for backends that take one input (codex exec, the codex MCP tool)."""
    return f"{system_prompt}\n\n## CONVERSATION\n\n{render_transcript(messages)}\n\n[Assistant]\n"


def extract_json_block(content: str) -> str:
    if m := _JSON_FENCE_RE.search(content):
        return m.group(1).strip()
    start, end = content.find("{"), content.rfind("}")
    if start != -1 and end > start:
        return content[start : end + 1]
    return content.strip()


def parse_reply(content: str) -> ChatResponse:
    try:
        value = json.loads(extract_json_block(content))
    except json.JSONDecodeError:
        value = None

    if isinstance(value, dict):
        reply = value.get("reply")
        raw_actions = value.get("actions") or []
        if not isinstance(raw_actions, list):
            raise DispatchError("Backend reply has a non-list 'actions' field")
        try:
            proposals = [ActionProposal.from_dict(item) for item in raw_actions]
        except ValueError as e:
            raise DispatchError(f"Backend actions parse failed: {e}") from None
        return ChatResponse(
            reply=reply if isinstance(reply, str) and reply.strip() else DEFAULT_REPLY,
            actions=_unique(proposals),
        )

    plain = content.strip()
    if not plain:
        raise DispatchError("Backend returned empty content")
    return ChatResponse(reply=plain)


def _unique(proposals: list[ActionProposal]) -> tuple[ActionProposal, ...]:
    seen: set[str] = set()
    unique = []
    for proposal in proposals:
        if proposal.id in seen:
            _logger.warning("Dropping duplicate action id %s", proposal.id)
            continue
        seen.add(proposal.id)
        unique.append(proposal)
    return tuple(unique)
