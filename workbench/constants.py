# --- Conversation ---

MESSAGE_PERSIST_LIMIT = 20  # tail of messages kept across restarts
GREETING = (
    "I'm your workbench agent. Tell me what you want to get done and I'll "
    "propose a plan first; nothing changes until you approve it."
)
CLEARED_GREETING = "Session cleared. Tell me your next goal whenever you're ready."
DISPATCH_FALLBACK_REPLY = (
    "I can't reach the agent backend right now. Nothing was changed; you can retry in a moment."
)
MORNING_BRIEF_WINDOW_MINUTES = 5


# --- Runs ---

RUN_EVENT_LIMIT = 80  # events kept per run
DEFAULT_REQUEST_TIMEOUT_MS = 120_000

STAGE_PERCENT: dict[str, int] = {
    "runtime_detect": 10,
    "mcp_connect": 20,
    "exec_fallback": 20,
    "planning": 60,
    "executing": 70,
    "fallback": 90,
    "completed": 100,
}

# executing progress is interpolated across [EXECUTING_BASE, EXECUTING_BASE + EXECUTING_SPAN]
EXECUTING_BASE = 60
EXECUTING_SPAN = 35


# --- Audit ---

AUDIT_MEMORY_LIMIT = 50
AUDIT_PERSIST_LIMIT = 20


# --- Prompt context ---

SNAPSHOT_TODO_LIMIT = 8
SNAPSHOT_PROJECT_LIMIT = 8
SNAPSHOT_EVENT_LIMIT = 10
SNAPSHOT_PERSONAL_LIMIT = 8
EXEC_OUTPUT_LIMIT = 200_000  # chars read back from `codex exec`


# --- Codex backend ---

CODEX_BINARY = "codex"
CODEX_MCP_TOOL = "codex"
DEFAULT_EXEC_ARGS = ("exec", "--skip-git-repo-check")
DEFAULT_MCP_ARGS = ("mcp-server",)
