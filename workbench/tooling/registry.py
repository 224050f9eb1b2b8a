import json
import re
import shutil
import tempfile
from pathlib import Path

from workbench.agent.errors import ToolingImportError
from workbench.agent.models import ActionType
from workbench.channel import Channel
from workbench.events.internal import ToolingChanged
from workbench.logging import get_logger
from workbench.tooling.frontmatter import (
    build_command_markdown,
    parse_command_markdown,
    sanitize_slug,
    validate_command,
)
from workbench.tooling.models import (
    Capabilities,
    CommandConfig,
    McpServerConfig,
    SkillConfig,
    ToolingConfig,
)

BUILTIN_TOOLING_DIR = Path(__file__).parent.parent / "builtin"

MCP_FILE = Path("mcp") / "servers.json"
SKILLS_DIR = "skills"
COMMANDS_DIR = "commands"
MANIFEST = "manifest.json"

# no separators and no leading dot, so an id always names a child of skills/
_SKILL_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")

_logger = get_logger(__name__)


def validate_mcp_server(server: McpServerConfig) -> None:
    if not server.name.strip():
        raise ToolingImportError("MCP server name cannot be empty")
    if server.transport != "stdio":
        raise ToolingImportError("Only stdio transport is supported")
    if not server.command.strip():
        raise ToolingImportError("MCP server command cannot be empty")


def is_valid_skill_id(skill_id: str) -> bool:
    return bool(_SKILL_ID_RE.fullmatch(skill_id))


def read_skill_manifest(skill_dir: Path, source: str) -> SkillConfig:
    manifest_path = skill_dir / MANIFEST
    try:
        data = json.loads(manifest_path.read_text())
    except OSError as e:
        raise ToolingImportError(f"Failed to read manifest at {manifest_path}: {e}") from None
    except json.JSONDecodeError as e:
        raise ToolingImportError(f"Failed to parse manifest json: {e}") from None
    if not isinstance(data, dict):
        raise ToolingImportError("Skill manifest must be a JSON object")
    skill_id = data.get("id")
    if not isinstance(skill_id, str) or not skill_id.strip():
        raise ToolingImportError("Skill manifest missing id")
    if not is_valid_skill_id(skill_id):
        raise ToolingImportError(f"Skill id {skill_id!r} is not a valid directory name")

    def _str(key: str, default: str) -> str:
        value = data.get(key)
        return value if isinstance(value, str) else default

    enabled = data.get("enabled")
    return SkillConfig(
        id=skill_id,
        name=_str("name", skill_id),
        description=_str("description", ""),
        version=_str("version", "0.1.0"),
        enabled=enabled if isinstance(enabled, bool) else True,
        path=str(skill_dir),
        source=source,
    )


def _read_mcp_servers(path: Path, source: str) -> list[McpServerConfig]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text())
        return [McpServerConfig.model_validate({**item, "source": source}) for item in data.get("servers", [])]
    except (OSError, ValueError, AttributeError, TypeError):
        _logger.warning("Failed to load MCP config %s", path)
        return []


def _scan_skills(root: Path, source: str) -> list[SkillConfig]:
    if not root.exists():
        return []
    skills = []
    for skill_dir in sorted(root.iterdir()):
        if not skill_dir.is_dir() or skill_dir.name.startswith("."):
            continue
        try:
            skills.append(read_skill_manifest(skill_dir, source))
        except ToolingImportError as e:
            _logger.warning("Skipping skill %s: %s", skill_dir.name, e)
    return skills


def _scan_commands(root: Path, source: str) -> list[CommandConfig]:
    if not root.exists():
        return []
    commands = []
    for path in sorted(root.glob("*.md")):
        try:
            commands.append(parse_command_markdown(path.read_text(), path.stem, source))
        except (OSError, ToolingImportError) as e:
            _logger.warning("Skipping command %s: %s", path.name, e)
    return commands


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content)
    tmp.replace(path)


class ToolingRegistry:
    """MCP servers, skills and slash-commands from the builtin and user trees.

    User entries override builtin entries with the same key; MCP server
    names are compared case-insensitively. Only the user tree is writable.
    """

    def __init__(self, user_dir: Path, builtin_dir: Path = BUILTIN_TOOLING_DIR, channel: Channel | None = None):
        self.user_dir = user_dir
        self.builtin_dir = builtin_dir
        self.channel = channel
        self._config = ToolingConfig()

    @property
    def config(self) -> ToolingConfig:
        return self._config

    def load(self) -> ToolingConfig:
        mcp: dict[str, McpServerConfig] = {}
        skills: dict[str, SkillConfig] = {}
        commands: dict[str, CommandConfig] = {}

        for root, source in ((self.builtin_dir, "builtin"), (self.user_dir, "user")):
            for server in _read_mcp_servers(root / MCP_FILE, source):
                mcp[server.key] = server
            for skill in _scan_skills(root / SKILLS_DIR, source):
                skills[skill.id] = skill
            for command in _scan_commands(root / COMMANDS_DIR, source):
                commands[command.slug] = command

        self._config = ToolingConfig(
            mcp_servers=sorted(mcp.values(), key=lambda s: s.name),
            skills=sorted(skills.values(), key=lambda s: s.id),
            commands=sorted(commands.values(), key=lambda c: c.slug),
        )
        return self._config

    def reload(self) -> ToolingConfig:
        config = self.load()
        _logger.info(
            "Tooling loaded: %d MCP server(s), %d skill(s), %d command(s)",
            len(config.mcp_servers),
            len(config.skills),
            len(config.commands),
        )
        if self.channel:
            self.channel.publish(
                ToolingChanged(
                    mcp_servers=len(config.mcp_servers),
                    skills=len(config.skills),
                    commands=len(config.commands),
                )
            )
        return config

    def capabilities(self) -> Capabilities:
        return Capabilities(
            builtin_tools=[t.value for t in ActionType],
            skills=[s.id for s in self._config.skills if s.enabled],
            mcp_servers=[s.name for s in self._config.mcp_servers if s.enabled],
            commands=[c.slug for c in self._config.commands if c.enabled],
        )

    # --- MCP servers ---

    def _user_mcp_servers(self) -> list[McpServerConfig]:
        return _read_mcp_servers(self.user_dir / MCP_FILE, "user")

    def _write_user_mcp_servers(self, servers: list[McpServerConfig]) -> None:
        data = {"servers": [s.to_file_entry() for s in servers]}
        _write_atomic(self.user_dir / MCP_FILE, json.dumps(data, indent=2))

    def upsert_mcp_server(self, server: McpServerConfig) -> McpServerConfig:
        validate_mcp_server(server)
        server = server.model_copy(update={"source": "user"})
        servers = [s for s in self._user_mcp_servers() if s.key != server.key]
        servers.append(server)
        self._write_user_mcp_servers(servers)
        self.reload()
        return server

    def delete_mcp_server(self, name: str) -> None:
        servers = self._user_mcp_servers()
        remaining = [s for s in servers if s.key != name.lower()]
        if len(remaining) == len(servers):
            raise KeyError(f"MCP server {name!r} not found in user config")
        self._write_user_mcp_servers(remaining)
        self.reload()

    # --- skills ---

    def import_skill(self, src: Path) -> SkillConfig:
        if not src.is_dir():
            raise ToolingImportError("Skill path does not exist or is not a directory")
        skill = read_skill_manifest(src, "user")

        skills_root = self.user_dir / SKILLS_DIR
        skills_root.mkdir(parents=True, exist_ok=True)
        dst = skills_root / skill.id
        # stage the copy next to its destination so a failed copy never touches the live skill
        staging = Path(tempfile.mkdtemp(prefix=f".{skill.id}-", dir=skills_root))
        backup: Path | None = None
        try:
            shutil.copytree(src, staging, dirs_exist_ok=True)
            if dst.exists():
                backup = staging.with_name(staging.name + ".old")
                dst.rename(backup)
            staging.rename(dst)
        except OSError as e:
            if backup is not None and not dst.exists():
                backup.rename(dst)
            shutil.rmtree(staging, ignore_errors=True)
            raise ToolingImportError(f"Failed to import skill {skill.id}: {e}") from None
        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)

        self.reload()
        _logger.info("Imported skill '%s' from %s", skill.id, src)
        return read_skill_manifest(dst, "user")

    def toggle_skill(self, skill_id: str, enabled: bool) -> SkillConfig:
        if not is_valid_skill_id(skill_id):
            raise KeyError(f"Skill {skill_id!r} not found")
        manifest_path = self.user_dir / SKILLS_DIR / skill_id / MANIFEST
        if not manifest_path.exists():
            if any(s.id == skill_id for s in self._config.skills):
                raise ValueError("Only imported user skills can be toggled")
            raise KeyError(f"Skill {skill_id!r} not found")
        manifest = json.loads(manifest_path.read_text())
        manifest["enabled"] = enabled
        _write_atomic(manifest_path, json.dumps(manifest, indent=2))
        self.reload()
        return read_skill_manifest(manifest_path.parent, "user")

    def delete_skill(self, skill_id: str) -> None:
        skill_dir = self.user_dir / SKILLS_DIR / skill_id
        if not is_valid_skill_id(skill_id) or not skill_dir.is_dir():
            raise KeyError(f"Skill {skill_id!r} not found in user skills")
        shutil.rmtree(skill_dir)
        self.reload()
        _logger.info("Removed skill '%s'", skill_id)

    # --- commands ---

    def _write_command(self, command: CommandConfig) -> None:
        path = self.user_dir / COMMANDS_DIR / f"{command.slug}.md"
        _write_atomic(path, build_command_markdown(command))

    def upsert_command(self, command: CommandConfig | dict) -> CommandConfig:
        parsed = validate_command(command)
        parsed = parsed.model_copy(update={"source": "user"})
        self._write_command(parsed)
        self.reload()
        return parsed

    def import_command_markdown(self, src: Path) -> CommandConfig:
        if not src.exists():
            raise ToolingImportError("Command markdown path does not exist")
        if src.suffix != ".md":
            raise ToolingImportError("Only .md command files are supported")
        try:
            content = src.read_text()
        except OSError as e:
            raise ToolingImportError(f"Failed to read {src}: {e}") from None
        parsed = parse_command_markdown(content, src.stem, "user")
        self._write_command(parsed)
        self.reload()
        return parsed

    def delete_command(self, slug: str) -> None:
        path = self.user_dir / COMMANDS_DIR / f"{sanitize_slug(slug)}.md"
        if not path.exists():
            raise KeyError(f"Command {slug!r} not found in user commands")
        path.unlink()
        self.reload()
