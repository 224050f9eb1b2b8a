import json
from pathlib import Path

import pytest

from workbench.agent.errors import ToolingImportError
from workbench.channel import Channel
from workbench.events.internal import ToolingChanged
from workbench.tooling.frontmatter import parse_command_markdown, sanitize_slug
from workbench.tooling.models import CommandConfig, McpServerConfig
from workbench.tooling.registry import ToolingRegistry


def _write_skill(root: Path, skill_id: str, **manifest) -> Path:
    skill_dir = root / skill_id
    skill_dir.mkdir(parents=True)
    (skill_dir / "manifest.json").write_text(json.dumps({"id": skill_id, "name": skill_id.title(), **manifest}))
    (skill_dir / "SKILL.md").write_text(f"# {skill_id}\n")
    return skill_dir


@pytest.fixture
def builtin_dir(tmp_path: Path) -> Path:
    root = tmp_path / "builtin"
    (root / "mcp").mkdir(parents=True)
    (root / "mcp" / "servers.json").write_text(
        json.dumps({"servers": [{"name": "Codex", "command": "codex", "args": ["mcp-server"]}]})
    )
    _write_skill(root / "skills", "planner")
    (root / "commands").mkdir()
    (root / "commands" / "plan-day.md").write_text(
        "---\ntitle: Plan my day\naliases: [today]\nmode: execute\n---\n\nPlan my day.\n"
    )
    return root


@pytest.fixture
def registry(tmp_path: Path, builtin_dir: Path) -> ToolingRegistry:
    registry = ToolingRegistry(user_dir=tmp_path / "user", builtin_dir=builtin_dir)
    registry.load()
    return registry


class TestLoad:
    def test_builtin_entries(self, registry: ToolingRegistry):
        config = registry.config
        assert [s.name for s in config.mcp_servers] == ["Codex"]
        assert config.mcp_servers[0].source == "builtin"
        assert [s.id for s in config.skills] == ["planner"]
        assert [c.slug for c in config.commands] == ["plan-day"]
        assert config.commands[0].mode == "execute"

    def test_user_overrides_builtin_case_insensitively(self, registry: ToolingRegistry):
        registry.upsert_mcp_server(McpServerConfig(name="codex", command="/opt/codex", args=["mcp-server"]))
        servers = registry.config.mcp_servers
        assert len(servers) == 1
        assert servers[0].command == "/opt/codex"
        assert servers[0].source == "user"

    def test_broken_entries_are_skipped(self, tmp_path: Path, builtin_dir: Path):
        user = tmp_path / "user"
        (user / "skills" / "broken").mkdir(parents=True)
        (user / "skills" / "broken" / "manifest.json").write_text("{not json")
        (user / "commands").mkdir()
        (user / "commands" / "bad.md").write_text("---\nmode: loud\n---\nbody\n")

        config = ToolingRegistry(user_dir=user, builtin_dir=builtin_dir).load()

        assert [s.id for s in config.skills] == ["planner"]
        assert [c.slug for c in config.commands] == ["plan-day"]

    def test_capabilities_list_enabled_only(self, registry: ToolingRegistry):
        registry.upsert_command(CommandConfig(slug="off", title="Off", body="x", enabled=False))
        caps = registry.capabilities()
        assert "todo.create" in caps.builtin_tools
        assert caps.commands == ["plan-day"]
        assert caps.skills == ["planner"]
        assert caps.mcp_servers == ["Codex"]

    @pytest.mark.asyncio
    async def test_reload_publishes_change(self, tmp_path: Path, builtin_dir: Path):
        channel = Channel()
        seen = []

        async def on_change(event: ToolingChanged) -> None:
            seen.append(event)

        channel.subscribe(ToolingChanged, on_change)
        ToolingRegistry(user_dir=tmp_path / "user", builtin_dir=builtin_dir, channel=channel).reload()
        await channel.drain()

        assert seen == [ToolingChanged(mcp_servers=1, skills=1, commands=1)]


class TestMcpServers:
    def test_rejects_non_stdio(self, registry: ToolingRegistry):
        with pytest.raises(ToolingImportError):
            registry.upsert_mcp_server(McpServerConfig(name="web", transport="http", command="x"))
        assert not (registry.user_dir / "mcp" / "servers.json").exists()

    def test_rejects_empty_command(self, registry: ToolingRegistry):
        with pytest.raises(ToolingImportError):
            registry.upsert_mcp_server(McpServerConfig(name="web", command="  "))

    def test_delete(self, registry: ToolingRegistry):
        registry.upsert_mcp_server(McpServerConfig(name="Files", command="files-mcp"))
        registry.delete_mcp_server("FILES")
        assert [s.name for s in registry.config.mcp_servers] == ["Codex"]

    def test_delete_builtin_is_not_found(self, registry: ToolingRegistry):
        with pytest.raises(KeyError):
            registry.delete_mcp_server("codex")


class TestSkills:
    def test_import_and_toggle(self, tmp_path: Path, registry: ToolingRegistry):
        src = _write_skill(tmp_path / "incoming", "budget", description="Track spending")

        skill = registry.import_skill(src)
        assert skill.source == "user"
        assert (registry.user_dir / "skills" / "budget" / "SKILL.md").exists()

        toggled = registry.toggle_skill("budget", False)
        assert toggled.enabled is False
        assert "budget" not in registry.capabilities().skills

    def test_reimport_replaces_existing(self, tmp_path: Path, registry: ToolingRegistry):
        src = _write_skill(tmp_path / "incoming", "budget", version="1.0.0")
        registry.import_skill(src)
        (src / "manifest.json").write_text(json.dumps({"id": "budget", "name": "Budget", "version": "2.0.0"}))

        skill = registry.import_skill(src)

        assert skill.version == "2.0.0"
        leftovers = [p.name for p in (registry.user_dir / "skills").iterdir()]
        assert leftovers == ["budget"]

    def test_import_requires_manifest_id(self, tmp_path: Path, registry: ToolingRegistry):
        src = tmp_path / "incoming" / "nameless"
        src.mkdir(parents=True)
        (src / "manifest.json").write_text(json.dumps({"name": "Nameless"}))
        with pytest.raises(ToolingImportError, match="missing id"):
            registry.import_skill(src)

    @pytest.mark.parametrize("skill_id", ["..", ".", ".hidden", "a/b", "nested/.."])
    def test_import_rejects_path_like_ids(self, tmp_path: Path, registry: ToolingRegistry, skill_id: str):
        registry.upsert_mcp_server(McpServerConfig(name="files", command="files-mcp"))
        src = tmp_path / "incoming" / "evil"
        src.mkdir(parents=True)
        (src / "manifest.json").write_text(json.dumps({"id": skill_id, "name": "Evil"}))

        with pytest.raises(ToolingImportError, match="not a valid directory name"):
            registry.import_skill(src)

        assert (registry.user_dir / "mcp" / "servers.json").exists()
        assert "files" in [s.name for s in registry.config.mcp_servers]

    def test_delete_and_toggle_reject_path_like_ids(self, registry: ToolingRegistry):
        registry.upsert_command({"slug": "keep", "title": "Keep", "body": "x", "mode": "insert"})
        for skill_id in ("..", "."):
            with pytest.raises(KeyError):
                registry.delete_skill(skill_id)
            with pytest.raises(KeyError):
                registry.toggle_skill(skill_id, False)
        assert (registry.user_dir / "commands" / "keep.md").exists()

    def test_failed_swap_keeps_previous_version(self, tmp_path: Path, registry: ToolingRegistry, monkeypatch):
        src = _write_skill(tmp_path / "incoming", "budget", version="1.0.0")
        registry.import_skill(src)
        (src / "manifest.json").write_text(json.dumps({"id": "budget", "name": "Budget", "version": "2.0.0"}))

        real_rename = Path.rename

        def failing_rename(self, target):
            # only the staged copy moving into place fails
            if self.name.startswith(".budget-") and not self.name.endswith(".old"):
                raise OSError("disk full")
            return real_rename(self, target)

        monkeypatch.setattr(Path, "rename", failing_rename)
        with pytest.raises(ToolingImportError, match="disk full"):
            registry.import_skill(src)
        monkeypatch.undo()

        skills_root = registry.user_dir / "skills"
        assert [p.name for p in skills_root.iterdir()] == ["budget"]
        assert json.loads((skills_root / "budget" / "manifest.json").read_text())["version"] == "1.0.0"

    def test_import_missing_dir(self, tmp_path: Path, registry: ToolingRegistry):
        with pytest.raises(ToolingImportError):
            registry.import_skill(tmp_path / "nowhere")

    def test_builtin_skill_cannot_be_toggled(self, registry: ToolingRegistry):
        with pytest.raises(ValueError, match="Only imported"):
            registry.toggle_skill("planner", False)
        with pytest.raises(KeyError):
            registry.toggle_skill("ghost", False)

    def test_delete(self, tmp_path: Path, registry: ToolingRegistry):
        registry.import_skill(_write_skill(tmp_path / "incoming", "budget"))
        registry.delete_skill("budget")
        assert [s.id for s in registry.config.skills] == ["planner"]
        with pytest.raises(KeyError):
            registry.delete_skill("budget")


class TestCommands:
    def test_upsert_writes_markdown(self, registry: ToolingRegistry):
        command = registry.upsert_command(
            {"slug": "Weekly Review!", "title": "Weekly review", "body": "Review my week.", "mode": "insert"}
        )
        assert command.slug == "weeklyreview"
        path = registry.user_dir / "commands" / "weeklyreview.md"
        parsed = parse_command_markdown(path.read_text(), path.stem, "user")
        assert parsed.title == "Weekly review"
        assert parsed.body == "Review my week."

    def test_user_command_overrides_builtin(self, registry: ToolingRegistry):
        registry.upsert_command({"slug": "plan-day", "title": "Mine", "body": "My own plan.", "mode": "insert"})
        command = registry.config.find_command("today")
        assert command is None
        assert registry.config.find_command("plan-day").body == "My own plan."

    def test_invalid_mode(self, registry: ToolingRegistry):
        with pytest.raises(ToolingImportError, match="mode"):
            registry.upsert_command({"slug": "x", "title": "X", "body": "y", "mode": "shout"})

    def test_empty_body(self, registry: ToolingRegistry):
        with pytest.raises(ToolingImportError, match="body"):
            registry.upsert_command({"slug": "x", "title": "X", "body": "  ", "mode": "insert"})

    def test_import_markdown(self, tmp_path: Path, registry: ToolingRegistry):
        src = tmp_path / "standup.md"
        src.write_text("---\ntitle: Standup\naliases: [su]\n---\nSummarise yesterday.\n")
        command = registry.import_command_markdown(src)
        assert command.slug == "standup"
        assert registry.config.find_command("su").slug == "standup"

    def test_import_rejects_other_extensions(self, tmp_path: Path, registry: ToolingRegistry):
        src = tmp_path / "standup.txt"
        src.write_text("hello")
        with pytest.raises(ToolingImportError, match=".md"):
            registry.import_command_markdown(src)

    def test_delete(self, registry: ToolingRegistry):
        registry.upsert_command({"slug": "tmp", "title": "Tmp", "body": "x", "mode": "insert"})
        registry.delete_command("tmp")
        assert registry.config.find_command("tmp") is None
        with pytest.raises(KeyError):
            registry.delete_command("plan-day")


def test_sanitize_slug():
    assert sanitize_slug("  Plan Day!! ") == "planday"
    assert sanitize_slug("--a_b--") == "a_b"
