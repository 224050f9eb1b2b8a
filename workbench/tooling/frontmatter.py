"""Markdown command files: YAML front matter followed by the command body."""

import re

import yaml

from workbench.agent.errors import ToolingImportError
from workbench.tooling.models import CommandConfig

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)
_SLUG_RE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_slug(slug: str) -> str:
    return _SLUG_RE.sub("", slug).strip("_-").lower()


def split_frontmatter(content: str) -> tuple[dict, str]:
    content = content.lstrip()
    m = _FRONTMATTER_RE.match(content)
    if not m:
        return {}, content
    try:
        frontmatter = yaml.safe_load(m.group(1)) or {}
    except yaml.YAMLError as e:
        raise ToolingImportError(f"Invalid front matter: {e}") from None
    if not isinstance(frontmatter, dict):
        raise ToolingImportError("Front matter must be a mapping")
    return frontmatter, content[m.end():]


def _as_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _as_bool(value, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return default


def parse_command_markdown(content: str, stem: str, source: str) -> CommandConfig:
    frontmatter, body = split_frontmatter(content)
    slug = str(frontmatter.get("slug") or stem)
    return validate_command(
        {
            "slug": slug,
            "title": str(frontmatter.get("title") or slug),
            "description": str(frontmatter.get("description") or ""),
            "enabled": _as_bool(frontmatter.get("enabled")),
            "mode": frontmatter.get("mode") or "insert",
            "tags": _as_list(frontmatter.get("tags")),
            "aliases": _as_list(frontmatter.get("aliases")),
            "body": body.strip(),
            "source": source,
        }
    )


def validate_command(data: dict | CommandConfig) -> CommandConfig:
    raw = data.model_dump() if isinstance(data, CommandConfig) else dict(data)
    mode = raw.get("mode")
    if mode not in ("insert", "execute"):
        raise ToolingImportError("Command mode must be insert or execute")
    slug = sanitize_slug(str(raw.get("slug") or ""))
    if not slug:
        raise ToolingImportError("Command slug is invalid")
    if not str(raw.get("title") or "").strip():
        raise ToolingImportError("Command title cannot be empty")
    if not str(raw.get("body") or "").strip():
        raise ToolingImportError("Command body cannot be empty")
    try:
        return CommandConfig.model_validate({**raw, "slug": slug})
    except ValueError as e:
        raise ToolingImportError(f"Invalid command: {e}") from None


def build_command_markdown(command: CommandConfig) -> str:
    frontmatter = {
        "slug": command.slug,
        "title": command.title,
        "description": command.description,
        "enabled": command.enabled,
        "mode": command.mode,
        "tags": command.tags,
        "aliases": command.aliases,
    }
    header = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True)
    return f"---\n{header}---\n\n{command.body.strip()}\n"
