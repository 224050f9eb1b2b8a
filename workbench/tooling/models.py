from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Source = Literal["builtin", "user"]
CommandMode = Literal["insert", "execute"]


class McpServerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    transport: str = "stdio"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    enabled: bool = True
    source: Source = "user"

    @property
    def key(self) -> str:
        return self.name.lower()

    def to_file_entry(self) -> dict:
        return self.model_dump(exclude={"source"})


class SkillConfig(BaseModel):
    id: str
    name: str
    description: str = ""
    version: str = "0.1.0"
    enabled: bool = True
    path: str
    source: Source


class CommandConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str
    title: str
    description: str = ""
    enabled: bool = True
    mode: CommandMode = "insert"
    tags: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)
    body: str
    source: Source = "user"

    def matches(self, name: str) -> bool:
        name = name.lower()
        return name == self.slug or name in (a.lower() for a in self.aliases)


class ToolingConfig(BaseModel):
    mcp_servers: list[McpServerConfig] = Field(default_factory=list)
    skills: list[SkillConfig] = Field(default_factory=list)
    commands: list[CommandConfig] = Field(default_factory=list)

    def find_command(self, name: str) -> CommandConfig | None:
        for command in self.commands:
            if command.enabled and command.matches(name):
                return command
        return None


class Capabilities(BaseModel):
    builtin_tools: list[str]
    skills: list[str]
    mcp_servers: list[str]
    commands: list[str]
