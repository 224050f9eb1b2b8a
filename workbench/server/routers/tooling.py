from pathlib import Path

from fastapi import APIRouter, HTTPException

from workbench.server.runtime import get_runtime
from workbench.server.schemas import ImportPathRequest, ToggleSkillRequest
from workbench.tooling.models import CommandConfig, McpServerConfig

router = APIRouter(prefix="/tooling", tags=["tooling"])


def _counts(registry) -> dict:
    config = registry.config
    return {
        "mcp_servers": len(config.mcp_servers),
        "skills": len(config.skills),
        "commands": len(config.commands),
    }


@router.get("")
async def get_tooling():
    return get_runtime().registry.config.model_dump()


@router.post("/reload")
async def reload_tooling():
    registry = get_runtime().registry
    registry.reload()
    return _counts(registry)


@router.put("/mcp")
async def upsert_mcp_server(server: McpServerConfig):
    try:
        saved = get_runtime().registry.upsert_mcp_server(server)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return saved.model_dump()


@router.delete("/mcp/{name}")
async def delete_mcp_server(name: str):
    try:
        get_runtime().registry.delete_mcp_server(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"MCP server not found: {name}")
    return {"status": "deleted", "name": name}


@router.post("/skills/import")
async def import_skill(request: ImportPathRequest):
    try:
        skill = get_runtime().registry.import_skill(Path(request.path).expanduser())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return skill.model_dump()


@router.post("/skills/{skill_id}/toggle")
async def toggle_skill(skill_id: str, request: ToggleSkillRequest):
    try:
        skill = get_runtime().registry.toggle_skill(skill_id, request.enabled)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Skill not found: {skill_id}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return skill.model_dump()


@router.delete("/skills/{skill_id}")
async def delete_skill(skill_id: str):
    try:
        get_runtime().registry.delete_skill(skill_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Skill not found: {skill_id}")
    return {"status": "deleted", "id": skill_id}


@router.put("/commands")
async def upsert_command(command: CommandConfig):
    try:
        saved = get_runtime().registry.upsert_command(command)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return saved.model_dump()


@router.post("/commands/import")
async def import_command(request: ImportPathRequest):
    try:
        command = get_runtime().registry.import_command_markdown(Path(request.path).expanduser())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return command.model_dump()


@router.delete("/commands/{slug}")
async def delete_command(slug: str):
    try:
        get_runtime().registry.delete_command(slug)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Command not found: {slug}")
    return {"status": "deleted", "slug": slug}
