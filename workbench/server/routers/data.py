from fastapi import APIRouter, HTTPException

from workbench.data.base import ENTITY_KINDS
from workbench.server.runtime import get_runtime

router = APIRouter(prefix="/data", tags=["data"])


@router.get("/snapshot")
async def get_snapshot():
    return await get_runtime().data.snapshot()


@router.get("/{kind}")
async def list_items(kind: str):
    if kind not in ENTITY_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown data kind: {kind}")
    return {"items": await get_runtime().data.list_all(kind)}
