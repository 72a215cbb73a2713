import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, ValidationError

from cache.settings_cache import get_setting, set_setting, settings_cache
from .client import get_database
from .executor import execute_query
from .query_models import QueryRequest, QueryResponse
from .rpc import RPC_FUNCTIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["db"])


class RpcRequest(BaseModel):
    fn: str
    params: Dict[str, Any]


class SettingValue(BaseModel):
    value: Any = None


class InvalidateRequest(BaseModel):
    key: Optional[str] = None


@router.post("/db/query", response_model=QueryResponse)
async def db_query(payload: Dict[str, Any] = Body(...)) -> QueryResponse:
    if not payload.get("table") or not payload.get("operation"):
        raise HTTPException(status_code=400, detail="Request body needs 'table' and 'operation'")
    try:
        request = QueryRequest.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid query request: {e.errors()[0].get('msg')}")
    return await execute_query(request)


@router.post("/db/rpc", response_model=QueryResponse)
async def db_rpc(req: RpcRequest) -> QueryResponse:
    fn = RPC_FUNCTIONS.get(req.fn)
    if fn is None:
        raise HTTPException(status_code=400, detail=f"Unknown RPC function: {req.fn}")
    try:
        db = await get_database()
        return QueryResponse.ok(await fn(db, **req.params))
    except TypeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid params for {req.fn}: {e}")
    except Exception as e:
        logger.error(f"RPC {req.fn} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ---- Settings

@router.get("/settings/{key}")
async def read_setting(key: str):
    value = await get_setting(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return {"key": key, "value": value}


@router.put("/settings/{key}")
async def write_setting(key: str, body: SettingValue):
    await set_setting(key, body.value)
    return {"key": key, "value": body.value}


@router.post("/settings/invalidate-cache")
async def invalidate_settings_cache(body: Optional[InvalidateRequest] = None):
    if body and body.key:
        settings_cache.invalidate(body.key)
    else:
        settings_cache.invalidate_all()
    return {"success": True}
