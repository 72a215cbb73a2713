"""Named server-side functions callable through POST /api/db/rpc."""

import logging
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)


async def get_areas_by_user(db, user_uuid: str) -> List[Dict[str, Any]]:
    assignments = await db["area_user_assignments"].find({"user_id": user_uuid}).to_list(length=None)
    area_ids = [a["area_id"] for a in assignments]
    areas = await db["areas"].find({"id": {"$in": area_ids}}, {"id": 1, "name": 1, "description": 1}).to_list(length=None)
    by_id = {a["id"]: a for a in areas}

    return [
        {
            "area_id": a["area_id"],
            "area_name": by_id.get(a["area_id"], {}).get("name"),
            "area_description": by_id.get(a["area_id"], {}).get("description"),
        }
        for a in assignments
    ]


async def get_users_by_area(db, area_uuid: str) -> List[Dict[str, Any]]:
    assignments = await db["area_user_assignments"].find({"area_id": area_uuid}).to_list(length=None)
    user_ids = [a["user_id"] for a in assignments]
    users = await db["users"].find({"id": {"$in": user_ids}}, {"id": 1, "name": 1, "email": 1}).to_list(length=None)
    by_id = {u["id"]: u for u in users}

    return [
        {
            "user_id": a["user_id"],
            "user_name": by_id.get(a["user_id"], {}).get("name"),
            "user_email": by_id.get(a["user_id"], {}).get("email"),
        }
        for a in assignments
    ]


RPC_FUNCTIONS: Dict[str, Callable[..., Awaitable[Any]]] = {
    "get_areas_by_user": get_areas_by_user,
    "get_users_by_area": get_users_by_area,
}
