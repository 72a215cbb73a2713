"""
Cross-collection consistency for tasks, subtasks and work assignments.

A task's `assigned_users`, `estimated_duration` and rollup `status` are derived
from its subtasks, and work-assignment rows copy `project_id` from their task.
Every function here re-derives from the current state of the database, so
running it twice, or after a missed event, converges to the same result.

The `on_*` entry points are called by the query executor after writes. They
log failures and never raise: a failed propagation is repaired by the next
write to the same task or by `reconcile_all`.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .constants import TASK_TYPE_SUBTASK, TASK_TYPE_TASK

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = frozenset({"completed", "approved"})
ACTIVE_STATUSES = frozenset({"in_progress", "assigned"})


async def load_subtasks(db, task_id: str) -> List[Dict[str, Any]]:
    cursor = db["subtasks"].find({"task_id": task_id})
    return await cursor.to_list(length=None)


def derive_task_fields(subtasks: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Assigned users (first occurrence order) and total estimated duration."""
    assigned_users: List[str] = []
    estimated_duration = 0
    for subtask in subtasks:
        assignee = subtask.get("assigned_to")
        if assignee is not None and assignee not in assigned_users:
            assigned_users.append(assignee)
        estimated_duration += subtask.get("estimated_duration") or 0
    return {"assigned_users": assigned_users, "estimated_duration": estimated_duration}


def derive_rollup_status(subtasks: List[Dict[str, Any]]) -> Optional[str]:
    """Status the parent task should move to, or None for no change.

    "in_review" is forced whenever every subtask is done; "in_progress" is only
    a candidate and is applied solely to tasks still "pending".
    """
    statuses = [s.get("status") for s in subtasks]
    if statuses and all(status in COMPLETED_STATUSES for status in statuses):
        return "in_review"
    if any(status in ACTIVE_STATUSES for status in statuses):
        return "in_progress"
    return None


async def sync_task_from_subtasks(db, task_id: str, subtasks: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """Rewrite the task's derived fields and drop orphaned work assignments."""
    if subtasks is None:
        subtasks = await load_subtasks(db, task_id)
    fields = derive_task_fields(subtasks)

    await db["tasks"].update_one({"id": task_id}, {"$set": fields})

    await db["task_work_assignments"].delete_many({
        "task_id": task_id,
        "task_type": TASK_TYPE_TASK,
        "user_id": {"$nin": fields["assigned_users"]},
    })
    return subtasks


async def update_parent_task_status(db, task_id: str, subtasks: Optional[List[Dict[str, Any]]] = None) -> Optional[str]:
    if subtasks is None:
        subtasks = await load_subtasks(db, task_id)
    status = derive_rollup_status(subtasks)

    if status == "in_review":
        await db["tasks"].update_one({"id": task_id}, {"$set": {"status": "in_review"}})
    elif status == "in_progress":
        # guarded: never overrides anything but "pending"
        await db["tasks"].update_one(
            {"id": task_id, "status": "pending"},
            {"$set": {"status": "in_progress"}},
        )
    return status


async def reconcile_task(db, task_id: str, include_status: bool = True) -> None:
    """Re-derive everything a task holds about its subtasks."""
    subtasks = await sync_task_from_subtasks(db, task_id)
    if include_status:
        await update_parent_task_status(db, task_id, subtasks)


async def propagate_task_project(db, task_id: str, project_id: Optional[str] = None) -> int:
    """Copy the task's project_id onto its own and its subtasks' work assignments."""
    if project_id is None:
        task = await db["tasks"].find_one({"id": task_id})
        project_id = task.get("project_id") if task else None
    if not project_id:
        return 0

    result = await db["task_work_assignments"].update_many(
        {"task_id": task_id, "task_type": TASK_TYPE_TASK},
        {"$set": {"project_id": project_id}},
    )
    modified = result.modified_count

    subtasks = await db["subtasks"].find({"task_id": task_id}, {"id": 1}).to_list(length=None)
    subtask_ids = [s["id"] for s in subtasks if s.get("id")]
    if subtask_ids:
        result = await db["task_work_assignments"].update_many(
            {"task_id": {"$in": subtask_ids}, "task_type": TASK_TYPE_SUBTASK},
            {"$set": {"project_id": project_id}},
        )
        modified += result.modified_count
    return modified


# ---- Write-event entry points

async def on_subtask_saved(db, subtask: Dict[str, Any]) -> None:
    task_id = subtask.get("task_id") if subtask else None
    if not task_id:
        return
    try:
        await reconcile_task(db, task_id, include_status=True)
    except Exception as e:
        logger.error(f"Failed to sync task {task_id} after subtask save: {e}")


async def on_subtask_deleted(db, subtask: Optional[Dict[str, Any]]) -> None:
    task_id = subtask.get("task_id") if subtask else None
    if not task_id:
        return
    try:
        await reconcile_task(db, task_id, include_status=False)
    except Exception as e:
        logger.error(f"Failed to sync task {task_id} after subtask delete: {e}")


async def on_task_updated(db, task: Optional[Dict[str, Any]]) -> None:
    task_id = task.get("id") if task else None
    if not task_id:
        return
    try:
        # re-read so a stale in-memory copy never wins
        await propagate_task_project(db, task_id)
    except Exception as e:
        logger.error(f"Failed to propagate project of task {task_id}: {e}")


# ---- Periodic sweep

async def reconcile_all(db) -> Dict[str, int]:
    """Repair drift left by dropped hook runs.

    Tasks without subtasks keep their own estimate, so only tasks that have at
    least one subtask are re-derived. The rollup status is not re-applied.
    """
    task_ids = await db["subtasks"].distinct("task_id")
    synced = 0
    for task_id in task_ids:
        if not task_id:
            continue
        try:
            await reconcile_task(db, task_id, include_status=False)
            synced += 1
        except Exception as e:
            logger.error(f"Reconcile failed for task {task_id}: {e}")

    propagated = 0
    cursor = db["tasks"].find({"project_id": {"$ne": None}}, {"id": 1, "project_id": 1})
    async for task in cursor:
        try:
            await propagate_task_project(db, task["id"], task["project_id"])
            propagated += 1
        except Exception as e:
            logger.error(f"Project propagation failed for task {task.get('id')}: {e}")

    logger.info("Reconciled %d tasks from subtasks, propagated projects for %d tasks", synced, propagated)
    return {"synced": synced, "propagated": propagated}
