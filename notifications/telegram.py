import asyncio
import html
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Union

import httpx

from cache.settings_cache import get_setting
from mongo.constants import TELEGRAM_API_BASE, TELEGRAM_BOT_TOKEN
from .log import log_telegram_send

logger = logging.getLogger(__name__)

ADMIN_CHAT_SETTING = "admin_telegram_chat_id"

AVAILABLE_REASONS = {
    "unblocked": ("🔓", "The task was unblocked and is ready to work on"),
    "returned": ("🔄", "The task was returned and is open for corrections"),
    "sequential_dependency_completed": ("⏭️", "Previous steps are done, you can start on this task now"),
    "created_available": ("✨", "A new task is available to work on"),
    "reassigned": ("🔁", "The task was reassigned to you"),
}


def escape(text: Any) -> str:
    """HTML-escape user supplied text for Telegram's HTML parse mode."""
    if text is None:
        return ""
    return html.escape(str(text), quote=True)


def _as_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_duration(start: Union[str, datetime], end: Union[str, datetime]) -> str:
    """Render the gap between two instants as e.g. "1d 3h 20m" (already HTML safe)."""
    seconds = (_as_datetime(end) - _as_datetime(start)).total_seconds()
    if seconds < 0:
        return "invalid time range"

    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    parts = [f"{n}{unit}" for n, unit in ((days, "d"), (hours, "h"), (minutes, "m")) if n > 0]
    return " ".join(parts) if parts else "&lt; 1m"


async def send_telegram_message(chat_id: str, text: str, token: Optional[str] = None, timeout: float = 10.0) -> bool:
    """POST a message to the Bot API. Returns False instead of raising."""
    token = token or TELEGRAM_BOT_TOKEN
    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN is not configured. Skipping Telegram message.")
        return False
    if not text or not text.strip():
        logger.error("Refusing to send an empty Telegram message")
        return False

    payload = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(f"{TELEGRAM_API_BASE}/bot{token}/sendMessage", json=payload)
            response.raise_for_status()
        logger.info("Telegram message sent to %s", chat_id)
        return True
    except httpx.HTTPStatusError as exc:
        body_excerpt = exc.response.text[:500] if exc.response is not None else "No response body"
        logger.error(
            "Telegram API responded with an error: status=%s body=%s", exc.response.status_code, body_excerpt
        )
        return False
    except httpx.HTTPError as exc:
        logger.error("Failed to call Telegram API: %s", exc)
        return False


async def get_admin_chat_id(db=None) -> Optional[str]:
    value = await get_setting(ADMIN_CHAT_SETTING, db=db)
    if isinstance(value, dict) and value.get("id"):
        return str(value["id"])
    return None


async def send_admin_notification(text: str, db=None) -> bool:
    chat_id = await get_admin_chat_id(db)
    if not chat_id:
        logger.warning("No admin Telegram chat configured. Skipping notification.")
        await log_telegram_send("admin-notification", "admin", "skipped", details="no admin chat id", db=db)
        return False

    sent = await send_telegram_message(chat_id, text)
    await log_telegram_send(
        "admin-notification",
        chat_id,
        "success" if sent else "failed",
        recipient_label="admin",
        error=None if sent else "send failed",
        db=db,
    )
    return sent


# ---- Status history timing

async def get_time_info(db, item_id: str, is_subtask: bool = False) -> Dict[str, datetime]:
    """Key instants of an item's lifecycle, read from status_history.

    Review time is measured from the latest completion, so a task that was
    returned and completed again does not count the rework as review time.
    """
    key = "subtask_id" if is_subtask else "task_id"
    history = await db["status_history"].find({key: item_id}).sort("changed_at", 1).to_list(length=None)

    info: Dict[str, datetime] = {}
    first_of = {
        "in_review": "inReviewAt",
        "approved": "approvedAt",
        "returned": "returnedAt",
        "blocked": "blockedAt",
    }
    for record in history:
        status = record.get("new_status")
        changed_at = record.get("changed_at")
        if status in ("assigned", "in_progress"):
            info.setdefault("assignedAt", changed_at)
        elif status == "completed":
            info["completedAt"] = changed_at
        elif status in first_of:
            info.setdefault(first_of[status], changed_at)
    return info


# ---- Message builders

def _item_lines(title: str, is_subtask: bool, parent_title: Optional[str]) -> str:
    icon, label = ("🔸", "Subtask") if is_subtask else ("📋", "Task")
    line = f"{icon} <b>{label}:</b> {escape(title or 'Untitled task')}"
    if is_subtask and parent_title:
        line += f"\n📋 <b>Parent task:</b> {escape(parent_title)}"
    return line


def _context_lines(user_name: Optional[str], item: str, project_name: Optional[str], area_name: Optional[str]) -> str:
    return (
        f"👤 <b>User:</b> {escape(user_name or 'Unknown user')}\n"
        f"{item}\n"
        f"🏢 <b>Project:</b> {escape(project_name or 'Unnamed project')}\n"
        f"🏷️ <b>Area:</b> {escape(area_name or 'No area')}"
    )


def _duration_line(label: str, start, end) -> str:
    if not start or not end:
        return ""
    return f"\n⏱️ <b>{label}:</b> {format_duration(start, end)}"


def build_status_message(
    status: str,
    task_title: str,
    project_name: str,
    user_name: Optional[str] = None,
    area_name: Optional[str] = None,
    admin_name: Optional[str] = None,
    block_reason: Optional[str] = None,
    return_feedback: Optional[str] = None,
    previous_user_name: Optional[str] = None,
    new_user_name: Optional[str] = None,
    is_subtask: bool = False,
    parent_task_title: Optional[str] = None,
    time_info: Optional[Dict[str, Any]] = None,
) -> str:
    """Admin notification text for a task/subtask status change."""
    time_info = time_info or {}
    kind = "subtask" if is_subtask else "task"
    item = _item_lines(task_title, is_subtask, parent_task_title)
    admin = escape(admin_name or "Administrator")
    admin_line = f"\n👩‍💼 <b>Admin:</b> {admin}"

    if status == "reassigned":
        return (
            f"🔁 <b>TASK REASSIGNED</b>\n\n"
            f"{item}\n"
            f"🏢 <b>Project:</b> {escape(project_name or 'Unnamed project')}\n"
            f"🏷️ <b>Area:</b> {escape(area_name or 'No area')}\n"
            f"👤 <b>From:</b> {escape(previous_user_name)}\n"
            f"👤 <b>To:</b> {escape(new_user_name)}"
            f"{admin_line}\n\n"
            f"The {kind} was reassigned by {admin}."
        )

    context = _context_lines(user_name, item, project_name, area_name)

    if status == "completed":
        timing = _duration_line("Time worked", time_info.get("assignedAt"), time_info.get("completedAt"))
        return (
            f"🎉 <b>TASK COMPLETED</b>\n\n{context}{timing}\n\n"
            f"✅ The {kind} was marked as completed and is ready for review."
        )
    if status == "blocked":
        timing = _duration_line("Time worked before blocking", time_info.get("assignedAt"), time_info.get("blockedAt"))
        return (
            f"🚫 <b>TASK BLOCKED</b>\n\n{context}{timing}\n\n"
            f"⚠️ <b>Reason:</b> {escape(block_reason or 'Not specified')}\n\n"
            f"🔧 This {kind} needs an administrator before it can continue."
        )
    if status == "in_review":
        timing = _duration_line("Time until review", time_info.get("completedAt"), time_info.get("inReviewAt"))
        return (
            f"🔍 <b>TASK IN REVIEW</b>\n\n{context}{admin_line}{timing}\n\n"
            f"📋 The {kind} was put in review by {admin}."
        )
    if status == "approved":
        timing = _duration_line("Review time", time_info.get("inReviewAt"), time_info.get("approvedAt"))
        if time_info.get("assignedAt") and time_info.get("approvedAt"):
            total = format_duration(time_info["assignedAt"], time_info["approvedAt"])
            timing += f"\n🏁 <b>Total cycle time:</b> {total}"
        return (
            f"✅ <b>TASK APPROVED</b>\n\n{context}{admin_line}{timing}\n\n"
            f"🎉 The {kind} was approved by {admin} and is done."
        )
    if status == "returned":
        timing = _duration_line("Time in review", time_info.get("inReviewAt"), time_info.get("returnedAt"))
        return (
            f"🔄 <b>TASK RETURNED</b>\n\n{context}{admin_line}{timing}\n\n"
            f"📝 <b>Feedback:</b> {escape(return_feedback or 'No feedback given')}\n\n"
            f"🔧 The {kind} was returned to the user by {admin} for corrections."
        )
    raise ValueError(f"Unknown status for admin notification: {status}")


def build_task_available_message(
    task_title: str,
    project_name: str,
    reason: str,
    is_subtask: bool = False,
    parent_task_title: Optional[str] = None,
) -> str:
    icon, reason_text = AVAILABLE_REASONS.get(reason, ("🔔", ""))
    kind = "subtask" if is_subtask else "task"
    return (
        f"{icon} <b>TASK AVAILABLE</b>\n\n"
        f"{_item_lines(task_title, is_subtask, parent_task_title)}\n"
        f"🏢 <b>Project:</b> {escape(project_name or 'Unnamed project')}\n\n"
        f"💡 <b>Reason:</b> {reason_text}\n\n"
        f"🚀 You can pick up this {kind} from your work dashboard."
    )


# ---- User notifications

async def notify_task_available(
    user_id: str,
    task_title: str,
    project_name: str,
    reason: str,
    is_subtask: bool = False,
    parent_task_title: Optional[str] = None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    db=None,
) -> bool:
    """Message one user on their linked Telegram chat, if they have one."""
    if db is None:
        from mongo.client import get_database
        db = await get_database()

    user = await db["users"].find_one({"id": user_id}, {"telegram_chat_id": 1, "name": 1, "email": 1})
    if not user:
        logger.error(f"User {user_id} not found for task-available notification")
        await log_telegram_send("task-available", user_id, "failed", error="user not found", db=db)
        return False

    label = user.get("name") or user.get("email")
    chat_id = user.get("telegram_chat_id")
    if not chat_id:
        await log_telegram_send(
            "task-available", user_id, "skipped", recipient_label=label, details="no telegram_chat_id", db=db
        )
        return False

    message = build_task_available_message(task_title, project_name, reason, is_subtask, parent_task_title)
    sent = False
    for attempt in range(1, max_retries + 1):
        sent = await send_telegram_message(chat_id, message)
        if sent or attempt == max_retries:
            break
        await asyncio.sleep(retry_delay * attempt)
    await log_telegram_send(
        "task-available",
        chat_id,
        "success" if sent else "failed",
        recipient_label=label,
        details=task_title,
        error=None if sent else "send failed",
        db=db,
    )
    return sent


async def notify_users_task_available(
    user_ids: Sequence[str],
    task_title: str,
    project_name: str,
    reason: str,
    is_subtask: bool = False,
    parent_task_title: Optional[str] = None,
    pause_seconds: float = 0.1,
    db=None,
) -> int:
    """Notify several users one by one; returns how many messages went out."""
    sent_count = 0
    for user_id in user_ids:
        if await notify_task_available(
            user_id, task_title, project_name, reason, is_subtask, parent_task_title, db=db
        ):
            sent_count += 1
        # stay under the Bot API rate limit
        await asyncio.sleep(pause_seconds)

    logger.info(f"Task-available notifications sent: {sent_count}/{len(user_ids)}")
    return sent_count
