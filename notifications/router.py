import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from mongo.client import get_database
from .log import MAX_LOG_ENTRIES, get_log_entries, get_log_stats, log_telegram_send
from .models import (
    AdminNotificationRequest,
    LogEntriesResponse,
    NotificationResponse,
    TaskAvailableRequest,
    TestMessageRequest,
)
from .telegram import (
    build_status_message,
    get_time_info,
    notify_users_task_available,
    send_admin_notification,
    send_telegram_message,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


def _check_admin_request(req: AdminNotificationRequest) -> None:
    if req.status == "reassigned":
        if not req.previous_user_name or not req.new_user_name:
            raise HTTPException(status_code=400, detail="previousUserName and newUserName are required for 'reassigned'")
    elif not req.user_name:
        raise HTTPException(status_code=400, detail="userName is required for this status")
    if req.status == "blocked" and not req.block_reason:
        raise HTTPException(status_code=400, detail="blockReason is required for 'blocked'")
    if req.status == "returned" and not req.return_feedback:
        raise HTTPException(status_code=400, detail="returnFeedback is required for 'returned'")


@router.post("/test", response_model=NotificationResponse)
async def send_test_message(req: TestMessageRequest) -> NotificationResponse:
    sent = await send_telegram_message(req.chat_id, req.message)
    await log_telegram_send("test", req.chat_id, "success" if sent else "failed")
    if not sent:
        raise HTTPException(status_code=500, detail="Could not send the test message")
    return NotificationResponse(success=True, message="Test message sent")


@router.post("/admin-notification", response_model=NotificationResponse)
async def admin_notification(req: AdminNotificationRequest) -> NotificationResponse:
    _check_admin_request(req)

    time_info = {}
    if req.task_id:
        try:
            db = await get_database()
            time_info = await get_time_info(db, req.task_id, req.is_subtask)
        except Exception as e:
            # timing lines are optional
            logger.warning(f"Could not load status history for {req.task_id}: {e}")

    message = build_status_message(
        req.status,
        req.task_title,
        req.project_name,
        user_name=req.user_name,
        area_name=req.area_name,
        admin_name=req.admin_name,
        block_reason=req.block_reason,
        return_feedback=req.return_feedback,
        previous_user_name=req.previous_user_name,
        new_user_name=req.new_user_name,
        is_subtask=req.is_subtask,
        parent_task_title=req.parent_task_title,
        time_info=time_info,
    )

    if not await send_admin_notification(message):
        raise HTTPException(status_code=500, detail="Could not send the notification; is an admin chat configured?")
    return NotificationResponse(success=True, message="Admin notification sent")


@router.post("/task-available", response_model=NotificationResponse)
async def task_available(req: TaskAvailableRequest) -> NotificationResponse:
    logger.info(f"Task-available notifications: reason={req.reason} users={len(req.user_ids)} task={req.task_title}")
    sent_count = await notify_users_task_available(
        req.user_ids,
        req.task_title,
        req.project_name,
        req.reason,
        is_subtask=req.is_subtask,
        parent_task_title=req.parent_task_title,
    )
    return NotificationResponse(
        success=True,
        message="Notifications processed",
        sent_count=sent_count,
        total_users=len(req.user_ids),
    )


@router.get("/log", response_model=LogEntriesResponse)
async def read_log(
    limit: int = Query(50, ge=1, le=MAX_LOG_ENTRIES),
    type: Optional[str] = None,
    status: Optional[str] = None,
) -> LogEntriesResponse:
    try:
        entries = await get_log_entries(limit=limit, type=type, status=status)
    except Exception as e:
        logger.error(f"Error reading Telegram log: {e}")
        raise HTTPException(status_code=500, detail="Error reading Telegram log")
    return LogEntriesResponse(entries=entries)


@router.get("/log/stats")
async def read_log_stats(since: Optional[datetime] = None, type: Optional[str] = None):
    try:
        return await get_log_stats(since=since, type=type)
    except Exception as e:
        logger.error(f"Error computing Telegram log stats: {e}")
        raise HTTPException(status_code=500, detail="Error computing Telegram log stats")
