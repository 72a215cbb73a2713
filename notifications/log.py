"""
Persistent log of Telegram delivery attempts (`telegram_notification_log`).

Rows expire after 30 days through the TTL index created in
mongo.create_indexes.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from mongo.documents import new_document

logger = logging.getLogger(__name__)

LOG_COLLECTION = "telegram_notification_log"
MAX_LOG_ENTRIES = 500
STATUSES = ("success", "failed", "skipped")


async def _log_collection(db=None):
    if db is None:
        from mongo.client import get_database
        db = await get_database()
    return db[LOG_COLLECTION]


async def log_telegram_send(
    type: str,
    recipient: str,
    status: str,
    recipient_label: Optional[str] = None,
    details: Optional[str] = None,
    error: Optional[str] = None,
    db=None,
) -> None:
    """Record one delivery attempt. Logging failures never reach the caller."""
    label = recipient_label or recipient
    if status == "failed":
        logger.error(f"Telegram {type} to {label}: {status}" + (f" | {error}" if error else ""))
    else:
        logger.info(f"Telegram {type} to {label}: {status}" + (f" | {details}" if details else ""))

    try:
        row = new_document(LOG_COLLECTION, {
            "type": type,
            "recipient": str(recipient),
            "recipient_label": recipient_label,
            "status": status,
            "details": details,
            "error": error,
        })
        col = await _log_collection(db)
        await col.insert_one(row)
    except Exception as e:
        logger.error(f"Error saving Telegram log entry: {e}")


def _entry(doc: Dict[str, Any]) -> Dict[str, Any]:
    created = doc.get("createdAt")
    return {
        "id": doc.get("id"),
        "timestamp": created.isoformat() if isinstance(created, datetime) else created,
        "type": doc.get("type"),
        "recipient": doc.get("recipient"),
        "recipientLabel": doc.get("recipient_label"),
        "status": doc.get("status"),
        "details": doc.get("details"),
        "error": doc.get("error"),
    }


async def get_log_entries(
    limit: int = 50,
    type: Optional[str] = None,
    status: Optional[str] = None,
    db=None,
) -> List[Dict[str, Any]]:
    """Newest entries first, at most 500."""
    query: Dict[str, Any] = {}
    if type:
        query["type"] = type
    if status:
        query["status"] = status

    col = await _log_collection(db)
    cursor = col.find(query).sort("createdAt", -1).limit(max(1, min(limit, MAX_LOG_ENTRIES)))
    return [_entry(doc) for doc in await cursor.to_list(length=None)]


async def get_log_stats(since: Optional[datetime] = None, type: Optional[str] = None, db=None) -> Dict[str, Any]:
    """Totals per status, overall and per notification type."""
    match: Dict[str, Any] = {}
    if since:
        match["createdAt"] = {"$gte": since}
    if type:
        match["type"] = type

    pipeline: List[Dict[str, Any]] = []
    if match:
        pipeline.append({"$match": match})
    pipeline.append({
        "$group": {
            "_id": {"type": "$type", "status": "$status"},
            "count": {"$sum": 1},
        }
    })

    col = await _log_collection(db)
    rows = await col.aggregate(pipeline).to_list(length=None)

    totals = {s: 0 for s in STATUSES}
    by_type: Dict[str, Dict[str, int]] = {}
    for row in rows:
        key = row["_id"].get("type") or "unknown"
        row_status = row["_id"].get("status")
        bucket = by_type.setdefault(key, {s: 0 for s in STATUSES})
        if row_status in bucket:
            bucket[row_status] += row["count"]
            totals[row_status] += row["count"]

    return {
        "total": await col.count_documents(match),
        **totals,
        "byType": by_type,
    }
