"""
Bookkeeping logic behind the /api/contabilidad routes: transaction
enrichment, balance per entity, double-entry journal entries and the trial
balance. Amounts are rounded half-up to cents.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from mongo.documents import new_document

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"
# accounts whose normal balance is on the debit side
DEBIT_NORMAL = frozenset({"asset", "expense"})


class LedgerError(Exception):
    """Invalid bookkeeping input (maps to HTTP 400)."""


def round_cents(value: float) -> float:
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def date_range(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    """`{"date": {...}}` for an optional inclusive range, or {}."""
    bounds: Dict[str, Any] = {}
    if start:
        bounds["$gte"] = start
    if end:
        bounds["$lte"] = end
    return {"date": bounds} if bounds else {}


async def record_audit(db, created_by: Optional[str], entity_type: str, entity_id: str, action: str, summary: str) -> None:
    """Append an audit_log row when the caller identified themselves."""
    if not created_by:
        return
    row = new_document("audit_log", {
        "user_id": created_by,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "summary": summary,
    })
    await db["audit_log"].insert_one(row)


async def _names_by_id(db, collection: str, ids: Iterable[Optional[str]], fields=("name",)) -> Dict[str, Dict[str, Any]]:
    wanted = sorted({i for i in ids if i})
    if not wanted:
        return {}
    projection = {"id": 1, **{f: 1 for f in fields}}
    docs = await db[collection].find({"id": {"$in": wanted}}, projection).to_list(length=None)
    return {d["id"]: d for d in docs}


async def enrich_transactions(db, transactions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach entity, category and payment account names to each transaction."""
    entities = await _names_by_id(db, "acct_entities", (t.get("entity_id") for t in transactions))
    categories = await _names_by_id(db, "acct_categories", (t.get("category_id") for t in transactions))
    accounts = await _names_by_id(db, "acct_payment_accounts", (t.get("payment_account_id") for t in transactions))

    def name(lookup, key):
        return lookup[key]["name"] if key in lookup else None

    return [
        {
            **t,
            "entity_name": name(entities, t.get("entity_id")),
            "category_name": name(categories, t.get("category_id")),
            "payment_account_name": name(accounts, t.get("payment_account_id")),
        }
        for t in transactions
    ]


async def compute_balance(db, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    """Sum of transaction amounts per entity, largest first, plus a grand total."""
    pipeline: List[Dict[str, Any]] = []
    match = date_range(start, end)
    if match:
        pipeline.append({"$match": match})
    pipeline.extend([
        {"$group": {"_id": "$entity_id", "total_amount": {"$sum": "$amount"}}},
        {"$sort": {"total_amount": -1}},
    ])
    results = await db["acct_transactions"].aggregate(pipeline).to_list(length=None)

    entities = await _names_by_id(db, "acct_entities", (r["_id"] for r in results), fields=("name", "type"))
    rows = []
    for r in results:
        entity = entities.get(r["_id"]) if r["_id"] else None
        rows.append({
            "entity_id": r["_id"],
            "entity_name": entity["name"] if entity else UNASSIGNED,
            "entity_type": entity.get("type") if entity else None,
            "total_amount": round_cents(r["total_amount"]),
        })

    grand_total = round_cents(sum(row["total_amount"] for row in rows))
    return {"rows": rows, "grand_total": grand_total}


# ---- Double entry

def check_balanced(lines: List[Dict[str, Any]]) -> None:
    """Raise LedgerError unless the lines form a valid balanced entry."""
    if len(lines) < 2:
        raise LedgerError("A journal entry needs at least two lines")

    for i, line in enumerate(lines, start=1):
        debit, credit = line.get("debit") or 0, line.get("credit") or 0
        if debit < 0 or credit < 0:
            raise LedgerError(f"Line {i}: amounts cannot be negative")
        if (debit > 0) == (credit > 0):
            raise LedgerError(f"Line {i}: exactly one of debit or credit must be set")

    total_debit = round_cents(sum(line.get("debit") or 0 for line in lines))
    total_credit = round_cents(sum(line.get("credit") or 0 for line in lines))
    if total_debit != total_credit:
        raise LedgerError(f"Debits ({total_debit}) must equal credits ({total_credit})")


async def create_journal_entry(db, entry: Dict[str, Any], lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate and store a journal entry with its lines."""
    check_balanced(lines)

    account_ids = {line["account_id"] for line in lines}
    accounts = await _names_by_id(db, "acct_chart_accounts", account_ids, fields=("name", "is_header"))
    missing = sorted(account_ids - set(accounts))
    if missing:
        raise LedgerError(f"Unknown accounts: {', '.join(missing)}")
    headers = sorted(a for a, doc in accounts.items() if doc.get("is_header"))
    if headers:
        raise LedgerError(f"Header accounts cannot be posted to: {', '.join(headers)}")

    header = new_document("acct_journal_entries", entry)
    rows = [
        new_document("acct_journal_entry_lines", {**line, "journal_entry_id": header["id"]})
        for line in lines
    ]
    await db["acct_journal_entries"].insert_one(header)
    try:
        await db["acct_journal_entry_lines"].insert_many(rows)
    except Exception:
        logger.error(f"Journal entry {header['id']}: failed to store lines, removing header")
        await db["acct_journal_entries"].delete_many({"id": header["id"]})
        await db["acct_journal_entry_lines"].delete_many({"journal_entry_id": header["id"]})
        raise

    header.pop("_id", None)
    header["lines"] = [{k: v for k, v in row.items() if k != "_id"} for row in rows]
    return header


async def list_journal_entries(db, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    entries = await db["acct_journal_entries"].find(date_range(start, end), {"_id": 0}).sort("date", -1).to_list(length=None)
    if not entries:
        return []

    lines = await db["acct_journal_entry_lines"].find(
        {"journal_entry_id": {"$in": [e["id"] for e in entries]}}, {"_id": 0}
    ).to_list(length=None)
    by_entry: Dict[str, List[Dict[str, Any]]] = {}
    for line in lines:
        by_entry.setdefault(line["journal_entry_id"], []).append(line)

    return [{**e, "lines": by_entry.get(e["id"], [])} for e in entries]


async def trial_balance(db, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    """Debit and credit totals per account over the journal lines in range."""
    line_filter: Dict[str, Any] = {}
    match = date_range(start, end)
    if match:
        entry_ids = await db["acct_journal_entries"].distinct("id", match)
        line_filter = {"journal_entry_id": {"$in": entry_ids}}

    totals = await db["acct_journal_entry_lines"].aggregate([
        {"$match": line_filter},
        {"$group": {"_id": "$account_id", "debit": {"$sum": "$debit"}, "credit": {"$sum": "$credit"}}},
    ]).to_list(length=None)

    accounts = await _names_by_id(
        db, "acct_chart_accounts", (t["_id"] for t in totals), fields=("code", "name", "type")
    )

    rows = []
    for t in totals:
        account = accounts.get(t["_id"], {})
        debit, credit = round_cents(t["debit"]), round_cents(t["credit"])
        balance = debit - credit if account.get("type") in DEBIT_NORMAL else credit - debit
        rows.append({
            "account_id": t["_id"],
            "code": account.get("code"),
            "name": account.get("name"),
            "type": account.get("type"),
            "debit": debit,
            "credit": credit,
            "balance": round_cents(balance),
        })
    rows.sort(key=lambda r: r["code"] or "")

    total_debit = round_cents(sum(r["debit"] for r in rows))
    total_credit = round_cents(sum(r["credit"] for r in rows))
    return {
        "rows": rows,
        "total_debit": total_debit,
        "total_credit": total_credit,
        "balanced": total_debit == total_credit,
    }
