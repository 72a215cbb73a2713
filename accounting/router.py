import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pymongo import ReturnDocument

from mongo.client import get_database
from mongo.documents import TABLES, new_document, utc_now
from .ledger import (
    LedgerError,
    compute_balance,
    create_journal_entry,
    date_range,
    enrich_transactions,
    list_journal_entries,
    record_audit,
    trial_balance,
)
from .models import (
    BalanceResponse,
    CategoryCreate,
    CategoryUpdate,
    ChartAccountCreate,
    ChartAccountUpdate,
    EntityCreate,
    EntityUpdate,
    JournalEntryCreate,
    PaymentAccountCreate,
    PaymentAccountUpdate,
    TransactionCreate,
    TransactionUpdate,
    TrialBalanceResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contabilidad", tags=["contabilidad"])


def _describe(doc: Dict[str, Any]) -> str:
    if doc.get("name"):
        return str(doc["name"])
    if doc.get("amount") is not None:
        return f"{doc['amount']} {doc.get('currency', '')}".strip()
    return str(doc.get("id"))


def _register_crud(
    path: str,
    table: str,
    entity_type: str,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
    sort: List[tuple],
    label: str,
) -> None:
    """List/create/update/delete routes for one bookkeeping collection."""
    table_fields = TABLES[table].model_fields

    async def list_items() -> List[Dict[str, Any]]:
        db = await get_database()
        return await db[table].find({}, {"_id": 0}).sort(sort).to_list(length=None)

    async def create_item(body: create_model) -> Dict[str, Any]:  # type: ignore[valid-type]
        payload = body.model_dump()
        created_by = payload.pop("created_by", None)
        if "created_by" in table_fields:
            payload["created_by"] = created_by
        db = await get_database()
        doc = new_document(table, payload)
        await db[table].insert_one(doc)
        doc.pop("_id", None)
        await record_audit(db, created_by, entity_type, doc["id"], "create", f"{label} created: {_describe(doc)}")
        return doc

    async def update_item(item_id: str, body: update_model) -> Dict[str, Any]:  # type: ignore[valid-type]
        changes = body.model_dump(exclude_unset=True)
        created_by = changes.pop("created_by", None)
        db = await get_database()
        doc = await db[table].find_one_and_update(
            {"id": item_id},
            {"$set": {**changes, "updatedAt": utc_now()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        await record_audit(db, created_by, entity_type, item_id, "update", f"{label} updated: {_describe(doc)}")
        return doc

    async def delete_item(item_id: str, created_by: Optional[str] = None) -> Dict[str, str]:
        db = await get_database()
        doc = await db[table].find_one_and_delete({"id": item_id})
        if not doc:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        await record_audit(db, created_by, entity_type, item_id, "delete", f"{label} deleted: {_describe(doc)}")
        return {"id": item_id}

    router.add_api_route(f"/{path}", list_items, methods=["GET"], name=f"list_{table}")
    router.add_api_route(f"/{path}", create_item, methods=["POST"], status_code=201, name=f"create_{table}")
    router.add_api_route(f"/{path}/{{item_id}}", update_item, methods=["PUT"], name=f"update_{table}")
    router.add_api_route(f"/{path}/{{item_id}}", delete_item, methods=["DELETE"], name=f"delete_{table}")


_register_crud("entities", "acct_entities", "acct_entity", EntityCreate, EntityUpdate,
               [("sort_order", 1), ("name", 1)], "Entity")
_register_crud("categories", "acct_categories", "acct_category", CategoryCreate, CategoryUpdate,
               [("type", 1), ("name", 1)], "Category")
_register_crud("payment-accounts", "acct_payment_accounts", "acct_payment_account",
               PaymentAccountCreate, PaymentAccountUpdate, [("name", 1)], "Payment account")
_register_crud("chart-accounts", "acct_chart_accounts", "acct_chart_account",
               ChartAccountCreate, ChartAccountUpdate, [("sort_order", 1), ("code", 1)], "Account")


# ---- Transactions

@router.get("/transactions")
async def list_transactions(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    entity_id: Optional[str] = None,
    category_id: Optional[str] = None,
    payment_account_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = date_range(start, end)
    for key, value in (
        ("entity_id", entity_id),
        ("category_id", category_id),
        ("payment_account_id", payment_account_id),
    ):
        if value:
            query[key] = value

    db = await get_database()
    transactions = await db["acct_transactions"].find(query, {"_id": 0}).sort("date", -1).to_list(length=None)
    return await enrich_transactions(db, transactions)


@router.post("/transactions", status_code=201)
async def create_transaction(body: TransactionCreate) -> Dict[str, Any]:
    payload = body.model_dump()
    db = await get_database()
    doc = new_document("acct_transactions", payload)
    await db["acct_transactions"].insert_one(doc)
    doc.pop("_id", None)
    await record_audit(
        db, body.created_by, "acct_transaction", doc["id"], "create",
        f"Transaction created: {body.amount} {body.currency}",
    )
    return doc


@router.put("/transactions/{item_id}")
async def update_transaction(item_id: str, body: TransactionUpdate) -> Dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    created_by = changes.pop("created_by", None)
    db = await get_database()
    doc = await db["acct_transactions"].find_one_and_update(
        {"id": item_id},
        {"$set": {**changes, "updatedAt": utc_now()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Transaction not found")
    await record_audit(db, created_by, "acct_transaction", item_id, "update", f"Transaction updated: {doc.get('amount')}")
    return doc


@router.delete("/transactions/{item_id}")
async def delete_transaction(item_id: str, created_by: Optional[str] = None) -> Dict[str, str]:
    db = await get_database()
    doc = await db["acct_transactions"].find_one_and_delete({"id": item_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Transaction not found")
    await record_audit(db, created_by, "acct_transaction", item_id, "delete", "Transaction deleted")
    return {"id": item_id}


# ---- Reports

@router.get("/balance", response_model=BalanceResponse)
async def get_balance(start: Optional[datetime] = None, end: Optional[datetime] = None):
    db = await get_database()
    return await compute_balance(db, start, end)


@router.get("/journal-entries")
async def get_journal_entries(start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    db = await get_database()
    return await list_journal_entries(db, start, end)


@router.post("/journal-entries", status_code=201)
async def post_journal_entry(body: JournalEntryCreate) -> Dict[str, Any]:
    entry = body.model_dump(exclude={"lines"})
    lines = [line.model_dump() for line in body.lines]
    db = await get_database()
    try:
        doc = await create_journal_entry(db, entry, lines)
    except LedgerError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await record_audit(
        db, body.created_by, "acct_journal_entry", doc["id"], "create",
        f"Journal entry created: {body.description or body.reference or doc['id']}",
    )
    return doc


@router.get("/trial-balance", response_model=TrialBalanceResponse)
async def get_trial_balance(start: Optional[datetime] = None, end: Optional[datetime] = None):
    db = await get_database()
    return await trial_balance(db, start, end)
