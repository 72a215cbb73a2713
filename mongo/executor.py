"""
Query executor: runs a `QueryRequest` against MongoDB and answers with
`QueryResponse(data, error)`.

select uses `find` unless the select string asks for joins, in which case an
aggregation pipeline is built (see mongo.pipeline). Writes to subtasks and
tasks trigger the consistency hooks in mongo.hooks; writes to app_settings
flush the settings cache.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError
from pymongo import ReturnDocument

from cache.settings_cache import settings_cache
from .client import get_database
from .constants import STRICT_QUERY_MODE
from .documents import get_model, new_document, new_id, utc_now
from .errors import (
    MissingPayloadError,
    QueryError,
    UnknownRelationError,
    UnknownTableError,
    UnsupportedOperationError,
)
from .filters import build_mongo_filter, build_projection
from .hooks import on_subtask_deleted, on_subtask_saved, on_task_updated
from .pipeline import build_aggregation_pipeline, has_join_syntax
from .query_models import QueryOperation, QueryRequest, QueryResponse
from .registry import DEFAULT_REGISTRY, RelationRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR_CODE = "PGRST301"


def _strip_ids(value: Any) -> Any:
    """Drop Mongo's internal `_id` everywhere; documents carry their own `id`."""
    if isinstance(value, dict):
        return {k: _strip_ids(v) for k, v in value.items() if k != "_id"}
    if isinstance(value, list):
        return [_strip_ids(v) for v in value]
    return value


def _as_list(data: Any) -> List[Dict[str, Any]]:
    if data is None:
        return []
    return list(data) if isinstance(data, list) else [data]


# ---- Join filters: "projects.name" / "tasks.projects.name"

def _split_filters(filters: Optional[Dict[str, Any]]) -> Tuple[Dict[str, Any], List[Tuple[str, str, Any]]]:
    """Separate dotted eq/in keys (relation filters) from direct filters."""
    if not filters:
        return {}, []
    direct = dict(filters)
    joined: List[Tuple[str, str, Any]] = []
    for kind in ("eq", "in"):
        entries = filters.get(kind)
        if not entries:
            continue
        kept = {}
        for key, value in entries.items():
            if "." in key:
                joined.append((kind, key, value))
            else:
                kept[key] = value
        direct[kind] = kept
    return direct, joined


def _related_condition(kind: str, value: Any) -> Optional[Any]:
    if kind == "eq":
        return value
    if isinstance(value, (list, tuple)) and value:
        return {"$in": list(value)}
    return None


async def _resolve_join_filters(
    db,
    table: str,
    joined: Iterable[Tuple[str, str, Any]],
    registry: RelationRegistry,
    strict: bool,
) -> Dict[str, Any]:
    """Turn relation filters into `{local_field: {"$in": ids}}` on the queried table."""
    resolved: Dict[str, Any] = {}
    for kind, key, value in joined:
        condition = _related_condition(kind, value)
        if condition is None:
            continue
        parts = key.split(".")
        config = registry.get(table, parts[0])
        if config is None:
            if strict:
                raise UnknownRelationError(table, parts[0])
            continue

        if len(parts) == 2:
            ids = await db[config.target].distinct(config.foreign_field, {parts[1]: condition})
        elif len(parts) == 3:
            nested = next(
                (n for n in config.nested if n.as_ == parts[1] and "." not in n.local_field),
                None,
            )
            if nested is None:
                if strict:
                    raise UnknownRelationError(config.target, parts[1])
                continue
            nested_ids = await db[nested.target].distinct(nested.foreign_field, {parts[2]: condition})
            ids = []
            if nested_ids:
                ids = await db[config.target].distinct(
                    config.foreign_field, {nested.local_field: {"$in": nested_ids}}
                )
        else:
            continue

        resolved[config.local_field] = {"$in": [i for i in ids if i is not None]}
    return resolved


# ---- Write side effects

def _unique_task_ids(docs: Iterable[Optional[Dict[str, Any]]]) -> List[str]:
    task_ids: List[str] = []
    for doc in docs:
        task_id = doc.get("task_id") if doc else None
        if task_id and task_id not in task_ids:
            task_ids.append(task_id)
    return task_ids


async def _after_write(
    db,
    request: QueryRequest,
    docs: List[Dict[str, Any]],
    previous: Iterable[Dict[str, Any]] = (),
    deleted: bool = False,
) -> None:
    table = request.table
    if table == "subtasks":
        for task_id in _unique_task_ids(list(previous) + list(docs)):
            if deleted:
                await on_subtask_deleted(db, {"task_id": task_id})
            else:
                await on_subtask_saved(db, {"task_id": task_id})
    elif table == "tasks" and not deleted:
        payloads = _as_list(request.data)
        if any("project_id" in p for p in payloads):
            for doc in docs:
                await on_task_updated(db, doc)
    elif table == "app_settings":
        settings_cache.invalidate_all()


# ---- Operations

async def _select(db, request: QueryRequest, filters: Dict[str, Any], registry: RelationRegistry, strict: bool):
    coll = db[request.table]

    if has_join_syntax(request.select):
        pipeline = build_aggregation_pipeline(
            request.table,
            request.select,
            filters,
            order=request.order,
            limit=1 if request.single else request.limit,
            offset=request.offset,
            registry=registry,
            strict=strict,
        )
        docs = _strip_ids(await coll.aggregate(pipeline).to_list(length=None))
        if request.single:
            return docs[0] if docs else None
        return docs

    projection = build_projection(request.select)
    sort = None
    if request.order:
        sort = [(request.order.column, 1 if request.order.ascending else -1)]

    if request.single:
        doc = await coll.find_one(filters, projection, sort=sort)
        return _strip_ids(doc) if doc else None

    cursor = coll.find(filters, projection)
    if sort:
        cursor = cursor.sort(sort)
    if request.offset and request.offset > 0:
        cursor = cursor.skip(request.offset)
    if request.limit and request.limit > 0:
        cursor = cursor.limit(request.limit)
    return _strip_ids(await cursor.to_list(length=None))


async def _insert(db, request: QueryRequest, filters: Dict[str, Any], registry, strict):
    items = _as_list(request.data)
    if not items:
        raise MissingPayloadError("insert")

    docs = [new_document(request.table, item) for item in items]
    await db[request.table].insert_many(docs)
    docs = _strip_ids(docs)

    await _after_write(db, request, docs)
    return (docs[0] if docs else None) if request.single else docs


async def _update(db, request: QueryRequest, filters: Dict[str, Any], registry, strict):
    if not isinstance(request.data, dict) or not request.data:
        raise MissingPayloadError("update")

    coll = db[request.table]
    changes = {k: v for k, v in request.data.items() if k not in ("_id", "id")}
    update = {"$set": {**changes, "updatedAt": utc_now()}}

    previous: List[Dict[str, Any]] = []
    if request.table == "subtasks":
        previous = await coll.find(filters, {"id": 1, "task_id": 1}).to_list(length=None)

    if request.single:
        doc = await coll.find_one_and_update(filters, update, return_document=ReturnDocument.AFTER)
        docs = [_strip_ids(doc)] if doc else []
        await _after_write(db, request, docs, previous[:1])
        return docs[0] if docs else None

    # pin the matched rows first: the update may change the fields the filter matched on
    ids = await coll.distinct("id", filters)
    await coll.update_many({"id": {"$in": ids}}, update)
    docs = _strip_ids(await coll.find({"id": {"$in": ids}}).to_list(length=None))
    await _after_write(db, request, docs, previous)
    return docs


async def _delete(db, request: QueryRequest, filters: Dict[str, Any], registry, strict):
    coll = db[request.table]

    if request.single:
        doc = await coll.find_one_and_delete(filters)
        doc = _strip_ids(doc) if doc else None
        await _after_write(db, request, [doc] if doc else [], deleted=True)
        return doc

    previous: List[Dict[str, Any]] = []
    if request.table == "subtasks":
        previous = await coll.find(filters, {"id": 1, "task_id": 1}).to_list(length=None)
    result = await coll.delete_many(filters)
    await _after_write(db, request, [], previous, deleted=True)
    return {"deletedCount": result.deleted_count}


def _conflict_keys(request: QueryRequest) -> List[str]:
    on_conflict = request.upsert_options.on_conflict if request.upsert_options else None
    if not on_conflict:
        return ["id"]
    return [k.strip() for k in on_conflict.split(",") if k.strip()]


def _insert_defaults(table: str, item: Dict[str, Any]) -> Dict[str, Any]:
    """Schema defaults for the fields a freshly upserted row would lack."""
    try:
        full = new_document(table, item)
    except ValidationError:
        # partial payload aimed at an existing row
        full = {"id": new_id(), "createdAt": utc_now()}
    return {k: v for k, v in full.items() if k not in item and k != "updatedAt"}


async def _upsert(db, request: QueryRequest, filters: Dict[str, Any], registry, strict):
    items = _as_list(request.data)
    if not items:
        raise MissingPayloadError("upsert")

    coll = db[request.table]
    keys = _conflict_keys(request)
    ignore_duplicates = bool(request.upsert_options and request.upsert_options.ignore_duplicates)
    results: List[Dict[str, Any]] = []

    for item in items:
        match = {k: item[k] for k in keys if k in item}
        if not match:
            doc = new_document(request.table, item)
            await coll.insert_one(doc)
            results.append(_strip_ids(doc))
            continue

        defaults = _insert_defaults(request.table, item)
        if ignore_duplicates:
            update = {"$setOnInsert": {**item, **defaults, "updatedAt": utc_now()}}
        else:
            update = {"$set": {**item, "updatedAt": utc_now()}, "$setOnInsert": defaults}
        doc = await coll.find_one_and_update(
            match, update, upsert=True, return_document=ReturnDocument.AFTER
        )
        results.append(_strip_ids(doc))

    await _after_write(db, request, results)
    return (results[0] if results else None) if request.single else results


_HANDLERS = {
    QueryOperation.SELECT: _select,
    QueryOperation.INSERT: _insert,
    QueryOperation.UPDATE: _update,
    QueryOperation.DELETE: _delete,
    QueryOperation.UPSERT: _upsert,
}


async def execute_query(
    request: QueryRequest,
    db=None,
    registry: RelationRegistry = DEFAULT_REGISTRY,
    strict: Optional[bool] = None,
) -> QueryResponse:
    """Run one query request. Never raises; failures come back in `error`."""
    strict = STRICT_QUERY_MODE if strict is None else strict
    try:
        if get_model(request.table) is None:
            raise UnknownTableError(request.table)
        handler = _HANDLERS.get(request.operation)
        if handler is None:
            raise UnsupportedOperationError(str(request.operation))

        if db is None:
            db = await get_database()

        direct, joined = _split_filters(request.filters)
        filters = build_mongo_filter(direct, strict=strict)
        if joined:
            filters.update(await _resolve_join_filters(db, request.table, joined, registry, strict))

        data = await handler(db, request, filters, registry, strict)
        return QueryResponse.ok(data)

    except QueryError as e:
        logger.warning(f"Query on '{request.table}' rejected: {e.message}")
        return QueryResponse.fail(e.message, e.code)
    except Exception as e:
        logger.error(f"Query {request.operation.value} on '{request.table}' failed: {e}")
        return QueryResponse.fail(str(e), GENERIC_ERROR_CODE)
