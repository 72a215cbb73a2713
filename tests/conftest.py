"""
Shared fixtures: an in-memory stand-in for the motor collection API.

FakeDatabase implements the subset of motor used by the executor, hooks,
notifications and bookkeeping code: find/find_one with projection, sort, skip
and limit; inserts; update_one/update_many with $set and $setOnInsert (and
upsert); find_one_and_update/find_one_and_delete; delete_many; distinct;
count_documents; and aggregate with the stages this project emits.
"""

import copy
import itertools
import os
import sys
from types import SimpleNamespace

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymongo import ReturnDocument  # noqa: E402

_MISSING = object()
_object_ids = itertools.count(1)


# ---- Query matching

def get_path(doc, path):
    value = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _equals(value, expected):
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _in(value, candidates):
    return any(_equals(value, c) for c in candidates)


def _compare(value, op, operand):
    if value is _MISSING or value is None:
        return False
    try:
        if op == "$gte":
            return value >= operand
        if op == "$lte":
            return value <= operand
        if op == "$gt":
            return value > operand
        return value < operand
    except TypeError:
        return False


def _match_condition(value, condition):
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in" and not _in(value, operand):
                return False
            if op == "$nin" and _in(value, operand):
                return False
            if op == "$ne" and _equals(value, operand):
                return False
            if op == "$eq" and not _equals(value, operand):
                return False
            if op == "$exists" and (value is not _MISSING) != bool(operand):
                return False
            if op == "$all" and not (isinstance(value, list) and all(v in value for v in operand)):
                return False
            if op in ("$gte", "$lte", "$gt", "$lt") and not _compare(value, op, operand):
                return False
        return True
    return _equals(value, condition)


def matches(doc, query):
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(get_path(doc, key), condition):
            return False
    return True


# ---- Projection / updates

def project(doc, projection):
    if not projection:
        return copy.deepcopy(doc)
    include = {k for k, v in projection.items() if v}
    if include:
        out = {k: copy.deepcopy(v) for k, v in doc.items() if k in include}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
        return out
    return {k: copy.deepcopy(v) for k, v in doc.items() if projection.get(k, 1)}


def set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def apply_update(doc, update, inserting=False):
    for path, value in (update.get("$set") or {}).items():
        set_path(doc, path, copy.deepcopy(value))
    if inserting:
        for path, value in (update.get("$setOnInsert") or {}).items():
            set_path(doc, path, copy.deepcopy(value))


def _sort_key(field):
    def key(doc):
        value = get_path(doc, field)
        missing = value is _MISSING or value is None
        return (not missing, value if not missing else 0)
    return key


def sort_docs(docs, spec):
    for field, direction in reversed(spec):
        docs.sort(key=_sort_key(field), reverse=direction < 0)
    return docs


# ---- Aggregation

def _eval(expr, doc):
    if isinstance(expr, str) and expr.startswith("$"):
        value = get_path(doc, expr[1:])
        return None if value is _MISSING else value
    if isinstance(expr, dict):
        if "$cond" in expr:
            cond, then, other = expr["$cond"]
            return _eval(then, doc) if _eval(cond, doc) else _eval(other, doc)
        if "$eq" in expr:
            a, b = expr["$eq"]
            return _eval(a, doc) == _eval(b, doc)
        return {k: _eval(v, doc) for k, v in expr.items()}
    return expr


def _group(docs, spec):
    groups = {}
    for doc in docs:
        key = _eval(spec["_id"], doc)
        hashable = tuple(sorted(key.items())) if isinstance(key, dict) else key
        if hashable not in groups:
            groups[hashable] = {"_id": key}
            for field in spec:
                if field != "_id":
                    groups[hashable][field] = 0
        for field, acc in spec.items():
            if field == "_id":
                continue
            groups[hashable][field] += _eval(acc["$sum"], doc) or 0
    return list(groups.values())


def run_pipeline(db, docs, pipeline):
    docs = [copy.deepcopy(d) for d in docs]
    for stage in pipeline:
        (name, spec), = stage.items()
        if name == "$match":
            docs = [d for d in docs if matches(d, spec)]
        elif name == "$lookup":
            foreign = db[spec["from"]].docs
            for d in docs:
                local = get_path(d, spec["localField"])
                local = None if local is _MISSING else local
                joined = [copy.deepcopy(f) for f in foreign if _equals(get_path(f, spec["foreignField"]), local)]
                set_path(d, spec["as"], joined)
        elif name == "$unwind":
            path = spec["path"][1:]
            keep = spec.get("preserveNullAndEmptyArrays", False)
            out = []
            for d in docs:
                value = get_path(d, path)
                if isinstance(value, list) and value:
                    for item in value:
                        clone = copy.deepcopy(d)
                        set_path(clone, path, item)
                        out.append(clone)
                elif keep:
                    clone = copy.deepcopy(d)
                    if isinstance(value, list):
                        parent, _, leaf = path.rpartition(".")
                        holder = get_path(clone, parent) if parent else clone
                        if isinstance(holder, dict):
                            holder.pop(leaf, None)
                    out.append(clone)
            docs = out
        elif name == "$addFields":
            for d in docs:
                for path, expr in spec.items():
                    value = _eval(expr, d)
                    if value is not None:
                        set_path(d, path, value)
        elif name == "$project":
            docs = [project(d, spec) for d in docs]
        elif name == "$group":
            docs = _group(docs, spec)
        elif name == "$sort":
            docs = sort_docs(docs, list(spec.items()))
        elif name == "$skip":
            docs = docs[spec:]
        elif name == "$limit":
            docs = docs[:spec]
        else:
            raise NotImplementedError(name)
    return docs


# ---- Motor-like API

class FakeCursor:
    """Sorts, skips and limits whole documents; the projection is applied on read."""

    def __init__(self, docs, projection=None):
        self._docs = docs
        self._projection = projection

    def _results(self):
        if self._projection is None:
            return list(self._docs)
        return [project(d, self._projection) for d in self._docs]

    def sort(self, key_or_list, direction=1):
        spec = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction)]
        self._docs = sort_docs(self._docs, spec)
        return self

    def skip(self, count):
        self._docs = self._docs[count:]
        return self

    def limit(self, count):
        if count:
            self._docs = self._docs[:count]
        return self

    async def to_list(self, length=None):
        docs = self._results()
        return docs if length is None else docs[:length]

    def __aiter__(self):
        self._iter = iter(self._results())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, db, name):
        self.db = db
        self.name = name
        self.docs = []

    def _matching(self, query):
        return [d for d in self.docs if matches(d, query)]

    def find(self, query=None, projection=None, sort=None):
        cursor = FakeCursor([copy.deepcopy(d) for d in self._matching(query)], projection)
        if sort:
            cursor.sort(sort)
        return cursor

    async def find_one(self, query=None, projection=None, sort=None):
        docs = await self.find(query, projection, sort=sort).to_list()
        return docs[0] if docs else None

    async def insert_one(self, doc):
        doc.setdefault("_id", next(_object_ids))
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs):
        ids = []
        for doc in docs:
            ids.append((await self.insert_one(doc)).inserted_id)
        return SimpleNamespace(inserted_ids=ids)

    def _upsert_doc(self, query, update):
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        doc["_id"] = next(_object_ids)
        apply_update(doc, update, inserting=True)
        self.docs.append(doc)
        return doc

    async def update_one(self, query, update, upsert=False):
        targets = self._matching(query)[:1]
        return self._update(targets, query, update, upsert)

    async def update_many(self, query, update, upsert=False):
        return self._update(self._matching(query), query, update, upsert)

    def _update(self, targets, query, update, upsert):
        modified = 0
        for doc in targets:
            before = copy.deepcopy(doc)
            apply_update(doc, update)
            modified += before != doc
        upserted_id = None
        if not targets and upsert:
            upserted_id = self._upsert_doc(query, update)["_id"]
        return SimpleNamespace(matched_count=len(targets), modified_count=modified, upserted_id=upserted_id)

    async def find_one_and_update(self, query, update, upsert=False, return_document=ReturnDocument.BEFORE, projection=None):
        targets = self._matching(query)[:1]
        if not targets:
            if not upsert:
                return None
            doc = self._upsert_doc(query, update)
            return project(doc, projection) if return_document == ReturnDocument.AFTER else None
        doc = targets[0]
        before = project(doc, projection)
        apply_update(doc, update)
        return project(doc, projection) if return_document == ReturnDocument.AFTER else before

    async def find_one_and_delete(self, query, projection=None):
        targets = self._matching(query)[:1]
        if not targets:
            return None
        self.docs.remove(targets[0])
        return project(targets[0], projection)

    async def delete_many(self, query):
        targets = self._matching(query)
        self.docs = [d for d in self.docs if d not in targets]
        return SimpleNamespace(deleted_count=len(targets))

    async def distinct(self, key, query=None):
        values = []
        for doc in self._matching(query):
            value = get_path(doc, key)
            for v in (value if isinstance(value, list) else [value]):
                if v is not _MISSING and v not in values:
                    values.append(v)
        return values

    async def count_documents(self, query):
        return len(self._matching(query))

    def aggregate(self, pipeline):
        return FakeCursor(run_pipeline(self.db, self.docs, pipeline))

    def list_indexes(self):
        return []


class FakeDatabase:
    def __init__(self, name="test"):
        self.name = name
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(self, name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def seed(self, collection, *docs):
        for doc in docs:
            self[collection].docs.append({"_id": next(_object_ids), **copy.deepcopy(doc)})


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    from cache.settings_cache import settings_cache
    settings_cache.invalidate_all()
    yield
    settings_cache.invalidate_all()
