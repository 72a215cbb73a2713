"""
Filter and projection translation.

Turns the API's filter descriptor into a native MongoDB query document:

    {
      "eq":  {"status": "pending"},
      "in":  {"id": ["t1", "t2"]},
      "not": {"deadline": {"op": "is", "value": None},
              "status":   {"op": "in", "value": "('completed', 'approved')"}},
      "or":  [{"status": "blocked"}, {"priority": "high"}],
      "gte": {"deadline": "2024-01-01"},
    }

All kinds are ANDed at the top level; only the explicit ``or`` group is a
disjunction.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import MalformedFilterError


_PAREN_GROUP = re.compile(r"\(([^)]*)\)")
_RANGE_OPERATORS = (("gte", "$gte"), ("lte", "$lte"), ("gt", "$gt"), ("lt", "$lt"))


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def parse_not_in_string(value: str) -> List[str]:
    """Parse strings like "('completed', 'in_review', 'approved')" into a list."""
    match = _PAREN_GROUP.search(value)
    if not match:
        return []
    tokens = []
    for raw in match.group(1).split(","):
        token = raw.strip()
        # one layer of surrounding quotes
        if token[:1] in ("'", '"'):
            token = token[1:]
        if token[-1:] in ("'", '"'):
            token = token[:-1]
        if token:
            tokens.append(token)
    return tokens


def _translate_not(field: str, condition: Any, strict: bool) -> Optional[Dict[str, Any]]:
    if not isinstance(condition, Mapping) or "op" not in condition:
        if strict:
            raise MalformedFilterError(f"'not' filter on '{field}' needs an 'op'")
        return None

    op = condition.get("op")
    value = condition.get("value")

    if op == "in" and _is_sequence(value):
        return {"$nin": list(value)}
    if op == "in" and isinstance(value, str):
        parsed = parse_not_in_string(value)
        if parsed:
            return {"$nin": parsed}
        if strict:
            raise MalformedFilterError(f"Could not parse 'not in' list for '{field}': {value!r}")
        return None
    if op == "is" and value is None:
        # "where field is not null": absent and null are both excluded
        return {"$ne": None, "$exists": True}
    return {"$ne": value}


def build_mongo_filter(filters: Optional[Mapping[str, Any]], strict: bool = False) -> Dict[str, Any]:
    """Convert an API filter descriptor into a MongoDB query document.

    In lenient mode (default) malformed entries are dropped, which means "no
    constraint" for that field. With ``strict=True`` they raise
    ``MalformedFilterError`` instead. Empty ``in`` lists are never an error.
    """
    query: Dict[str, Any] = {}
    if not filters:
        return query

    for key, value in (filters.get("eq") or {}).items():
        if value is not None:
            query[key] = value

    for key, values in (filters.get("in") or {}).items():
        if not _is_sequence(values):
            if strict:
                raise MalformedFilterError(f"'in' filter on '{key}' must be a list")
            continue
        if values:
            query[key] = {"$in": list(values)}

    # array field contains value(s)
    for key, values in (filters.get("contains") or {}).items():
        if not _is_sequence(values):
            if strict:
                raise MalformedFilterError(f"'contains' filter on '{key}' must be a list")
            continue
        if values:
            query[key] = values[0] if len(values) == 1 else {"$all": list(values)}

    for key, condition in (filters.get("not") or {}).items():
        translated = _translate_not(key, condition, strict)
        if translated is not None:
            query[key] = translated

    for name, operator in _RANGE_OPERATORS:
        for key, value in (filters.get(name) or {}).items():
            if value is None:
                continue
            existing = query.get(key)
            if isinstance(existing, dict):
                query[key] = {**existing, operator: value}
            else:
                query[key] = {operator: value}

    or_group = filters.get("or")
    if or_group:
        if _is_sequence(or_group) and all(isinstance(branch, Mapping) for branch in or_group):
            query["$or"] = list(or_group)
        elif strict:
            raise MalformedFilterError("'or' filter must be a list of conditions")

    return query


def build_projection(select: Optional[str]) -> Optional[Dict[str, int]]:
    """Build a field-inclusion projection from a comma separated select string.

    Returns None ("all fields") for an empty select, '*', or a select with join
    syntax, since joined fields do not exist on the stored document.
    """
    if not select or select.strip() == "*":
        return None
    if "!" in select or "(" in select:
        return None

    fields: Sequence[str] = [f.strip() for f in select.split(",")]
    if "*" in fields:
        return None

    projection = {field: 1 for field in fields if field}
    return projection or None
