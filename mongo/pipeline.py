"""
Aggregation pipeline builder for relational-style selects.

A select such as ``"*, tasks!inner(id, title, projects(name))"`` asks for the
`tasks` relation to be joined. Relations are expanded through the registry in a
single round trip: `$lookup` + `$unwind` per relation, and for second-level
joins a temporary top-level field that is merged into the parent and removed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .errors import UnknownRelationError
from .registry import DEFAULT_REGISTRY, LookupConfig, RelationRegistry, build_lookup_stage

logger = logging.getLogger(__name__)

_RELATION_PATTERN = re.compile(r"(\w+)(!inner)?\s*\(")


@dataclass(frozen=True)
class JoinRelation:
    name: str
    inner: bool = False


def has_join_syntax(select: Optional[str]) -> bool:
    """True if the select names a relation, e.g. ``tasks(...)`` or ``tasks!inner(...)``."""
    if not select or not select.strip():
        return False
    return _RELATION_PATTERN.search(select) is not None


def parse_join_relations(select: str) -> List[JoinRelation]:
    """Ordered, de-duplicated relation names referenced by the select (first occurrence wins)."""
    relations: List[JoinRelation] = []
    seen = set()
    for match in _RELATION_PATTERN.finditer(select):
        name = match.group(1)
        if name in seen:
            continue
        seen.add(name)
        relations.append(JoinRelation(name=name, inner=bool(match.group(2))))
    return relations


def _unwind(path: str, inner: bool) -> Dict[str, Any]:
    return {"$unwind": {"path": f"${path}", "preserveNullAndEmptyArrays": not inner}}


def _nested_stages(parent: LookupConfig, nested: LookupConfig) -> List[Dict[str, Any]]:
    temp_field = f"{parent.as_}_{nested.as_}"
    return [
        build_lookup_stage(nested, local_field_prefix=parent.as_, alias=temp_field),
        _unwind(temp_field, nested.inner),
        {"$addFields": {f"{parent.as_}.{nested.output_path}": f"${temp_field}"}},
        {"$project": {temp_field: 0}},
    ]


def build_lookup_stages(
    table: str,
    relations: List[JoinRelation],
    registry: RelationRegistry = DEFAULT_REGISTRY,
    strict: bool = False,
) -> List[Dict[str, Any]]:
    """Build `$lookup`/`$unwind` stages for the requested relations.

    Relations the registry does not know for `table` are skipped, or raise
    `UnknownRelationError` when `strict` is set.
    """
    stages: List[Dict[str, Any]] = []
    table_config = registry.relations_for(table)

    for relation in relations:
        config = table_config.get(relation.name)
        if config is None:
            if strict:
                raise UnknownRelationError(table, relation.name)
            logger.debug("Skipping unknown relation '%s' on '%s'", relation.name, table)
            continue

        stages.append(build_lookup_stage(config))
        stages.append(_unwind(config.as_, relation.inner or config.inner))

        for nested in config.nested:
            stages.extend(_nested_stages(config, nested))

    return stages


def build_aggregation_pipeline(
    table: str,
    select: Optional[str],
    match_filter: Mapping[str, Any],
    order: Any = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    registry: RelationRegistry = DEFAULT_REGISTRY,
    strict: bool = False,
) -> List[Dict[str, Any]]:
    """Assemble the pipeline in fixed order: match, joins, sort, skip, limit.

    `order` is any object with `column` and `ascending` attributes.
    """
    pipeline: List[Dict[str, Any]] = []

    if match_filter:
        pipeline.append({"$match": dict(match_filter)})

    if has_join_syntax(select):
        pipeline.extend(build_lookup_stages(table, parse_join_relations(select), registry, strict))

    if order is not None:
        pipeline.append({"$sort": {order.column: 1 if order.ascending else -1}})

    if offset and offset > 0:
        pipeline.append({"$skip": offset})

    if limit and limit > 0:
        pipeline.append({"$limit": limit})

    return pipeline
