#!/usr/bin/env python3
"""
Relation Registry - central definitions for the joins the query layer can expand.

Each entry maps (source table, relation name) to a `$lookup` description:
target collection, local/foreign key, output field, whether the join is inner,
and an optional list of second-level joins run against the just-joined document.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

# ---- Relation Registry (single source of truth for joins)
REL: Dict[str, Dict[str, dict]] = {
    "tasks": {
        "projects": {
            "target": "projects",
            "localField": "project_id",
            "foreignField": "id",
            "as": "projects",
            "inner": True,
        },
    },

    "subtasks": {
        "tasks": {
            "target": "tasks",
            "localField": "task_id",
            "foreignField": "id",
            "as": "tasks",
            "inner": True,
            "nested": [
                {
                    "target": "projects",
                    "localField": "project_id",
                    "foreignField": "id",
                    "as": "projects",
                    "inner": True,
                },
            ],
        },
    },

    "task_work_assignments": {
        "tasks": {
            "target": "tasks",
            "localField": "task_id",
            "foreignField": "id",
            "as": "tasks",
            "inner": False,
            "nested": [
                {
                    "target": "projects",
                    "localField": "project_id",
                    "foreignField": "id",
                    "as": "projects",
                    "inner": False,
                },
            ],
        },
        "subtasks": {
            "target": "subtasks",
            "localField": "subtask_id",
            "foreignField": "id",
            "as": "subtasks",
            "inner": False,
            "nested": [
                {
                    "target": "tasks",
                    "localField": "task_id",
                    "foreignField": "id",
                    "as": "tasks",
                    "inner": False,
                },
                # the subtask's task was attached above; hang its project under it
                {
                    "target": "projects",
                    "localField": "tasks.project_id",
                    "foreignField": "id",
                    "as": "projects",
                    "inner": False,
                    "addToPath": "tasks.projects",
                },
            ],
        },
    },

    "work_sessions": {
        "task_work_assignments": {
            "target": "task_work_assignments",
            "localField": "assignment_id",
            "foreignField": "id",
            "as": "task_work_assignments",
            "inner": True,
            "nested": [
                {
                    "target": "tasks",
                    "localField": "task_id",
                    "foreignField": "id",
                    "as": "tasks",
                    "inner": False,
                },
                {
                    "target": "projects",
                    "localField": "tasks.project_id",
                    "foreignField": "id",
                    "as": "projects",
                    "inner": False,
                    "addToPath": "tasks.projects",
                },
                {
                    "target": "subtasks",
                    "localField": "subtask_id",
                    "foreignField": "id",
                    "as": "subtasks",
                    "inner": False,
                },
            ],
        },
    },

    "area_user_assignments": {
        "areas": {
            "target": "areas",
            "localField": "area_id",
            "foreignField": "id",
            "as": "areas",
            "inner": False,
        },
        "users": {
            "target": "users",
            "localField": "user_id",
            "foreignField": "id",
            "as": "users",
            "inner": False,
        },
    },

    "acct_transactions": {
        "acct_entities": {
            "target": "acct_entities",
            "localField": "entity_id",
            "foreignField": "id",
            "as": "acct_entities",
            "inner": False,
        },
        "acct_categories": {
            "target": "acct_categories",
            "localField": "category_id",
            "foreignField": "id",
            "as": "acct_categories",
            "inner": False,
        },
        "acct_payment_accounts": {
            "target": "acct_payment_accounts",
            "localField": "payment_account_id",
            "foreignField": "id",
            "as": "acct_payment_accounts",
            "inner": True,
        },
    },
}


@dataclass(frozen=True)
class LookupConfig:
    """One join: `target.foreign_field == <doc>.local_field`, stored under `as_`."""
    target: str
    local_field: str
    foreign_field: str
    as_: str
    inner: bool = False
    nested: Tuple["LookupConfig", ...] = ()
    # where a nested result is attached, relative to the parent's output field
    add_to_path: Optional[str] = None

    @property
    def output_path(self) -> str:
        return self.add_to_path or self.as_


def _lookup_from_mapping(raw: Mapping[str, Any], depth: int, where: str) -> LookupConfig:
    nested_raw = raw.get("nested") or ()
    if nested_raw and depth >= 2:
        raise ValueError(f"Relation '{where}' nests deeper than two levels")
    nested = tuple(
        _lookup_from_mapping(n, depth + 1, f"{where}.{n.get('as')}") for n in nested_raw
    )
    return LookupConfig(
        target=raw["target"],
        local_field=raw["localField"],
        foreign_field=raw["foreignField"],
        as_=raw.get("as") or raw["target"],
        inner=bool(raw.get("inner", False)),
        nested=nested,
        add_to_path=raw.get("addToPath"),
    )


class RelationRegistry:
    """Immutable table -> relation name -> LookupConfig map."""

    def __init__(self, relations: Mapping[str, Mapping[str, LookupConfig]]):
        self._relations = MappingProxyType(
            {table: MappingProxyType(dict(rels)) for table, rels in relations.items()}
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> "RelationRegistry":
        """Build a registry from a REL-style plain dict, validating nesting depth."""
        return cls({
            table: {
                name: _lookup_from_mapping(config, 1, f"{table}.{name}")
                for name, config in rels.items()
            }
            for table, rels in raw.items()
        })

    def relations_for(self, table: str) -> Mapping[str, LookupConfig]:
        return self._relations.get(table, MappingProxyType({}))

    def get(self, table: str, relation: str) -> Optional[LookupConfig]:
        return self.relations_for(table).get(relation)

    def tables(self) -> Iterator[str]:
        return iter(self._relations)

    def __contains__(self, table: object) -> bool:
        return table in self._relations


DEFAULT_REGISTRY = RelationRegistry.from_mapping(REL)


def build_lookup_stage(config: LookupConfig, local_field_prefix: Optional[str] = None, alias: Optional[str] = None) -> Dict[str, Any]:
    """Build a `$lookup` stage for a relation.

    For a second-level join, `local_field_prefix` is the parent's output field so
    the local key is read from the document joined in the previous step.
    """
    local_field = config.local_field
    if local_field_prefix:
        local_field = f"{local_field_prefix}.{local_field}"
    return {
        "$lookup": {
            "from": config.target,
            "localField": local_field,
            "foreignField": config.foreign_field,
            "as": alias or config.as_,
        }
    }
