#!/usr/bin/env python3
"""
Lookup pipeline builder and relation registry tests.
"""

import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mongo.errors import UnknownRelationError
from mongo.pipeline import (
    JoinRelation,
    build_aggregation_pipeline,
    build_lookup_stages,
    has_join_syntax,
    parse_join_relations,
)
from mongo.query_models import OrderSpec
from mongo.registry import DEFAULT_REGISTRY, REL, RelationRegistry
from conftest import FakeDatabase, run_pipeline


class TestSelectParsing:
    @pytest.mark.parametrize("select", ["projects(name)", "*, tasks!inner(id)", "id, tasks ( title )"])
    def test_detects_relations(self, select):
        assert has_join_syntax(select)

    @pytest.mark.parametrize("select", [None, "", "*", "id, title"])
    def test_plain_selects(self, select):
        assert not has_join_syntax(select)

    def test_relations_in_order_and_deduplicated(self):
        select = "*, tasks!inner(id, projects(name)), subtasks(id), tasks(title)"
        assert parse_join_relations(select) == [
            JoinRelation("tasks", inner=True),
            JoinRelation("projects"),
            JoinRelation("subtasks"),
        ]


class TestLookupStages:
    def test_subtasks_to_tasks_with_nested_projects(self):
        stages = build_lookup_stages("subtasks", parse_join_relations("*, tasks(*, projects(name))"))
        assert stages == [
            {"$lookup": {"from": "tasks", "localField": "task_id", "foreignField": "id", "as": "tasks"}},
            {"$unwind": {"path": "$tasks", "preserveNullAndEmptyArrays": False}},
            {"$lookup": {
                "from": "projects",
                "localField": "tasks.project_id",
                "foreignField": "id",
                "as": "tasks_projects",
            }},
            {"$unwind": {"path": "$tasks_projects", "preserveNullAndEmptyArrays": False}},
            {"$addFields": {"tasks.projects": "$tasks_projects"}},
            {"$project": {"tasks_projects": 0}},
        ]

    def test_left_join_preserves_unmatched(self):
        stages = build_lookup_stages("area_user_assignments", [JoinRelation("areas")])
        assert stages[1] == {"$unwind": {"path": "$areas", "preserveNullAndEmptyArrays": True}}

    def test_inner_marker_overrides_left_join(self):
        stages = build_lookup_stages("area_user_assignments", [JoinRelation("areas", inner=True)])
        assert stages[1] == {"$unwind": {"path": "$areas", "preserveNullAndEmptyArrays": False}}

    def test_nested_output_path_override(self):
        stages = build_lookup_stages("task_work_assignments", [JoinRelation("subtasks")])
        add_fields = [s["$addFields"] for s in stages if "$addFields" in s]
        assert add_fields == [
            {"subtasks.tasks": "$subtasks_tasks"},
            {"subtasks.tasks.projects": "$subtasks_projects"},
        ]
        lookups = [s["$lookup"]["localField"] for s in stages if "$lookup" in s]
        assert lookups == ["subtask_id", "subtasks.task_id", "subtasks.tasks.project_id"]

    def test_unknown_relation_is_skipped(self):
        assert build_lookup_stages("tasks", [JoinRelation("nonexistent")]) == []

    def test_unknown_relation_raises_in_strict_mode(self):
        with pytest.raises(UnknownRelationError):
            build_lookup_stages("tasks", [JoinRelation("nonexistent")], strict=True)

    def test_unknown_table_has_no_relations(self):
        assert build_lookup_stages("users", [JoinRelation("tasks")]) == []


class TestPipelineOrder:
    def test_sort_and_limit_only(self):
        pipeline = build_aggregation_pipeline("tasks", "*", {}, order=OrderSpec(column="deadline"), limit=5)
        assert pipeline == [{"$sort": {"deadline": 1}}, {"$limit": 5}]

    def test_full_order(self):
        pipeline = build_aggregation_pipeline(
            "tasks",
            "*, projects(name)",
            {"status": "pending"},
            order=OrderSpec(column="deadline", ascending=False),
            limit=10,
            offset=20,
        )
        names = [next(iter(stage)) for stage in pipeline]
        assert names == ["$match", "$lookup", "$unwind", "$sort", "$skip", "$limit"]
        assert pipeline[3] == {"$sort": {"deadline": -1}}

    def test_zero_offset_and_limit_are_omitted(self):
        assert build_aggregation_pipeline("tasks", None, {}, limit=0, offset=0) == []


class TestRegistry:
    def test_default_registry_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_REGISTRY.relations_for("tasks")["extra"] = None

    def test_injected_registry(self):
        registry = RelationRegistry.from_mapping({
            "notes": {"authors": {"target": "users", "localField": "author_id", "foreignField": "id", "as": "author"}},
        })
        stages = build_lookup_stages("notes", [JoinRelation("authors")], registry=registry)
        assert stages[0]["$lookup"] == {"from": "users", "localField": "author_id", "foreignField": "id", "as": "author"}
        assert build_lookup_stages("tasks", [JoinRelation("projects")], registry=registry) == []

    def test_nesting_deeper_than_two_levels_is_rejected(self):
        leaf = {"target": "c", "localField": "c_id", "foreignField": "id", "as": "c"}
        middle = {"target": "b", "localField": "b_id", "foreignField": "id", "as": "b", "nested": [dict(leaf, nested=[leaf])]}
        with pytest.raises(ValueError):
            RelationRegistry.from_mapping({"a": {"b": middle}})

    def test_every_configured_table_is_registered(self):
        assert set(DEFAULT_REGISTRY.tables()) == set(REL)
        assert "subtasks" in DEFAULT_REGISTRY


class TestPipelineAgainstData:
    def _db(self):
        db = FakeDatabase()
        db.seed("projects", {"id": "p1", "name": "Website"})
        db.seed(
            "tasks",
            {"id": "t1", "title": "Design", "project_id": "p1"},
            {"id": "t2", "title": "Orphan", "project_id": None},
        )
        db.seed(
            "subtasks",
            {"id": "s1", "task_id": "t1", "title": "Wireframes"},
            {"id": "s2", "task_id": "t2", "title": "Lost"},
            {"id": "s3", "task_id": "missing", "title": "Dangling"},
        )
        return db

    def test_inner_join_drops_unmatched_parents(self):
        db = self._db()
        pipeline = build_aggregation_pipeline("subtasks", "*, tasks(*, projects(name))", {})
        rows = run_pipeline(db, db["subtasks"].docs, pipeline)
        assert [r["id"] for r in rows] == ["s1"]
        assert rows[0]["tasks"]["projects"]["name"] == "Website"
        assert "tasks_projects" not in rows[0]

    def test_left_join_keeps_parents_without_match(self):
        db = self._db()
        db.seed("task_work_assignments", {"id": "w1", "task_id": "t2"}, {"id": "w2", "task_id": "t1"})
        pipeline = build_aggregation_pipeline("task_work_assignments", "*, tasks(*, projects(name))", {})
        rows = {r["id"]: r for r in run_pipeline(db, db["task_work_assignments"].docs, pipeline)}
        assert set(rows) == {"w1", "w2"}
        assert "projects" not in rows["w1"]["tasks"]
        assert rows["w2"]["tasks"]["projects"]["id"] == "p1"
