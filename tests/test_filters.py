#!/usr/bin/env python3
"""
Filter and projection translation tests.
"""

import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mongo.errors import MalformedFilterError
from mongo.filters import build_mongo_filter, build_projection, parse_not_in_string
from conftest import matches


class TestEqAndIn:
    def test_empty_descriptor(self):
        assert build_mongo_filter(None) == {}
        assert build_mongo_filter({}) == {}

    def test_eq_passes_values_through(self):
        assert build_mongo_filter({"eq": {"status": "pending", "is_billable": False}}) == {
            "status": "pending",
            "is_billable": False,
        }

    def test_eq_none_is_skipped(self):
        assert build_mongo_filter({"eq": {"project_id": None}}) == {}

    def test_in_list(self):
        assert build_mongo_filter({"in": {"id": ["t1", "t2"]}}) == {"id": {"$in": ["t1", "t2"]}}

    def test_empty_in_list_means_no_constraint(self):
        assert build_mongo_filter({"in": {"id": []}}) == {}
        assert build_mongo_filter({"in": {"id": []}}, strict=True) == {}

    def test_non_list_in_is_dropped_unless_strict(self):
        assert build_mongo_filter({"in": {"id": "t1"}}) == {}
        with pytest.raises(MalformedFilterError):
            build_mongo_filter({"in": {"id": "t1"}}, strict=True)


class TestContainsAndRanges:
    def test_single_value_contains(self):
        assert build_mongo_filter({"contains": {"assigned_users": ["u1"]}}) == {"assigned_users": "u1"}

    def test_multi_value_contains_uses_all(self):
        assert build_mongo_filter({"contains": {"assigned_users": ["u1", "u2"]}}) == {
            "assigned_users": {"$all": ["u1", "u2"]}
        }

    def test_ranges_merge_on_same_field(self):
        result = build_mongo_filter({"gte": {"date": "2024-01-01"}, "lte": {"date": "2024-01-31"}})
        assert result == {"date": {"$gte": "2024-01-01", "$lte": "2024-01-31"}}

    def test_range_does_not_mutate_earlier_condition(self):
        descriptor = {"not": {"date": {"op": "eq", "value": "x"}}, "gt": {"date": "a"}}
        result = build_mongo_filter(descriptor)
        assert result == {"date": {"$ne": "x", "$gt": "a"}}

    def test_or_group(self):
        result = build_mongo_filter({"eq": {"project_id": "p1"}, "or": [{"status": "blocked"}, {"priority": "high"}]})
        assert result == {"project_id": "p1", "$or": [{"status": "blocked"}, {"priority": "high"}]}

    @pytest.mark.parametrize("or_group", [{"status": "blocked"}, ["status"], "status"])
    def test_malformed_or_group(self, or_group):
        descriptor = {"eq": {"project_id": "p1"}, "or": or_group}
        assert build_mongo_filter(descriptor) == {"project_id": "p1"}
        with pytest.raises(MalformedFilterError):
            build_mongo_filter(descriptor, strict=True)


class TestNot:
    def test_not_in_list(self):
        result = build_mongo_filter({"not": {"status": {"op": "in", "value": ["completed", "approved"]}}})
        assert result == {"status": {"$nin": ["completed", "approved"]}}

    def test_not_in_parenthesized_string(self):
        result = build_mongo_filter({"not": {"status": {"op": "in", "value": "('completed', \"in_review\",approved)"}}})
        assert result == {"status": {"$nin": ["completed", "in_review", "approved"]}}

    def test_unparseable_not_in_string(self):
        descriptor = {"not": {"status": {"op": "in", "value": "completed"}}}
        assert build_mongo_filter(descriptor) == {}
        with pytest.raises(MalformedFilterError):
            build_mongo_filter(descriptor, strict=True)

    def test_not_without_op(self):
        descriptor = {"not": {"status": "completed"}}
        assert build_mongo_filter(descriptor) == {}
        with pytest.raises(MalformedFilterError):
            build_mongo_filter(descriptor, strict=True)

    def test_not_is_null_query(self):
        result = build_mongo_filter({"not": {"status": {"op": "is", "value": None}}})
        assert result == {"status": {"$ne": None, "$exists": True}}

    @pytest.mark.parametrize(
        "doc, expected",
        [
            ({"id": "absent"}, False),
            ({"id": "null", "status": None}, False),
            ({"id": "set", "status": "pending"}, True),
            ({"id": "empty", "status": ""}, True),
        ],
    )
    def test_not_is_null_truth_table(self, doc, expected):
        query = build_mongo_filter({"not": {"status": {"op": "is", "value": None}}})
        assert matches(doc, query) is expected

    def test_not_with_plain_value(self):
        assert build_mongo_filter({"not": {"status": {"op": "eq", "value": "blocked"}}}) == {
            "status": {"$ne": "blocked"}
        }


class TestParseNotInString:
    def test_strips_whitespace_and_quotes(self):
        assert parse_not_in_string("( 'a' , \"b\", c )") == ["a", "b", "c"]

    def test_drops_empty_tokens(self):
        assert parse_not_in_string("('a',,'')") == ["a"]

    def test_no_parentheses(self):
        assert parse_not_in_string("a,b") == []


class TestProjection:
    @pytest.mark.parametrize("select", [None, "", "*", "  *  "])
    def test_all_fields(self, select):
        assert build_projection(select) is None

    def test_field_list(self):
        assert build_projection("id, title ,status") == {"id": 1, "title": 1, "status": 1}

    def test_empty_tokens_are_dropped(self):
        assert build_projection("id,, ,title") == {"id": 1, "title": 1}

    def test_only_separators_means_all_fields(self):
        assert build_projection(" , ,") is None

    def test_join_syntax_fetches_everything(self):
        assert build_projection("id, projects(name)") is None
        assert build_projection("*, tasks!inner(id)") is None

    def test_star_token_fetches_everything(self):
        assert build_projection("id, *") is None
