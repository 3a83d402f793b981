"""Tests for the in-process query and pipeline engine."""

import pytest
from datetime import datetime

from finedge.queries.engine import (
    QueryError,
    filter_records,
    matches,
    project,
    run_pipeline,
    sort_records,
)


RECORDS = [
    {"id": "a", "kind": "expense", "category": "Food", "amount": 10.0,
     "tags": ["lunch"], "date": datetime(2024, 3, 1, 9), "meta": {"source": "card"}},
    {"id": "b", "kind": "income", "category": "Salary", "amount": 100.0,
     "tags": [], "date": datetime(2024, 3, 5, 9), "meta": {"source": "bank"}},
    {"id": "c", "kind": "expense", "category": "Rent", "amount": 50.0,
     "tags": ["home"], "date": datetime(2024, 3, 5, 18)},
    {"id": "d", "kind": "expense", "category": "Food", "amount": 10.0,
     "tags": ["dinner", "lunch"], "date": datetime(2024, 4, 2, 20)},
]


def ids(records):
    return [record["id"] for record in records]


class TestMatches:
    """Tests for query document matching."""
    
    def test_empty_query_matches_everything(self):
        """Test that an empty query is a no-op filter."""
        assert ids(filter_records(RECORDS, {})) == ["a", "b", "c", "d"]
        assert ids(filter_records(RECORDS, None)) == ["a", "b", "c", "d"]
    
    def test_equality_is_conjunctive(self):
        """Test that every clause must match."""
        query = {"kind": "expense", "category": "Food"}
        assert ids(filter_records(RECORDS, query)) == ["a", "d"]
    
    def test_equality_matches_array_membership(self):
        """Test that a scalar matches an array containing it."""
        assert ids(filter_records(RECORDS, {"tags": "lunch"})) == ["a", "d"]
    
    def test_in_and_nin(self):
        """Test $in and $nin."""
        assert ids(filter_records(RECORDS, {"category": {"$in": ["Rent", "Salary"]}})) == ["b", "c"]
        assert ids(filter_records(RECORDS, {"tags": {"$in": ["home", "dinner"]}})) == ["c", "d"]
        assert ids(filter_records(RECORDS, {"category": {"$nin": ["Food"]}})) == ["b", "c"]
    
    def test_inclusive_range(self):
        """Test that $gte/$lte include both boundaries."""
        query = {"date": {
            "$gte": datetime(2024, 3, 1, 9),
            "$lte": datetime(2024, 3, 5, 18),
        }}
        assert ids(filter_records(RECORDS, query)) == ["a", "b", "c"]
    
    def test_comparison_ignores_other_types(self):
        """Test that ranges never match values of a different type."""
        assert ids(filter_records(RECORDS, {"category": {"$gt": 5}})) == []
        assert ids(filter_records(RECORDS, {"amount": {"$gt": 20}})) == ["b", "c"]
    
    def test_ne_and_exists(self):
        """Test $ne and $exists on a missing field."""
        assert ids(filter_records(RECORDS, {"kind": {"$ne": "expense"}})) == ["b"]
        assert ids(filter_records(RECORDS, {"meta": {"$exists": False}})) == ["c", "d"]
    
    def test_dotted_path(self):
        """Test nested field access."""
        assert ids(filter_records(RECORDS, {"meta.source": "bank"})) == ["b"]
    
    def test_regex_case_insensitive(self):
        """Test $regex with the i option."""
        query = {"category": {"$regex": "^fo", "$options": "i"}}
        assert ids(filter_records(RECORDS, query)) == ["a", "d"]
        assert ids(filter_records(RECORDS, {"category": {"$regex": "^fo"}})) == []
    
    def test_or_and(self):
        """Test $or and $and combinators."""
        query = {"$or": [{"category": "Rent"}, {"kind": "income"}]}
        assert ids(filter_records(RECORDS, query)) == ["b", "c"]
        query = {"$and": [{"kind": "expense"}, {"amount": {"$lt": 50}}]}
        assert ids(filter_records(RECORDS, query)) == ["a", "d"]
    
    def test_unsupported_operator_raises(self):
        """Test that unknown operators fail loudly."""
        with pytest.raises(QueryError):
            matches(RECORDS[0], {"amount": {"$mod": [2, 0]}})
        with pytest.raises(QueryError):
            matches(RECORDS[0], {"$where": "1"})


class TestSortAndProject:
    """Tests for ordering and projection."""
    
    def test_multi_key_sort_with_tie_breaker(self):
        """Test that equal keys fall back to the next key."""
        ordered = sort_records(RECORDS, [("amount", -1), ("id", 1)])
        assert ids(ordered) == ["b", "c", "a", "d"]
        ordered = sort_records(RECORDS, [("amount", 1), ("id", -1)])
        assert ids(ordered) == ["d", "a", "c", "b"]
    
    def test_sort_missing_values_first_ascending(self):
        """Test that missing fields order before present ones."""
        ordered = sort_records(RECORDS, [("meta.source", 1), ("id", 1)])
        assert ids(ordered) == ["c", "d", "b", "a"]
    
    def test_inclusion_projection_keeps_id(self):
        """Test inclusion projection."""
        assert project(RECORDS[0], {"amount": 1}) == {"id": "a", "amount": 10.0}
    
    def test_exclusion_projection(self):
        """Test exclusion projection."""
        projected = project(RECORDS[0], {"meta": 0, "tags": 0})
        assert "meta" not in projected
        assert "tags" not in projected
        assert projected["category"] == "Food"


class TestPipeline:
    """Tests for $match/$group/$sort evaluation."""
    
    def test_group_by_compound_key(self):
        """Test grouping by (kind, category) with $sum."""
        rows = run_pipeline(RECORDS, [
            {"$group": {
                "_id": {"kind": "$kind", "category": "$category"},
                "total": {"$sum": "$amount"},
                "count": {"$sum": 1},
            }},
            {"$sort": {"_id.kind": 1, "_id.category": 1}},
        ])
        assert rows == [
            {"_id": {"kind": "expense", "category": "Food"}, "total": 20.0, "count": 2},
            {"_id": {"kind": "expense", "category": "Rent"}, "total": 50.0, "count": 1},
            {"_id": {"kind": "income", "category": "Salary"}, "total": 100.0, "count": 1},
        ]
    
    def test_group_by_day(self):
        """Test $dateToString grouping."""
        rows = run_pipeline(RECORDS, [
            {"$match": {"kind": "expense"}},
            {"$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$date"}},
                "total": {"$sum": "$amount"},
            }},
            {"$sort": {"_id": 1}},
        ])
        assert rows == [
            {"_id": "2024-03-01", "total": 10.0},
            {"_id": "2024-03-05", "total": 50.0},
            {"_id": "2024-04-02", "total": 10.0},
        ]
    
    def test_group_everything_with_accumulators(self):
        """Test a null _id with $avg, $min, $max and $first."""
        rows = run_pipeline(RECORDS, [
            {"$group": {
                "_id": None,
                "avg": {"$avg": "$amount"},
                "low": {"$min": "$amount"},
                "high": {"$max": "$amount"},
                "first": {"$first": "$id"},
            }},
        ])
        assert rows == [{"_id": None, "avg": 42.5, "low": 10.0, "high": 100.0, "first": "a"}]
    
    def test_skip_and_limit(self):
        """Test $skip and $limit stages."""
        rows = run_pipeline(RECORDS, [{"$sort": {"id": -1}}, {"$skip": 1}, {"$limit": 2}])
        assert ids(rows) == ["c", "b"]
    
    def test_unknown_stage_raises(self):
        """Test that unsupported stages fail loudly."""
        with pytest.raises(QueryError):
            run_pipeline(RECORDS, [{"$lookup": {}}])
