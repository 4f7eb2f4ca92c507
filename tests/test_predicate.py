# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for filter evaluation."""

import pytest

from docstore import Predicate, ValidationError, matches

BOOK = {
    "_id": "b1",
    "title": "The Hobbit",
    "genre": "Fantasy",
    "price": 14.99,
    "pages": 310,
    "in_stock": True,
    "subtitle": None,
    "publisher": {"name": "Allen & Unwin", "city": "London"},
}


class TestEquality:
    """Tests for literal equality conditions."""

    def test_literal_equality(self):
        """Test that a bare literal means equality."""
        assert matches(BOOK, {"genre": "Fantasy"})
        assert not matches(BOOK, {"genre": "Fiction"})

    def test_multiple_fields_are_and_combined(self):
        """Test implicit AND across fields."""
        assert matches(BOOK, {"genre": "Fantasy", "in_stock": True})
        assert not matches(BOOK, {"genre": "Fantasy", "in_stock": False})

    def test_empty_filter_matches_everything(self):
        """Test that an empty or missing filter matches."""
        assert matches(BOOK, {})
        assert matches(BOOK, None)

    def test_null_matches_missing_and_null(self):
        """Test that a null literal matches both absent and null fields."""
        assert matches(BOOK, {"subtitle": None})
        assert matches(BOOK, {"isbn": None})

    def test_absent_field_fails_non_null_equality(self):
        """Test that an absent field never equals a concrete literal."""
        assert not matches(BOOK, {"isbn": "978-0"})

    def test_boolean_does_not_equal_number(self):
        """Test that True does not match 1."""
        assert not matches(BOOK, {"in_stock": 1})

    def test_nested_field(self):
        """Test dotted field paths and embedded document equality."""
        assert matches(BOOK, {"publisher.city": "London"})
        assert matches(BOOK, {"publisher": {"city": "London", "name": "Allen & Unwin"}})


class TestComparisonOperators:
    """Tests for $gt/$gte/$lt/$lte/$eq/$ne."""

    @pytest.mark.parametrize(
        "condition,expected",
        [
            ({"$gt": 12}, True),
            ({"$gt": 14.99}, False),
            ({"$gte": 14.99}, True),
            ({"$lt": 15}, True),
            ({"$lte": 14.98}, False),
            ({"$eq": 14.99}, True),
            ({"$ne": 14.99}, False),
        ],
    )
    def test_numeric_operators(self, condition, expected):
        """Test each comparison operator on a numeric field."""
        assert matches(BOOK, {"price": condition}) is expected

    def test_range(self):
        """Test combining operators on one field."""
        assert matches(BOOK, {"pages": {"$gte": 300, "$lte": 500}})
        assert not matches(BOOK, {"pages": {"$gte": 400, "$lte": 500}})

    def test_string_comparison(self):
        """Test that strings compare lexicographically."""
        assert matches(BOOK, {"title": {"$gt": "A"}})

    def test_incompatible_kind_does_not_match(self):
        """Test that comparing a string field to a number is no match, not an error."""
        assert not matches(BOOK, {"title": {"$gt": 5}})
        assert not matches(BOOK, {"title": {"$lt": 5}})

    def test_absent_field_fails_range_operators(self):
        """Test that an absent field satisfies none of the range operators."""
        for op in ("$gt", "$gte", "$lt", "$lte"):
            assert not matches(BOOK, {"isbn": {op: 0}})

    def test_ne_on_absent_field(self):
        """Test that $ne matches absent fields unless comparing to null."""
        assert matches(BOOK, {"isbn": {"$ne": "x"}})
        assert not matches(BOOK, {"isbn": {"$ne": None}})


class TestSetAndExistenceOperators:
    """Tests for $in/$nin/$exists."""

    def test_in_and_nin(self):
        """Test list membership operators."""
        assert matches(BOOK, {"genre": {"$in": ["Fiction", "Fantasy"]}})
        assert not matches(BOOK, {"genre": {"$nin": ["Fiction", "Fantasy"]}})

    def test_exists(self):
        """Test field presence, where an explicit null counts as present."""
        assert matches(BOOK, {"subtitle": {"$exists": True}})
        assert matches(BOOK, {"isbn": {"$exists": False}})
        assert not matches(BOOK, {"price": {"$exists": False}})


class TestLogicalOperators:
    """Tests for $and/$or."""

    def test_or(self):
        """Test that $or matches when any branch does."""
        assert matches(BOOK, {"$or": [{"genre": "Fiction"}, {"price": {"$gt": 14}}]})
        assert not matches(BOOK, {"$or": [{"genre": "Fiction"}, {"price": {"$gt": 20}}]})

    def test_and(self):
        """Test that $and requires every branch."""
        assert matches(BOOK, {"$and": [{"genre": "Fantasy"}, {"pages": {"$lt": 400}}]})
        assert not matches(BOOK, {"$and": [{"genre": "Fantasy"}, {"pages": {"$gt": 400}}]})


class TestValidation:
    """Tests for malformed filter specifications."""

    def test_unknown_operator(self):
        """Test that unknown operators are rejected up front."""
        with pytest.raises(ValidationError, match="Unknown query operator '\\$regex'"):
            Predicate({"title": {"$regex": "^The"}})

    def test_unknown_top_level_operator(self):
        """Test that unknown logical operators are rejected."""
        with pytest.raises(ValidationError, match="Unknown top-level operator"):
            Predicate({"$nor": [{"a": 1}]})

    def test_in_requires_list(self):
        """Test operand arity checks for $in."""
        with pytest.raises(ValidationError, match="requires a list"):
            Predicate({"genre": {"$in": "Fantasy"}})

    def test_exists_requires_bool(self):
        """Test that $exists takes a boolean."""
        with pytest.raises(ValidationError, match="boolean"):
            Predicate({"isbn": {"$exists": 1}})

    def test_mixed_operator_and_field_keys(self):
        """Test that a condition cannot mix operators and plain keys."""
        with pytest.raises(ValidationError, match="Cannot mix"):
            Predicate({"price": {"$gt": 1, "currency": "USD"}})

    def test_filter_must_be_mapping(self):
        """Test that a non-mapping filter is rejected."""
        with pytest.raises(ValidationError, match="must be a mapping"):
            Predicate(["genre"])

    def test_errors_are_collected(self):
        """Test that every problem is reported together."""
        with pytest.raises(ValidationError) as exc_info:
            Predicate({"a": {"$foo": 1}, "b": {"$bar": 2}})

        assert len(exc_info.value.errors) == 2

    def test_validation_error_is_value_error(self):
        """Test that ValidationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            Predicate({"a": {"$foo": 1}})


class TestPredicateIntrospection:
    """Tests for the planner-facing helpers."""

    def test_fields_in_filter_order(self):
        """Test that constrained fields are listed in filter order."""
        predicate = Predicate({"genre": "Fiction", "price": {"$lt": 15}})

        assert predicate.fields == ["genre", "price"]

    def test_conditions_for(self):
        """Test retrieving the conditions on one field."""
        predicate = Predicate({"genre": "Fiction", "price": {"$gte": 1, "$lt": 15}})

        assert predicate.conditions_for("price") == [("$gte", 1), ("$lt", 15)]
        assert predicate.conditions_for("genre") == [("$eq", "Fiction")]
        assert predicate.conditions_for("pages") == []
