# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Filter specification parsing and evaluation."""

from collections.abc import Mapping
from typing import Any, Callable

from .document import MISSING, compare_values, get_path, values_equal
from .errors import ValidationError

RANGE_OPERATORS = ("$gt", "$gte", "$lt", "$lte")
COMPARISON_OPERATORS = ("$eq", "$ne") + RANGE_OPERATORS
FIELD_OPERATORS = COMPARISON_OPERATORS + ("$in", "$nin", "$exists")
LOGICAL_OPERATORS = ("$and", "$or")


def _equals(value: Any, operand: Any) -> bool:
    # A null literal matches both an explicit null and an absent field.
    if operand is None:
        return value is MISSING or value is None
    return values_equal(value, operand)


def _range(test: Callable[[int], bool]) -> Callable[[Any, Any], bool]:
    def _check(value: Any, operand: Any) -> bool:
        result = compare_values(value, operand)
        return result is not None and test(result)
    return _check


_EVALUATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": _equals,
    "$ne": lambda value, operand: not _equals(value, operand),
    "$gt": _range(lambda r: r > 0),
    "$gte": _range(lambda r: r >= 0),
    "$lt": _range(lambda r: r < 0),
    "$lte": _range(lambda r: r <= 0),
    "$in": lambda value, operand: any(_equals(value, item) for item in operand),
    "$nin": lambda value, operand: not any(_equals(value, item) for item in operand),
    "$exists": lambda value, operand: (value is not MISSING) == operand,
}


def is_operator_mapping(value: Any) -> bool:
    """Return True if value is a non-empty mapping of $-prefixed operators."""
    return (
        isinstance(value, Mapping)
        and len(value) > 0
        and all(isinstance(key, str) and key.startswith("$") for key in value)
    )


class Predicate:
    """A validated filter specification that can be evaluated against records.

    Field clauses are AND-combined. Each clause holds a list of
    (operator, operand) pairs; a bare literal is stored as ("$eq", literal).
    Top-level $and/$or hold nested predicates.

    Example:
        >>> predicate = Predicate({"price": {"$gt": 12}, "in_stock": True})
        >>> predicate({"price": 12.99, "in_stock": True})
        True
    """

    def __init__(self, spec: Mapping[str, Any] | None = None):
        self.spec = spec if spec is not None else {}
        self.field_clauses: list[tuple[str, list[tuple[str, Any]]]] = []
        self.logical_clauses: list[tuple[str, list["Predicate"]]] = []
        errors: list[str] = []
        self._parse(spec, errors)
        if errors:
            raise ValidationError(errors)

    def _parse(self, spec: Any, errors: list[str]) -> None:
        if spec is None:
            return
        if not isinstance(spec, Mapping):
            errors.append(f"Filter must be a mapping, got {type(spec).__name__}")
            return

        for field, condition in spec.items():
            if not isinstance(field, str):
                errors.append(f"Filter field {field!r} is not a string")
                continue

            if field.startswith("$"):
                self._parse_logical(field, condition, errors)
                continue

            if isinstance(condition, Mapping) and any(
                isinstance(key, str) and key.startswith("$") for key in condition
            ):
                if not is_operator_mapping(condition):
                    errors.append(f"Cannot mix operators and fields in condition for '{field}'")
                    continue
                self.field_clauses.append((field, self._parse_operators(field, condition, errors)))
            else:
                self.field_clauses.append((field, [("$eq", condition)]))

    def _parse_operators(
        self, field: str, condition: Mapping[str, Any], errors: list[str]
    ) -> list[tuple[str, Any]]:
        operators = []
        for op, operand in condition.items():
            if op not in FIELD_OPERATORS:
                errors.append(f"Unknown query operator '{op}' for field '{field}'")
                continue
            if op in ("$in", "$nin") and not isinstance(operand, (list, tuple)):
                errors.append(f"{op} for field '{field}' requires a list operand")
                continue
            if op == "$exists" and not isinstance(operand, bool):
                errors.append(f"$exists for field '{field}' requires a boolean operand")
                continue
            operators.append((op, operand))
        return operators

    def _parse_logical(self, op: str, operand: Any, errors: list[str]) -> None:
        if op not in LOGICAL_OPERATORS:
            errors.append(f"Unknown top-level operator '{op}'")
            return
        if not isinstance(operand, (list, tuple)) or not operand:
            errors.append(f"{op} requires a non-empty list of filters")
            return
        branches = []
        for branch in operand:
            try:
                branches.append(Predicate(branch))
            except ValidationError as e:
                errors.extend(e.errors)
        self.logical_clauses.append((op, branches))

    def __call__(self, record: Mapping[str, Any]) -> bool:
        for field, operators in self.field_clauses:
            value = get_path(record, field)
            for op, operand in operators:
                if not _EVALUATORS[op](value, operand):
                    return False

        for op, branches in self.logical_clauses:
            if op == "$and":
                if not all(branch(record) for branch in branches):
                    return False
            elif not any(branch(record) for branch in branches):
                return False

        return True

    def conditions_for(self, field: str) -> list[tuple[str, Any]]:
        """Return the top-level AND-ed conditions on a field (used for index lookups)."""
        conditions: list[tuple[str, Any]] = []
        for clause_field, operators in self.field_clauses:
            if clause_field == field:
                conditions.extend(operators)
        return conditions

    @property
    def fields(self) -> list[str]:
        """Top-level field names constrained by this predicate, in filter order."""
        seen: list[str] = []
        for field, _ in self.field_clauses:
            if field not in seen:
                seen.append(field)
        return seen

    def __repr__(self) -> str:
        return f"Predicate({self.spec!r})"


def compile_filter(spec: Mapping[str, Any] | None) -> Predicate:
    """Validate a filter specification and return an evaluable predicate.

    Raises:
        ValidationError: If the specification uses unknown operators or malformed operands
    """
    if isinstance(spec, Predicate):
        return spec
    return Predicate(spec)


def matches(record: Mapping[str, Any], spec: Mapping[str, Any] | None) -> bool:
    """Evaluate a filter specification against a single record."""
    return compile_filter(spec)(record)
