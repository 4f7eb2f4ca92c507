# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Document model: value kinds, field access and ordering."""

import copy
from collections.abc import Mapping
from typing import Any, Iterable

from .errors import ValidationError

ID_FIELD = "_id"


class _Missing:
    """Marker for a field that is absent from a document."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()

# Kind ranks define the cross-kind sort order used by indexes and $sort.
_KIND_RANK = {
    "null": 0,
    "number": 1,
    "string": 2,
    "object": 3,
    "array": 4,
    "bool": 5,
}


def is_number(value: Any) -> bool:
    """Return True for int/float values; bool is not a number here."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def value_kind(value: Any) -> str:
    """Classify a value into one of the document value kinds.

    Absent fields and explicit None share the "null" kind for ordering
    purposes; callers that need to tell them apart compare against MISSING.
    Values of unknown Python types are ordered as strings of their repr.
    """
    if value is MISSING or value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return "string"


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that keeps booleans and numbers apart."""
    left_kind = value_kind(left)
    if left_kind != value_kind(right):
        return False
    if left_kind == "null":
        return (left is MISSING) == (right is MISSING)
    if left_kind == "object":
        if set(left.keys()) != set(right.keys()):
            return False
        return all(values_equal(left[key], right[key]) for key in left)
    if left_kind == "array":
        if len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


def compare_values(left: Any, right: Any) -> int | None:
    """Compare two values of a comparable kind.

    Returns:
        -1, 0 or 1, or None when the kinds are not comparable
        (only number/number and string/string are).
    """
    if is_number(left) and is_number(right):
        pass
    elif isinstance(left, str) and isinstance(right, str):
        pass
    else:
        return None
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def ordering_key(value: Any) -> tuple:
    """Build a hashable key giving a total order over all value kinds.

    Missing and null sort first, then numbers, strings, mappings, lists and
    booleans. Equal keys hash equal, so 1 and 1.0 collapse while True and 1
    stay distinct.
    """
    kind = value_kind(value)
    rank = _KIND_RANK[kind]
    if kind == "null":
        return (rank, 0)
    if kind == "object":
        return (rank, tuple((key, ordering_key(item)) for key, item in value.items()))
    if kind == "array":
        return (rank, tuple(ordering_key(item) for item in value))
    if kind == "string" and not isinstance(value, str):
        return (rank, repr(value))
    return (rank, value)


def get_path(doc: Mapping, path: str) -> Any:
    """Read a dotted field path, returning MISSING when any segment is absent."""
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


def set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def unset_path(doc: dict, path: str) -> bool:
    """Remove a dotted field path; returns True if something was removed."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return False
    if parts[-1] in current:
        del current[parts[-1]]
        return True
    return False


def validate_document(data: Any) -> list[str]:
    """Collect problems that make a mapping unusable as a document."""
    if not isinstance(data, Mapping):
        return [f"Document must be a mapping, got {type(data).__name__}"]

    errors: list[str] = []

    def _walk(mapping: Mapping, prefix: str) -> None:
        for key, item in mapping.items():
            if not isinstance(key, str):
                errors.append(f"Field name {key!r} at '{prefix or '<root>'}' is not a string")
                continue
            if key.startswith("$"):
                errors.append(f"Field name '{prefix}{key}' must not start with '$'")
            if isinstance(item, Mapping):
                _walk(item, f"{prefix}{key}.")

    _walk(data, "")
    return errors


def sort_records(records: list, sort_keys: Iterable[tuple[str, int]]) -> list:
    """Stable multi-key sort of mapping records.

    Sorting from the last key to the first with Python's stable sort breaks
    ties by the following keys and finally by input order.
    """
    result = list(records)
    for field, direction in reversed(list(sort_keys)):
        result.sort(key=lambda record: ordering_key(get_path(record, field)), reverse=direction < 0)
    return result


class Document:
    """A stored document: its identifier, insertion sequence and fields."""

    __slots__ = ("doc_id", "seq", "fields")

    def __init__(self, doc_id: Any, seq: int, fields: dict[str, Any]):
        self.doc_id = doc_id
        self.seq = seq
        self.fields = fields

    @classmethod
    def create(cls, data: Mapping[str, Any], doc_id: Any, seq: int) -> "Document":
        """Build a document from caller data, placing the identifier first.

        The caller's mapping is deep-copied so later external mutation does
        not reach stored data.

        Raises:
            ValidationError: If the data is not a valid document
        """
        errors = validate_document(data)
        if errors:
            raise ValidationError(errors)
        fields: dict[str, Any] = {ID_FIELD: doc_id}
        for key, value in data.items():
            if key != ID_FIELD:
                fields[key] = copy.deepcopy(value)
        return cls(doc_id, seq, fields)

    def get(self, path: str) -> Any:
        return get_path(self.fields, path)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.fields)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Document):
            return values_equal(self.fields, other.fields)
        if isinstance(other, Mapping):
            return values_equal(self.fields, other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Document({self.fields!r})"
