# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Lazy query cursor returned by Collection.find."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Iterator, Mapping

from .aggregation import compile_projection
from .errors import InvalidOperationError, ValidationError
from .index import IndexKeys, normalize_key_spec
from .predicate import Predicate

if TYPE_CHECKING:
    from .collection import Collection


def _check_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
    return value


class Cursor:
    """Query description that runs only when iterated.

    sort/project/skip/limit return the cursor so calls can be chained. The
    filter is evaluated, and an index consulted, on first iteration.

    Example:
        >>> cursor = books.find({"price": {"$gt": 12}}).sort("published_year")
        >>> cursor.to_list()
    """

    def __init__(self, collection: "Collection", predicate: Predicate):
        self._collection = collection
        self._predicate = predicate
        self._sort_keys: IndexKeys = ()
        self._projection: Any = None
        self._skip = 0
        self._limit = 0
        self._results: list[dict] | None = None

    def _check_not_started(self) -> None:
        if self._results is not None:
            raise InvalidOperationError("Cannot modify a cursor after iteration has started")

    def sort(self, key_or_list: Any, direction: int | None = None) -> "Cursor":
        """Sort by a field name (with optional direction), a mapping, or a list of pairs."""
        self._check_not_started()
        if isinstance(key_or_list, str) and direction is not None:
            key_or_list = [(key_or_list, direction)]
        self._sort_keys = normalize_key_spec(key_or_list, kind="Sort")
        return self

    def project(self, projection: Mapping[str, Any]) -> "Cursor":
        self._check_not_started()
        self._projection = compile_projection(projection)
        return self

    def skip(self, count: int) -> "Cursor":
        self._check_not_started()
        self._skip = _check_count(count, "skip")
        return self

    def limit(self, count: int) -> "Cursor":
        """Cap the number of results; 0 means no limit."""
        self._check_not_started()
        self._limit = _check_count(count, "limit")
        return self

    @property
    def filter(self) -> Mapping[str, Any]:
        return self._predicate.spec

    @property
    def sort_keys(self) -> IndexKeys:
        return self._sort_keys

    def _run(self) -> tuple[list[dict], int]:
        return self._collection._query(
            self._predicate,
            sort_keys=self._sort_keys,
            skip=self._skip,
            limit=self._limit,
            projection=self._projection,
        )

    def __iter__(self) -> Iterator[dict]:
        if self._results is None:
            self._results, _ = self._run()
        return iter(self._results)

    def to_list(self) -> list[dict]:
        """Materialize every result."""
        return list(self)

    def explain(self) -> dict[str, Any]:
        """Report the query plan plus statistics from a fresh execution."""
        report = self._collection.explain(self._predicate, self._sort_keys)
        started = time.perf_counter()
        results, examined = self._run()
        elapsed_ms = (time.perf_counter() - started) * 1000
        report["executionStats"] = {
            "nReturned": len(results),
            "totalDocsExamined": examined,
            "executionTimeMillis": int(round(elapsed_ms)),
        }
        return report

    def __repr__(self) -> str:
        return f"Cursor(collection={self._collection.name!r}, filter={self._predicate.spec!r})"
