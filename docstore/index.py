# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Secondary indexes and the query planner that chooses between them."""

import bisect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable

from .document import ID_FIELD, Document, ordering_key, value_kind
from .errors import IndexNotFoundError, ValidationError
from .predicate import RANGE_OPERATORS, Predicate

logger = logging.getLogger(__name__)

ID_INDEX_NAME = "_id_"

IndexKeys = tuple[tuple[str, int], ...]

_SCALAR_KINDS = ("null", "number", "string", "bool")


def normalize_key_spec(field_spec: Any, kind: str = "Index") -> IndexKeys:
    """Turn a field specification into an ordered tuple of (field, direction).

    Accepts a single field name, a mapping of field to direction, or a list
    of field names and/or (field, direction) pairs.

    Raises:
        ValidationError: If the specification is empty or malformed
    """
    if isinstance(field_spec, str):
        pairs: list[Any] = [(field_spec, 1)]
    elif isinstance(field_spec, Mapping):
        pairs = list(field_spec.items())
    elif isinstance(field_spec, (list, tuple)):
        pairs = [(item, 1) if isinstance(item, str) else item for item in field_spec]
    else:
        raise ValidationError(f"{kind} specification must be a field name, mapping or list, got {type(field_spec).__name__}")

    if not pairs:
        raise ValidationError(f"{kind} specification must name at least one field")

    keys = []
    seen = set()
    for pair in pairs:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValidationError(f"{kind} key {pair!r} must be a (field, direction) pair")
        name, direction = pair
        if not isinstance(name, str) or not name or name.startswith("$"):
            raise ValidationError(f"Invalid {kind.lower()} field name {name!r}")
        if isinstance(direction, bool) or direction not in (1, -1):
            raise ValidationError(f"{kind} direction for '{name}' must be 1 or -1, got {direction!r}")
        if name in seen:
            raise ValidationError(f"Field '{name}' appears more than once in {kind.lower()} specification")
        seen.add(name)
        keys.append((name, int(direction)))
    return tuple(keys)


def index_name(keys: IndexKeys) -> str:
    """Derive the conventional index name, e.g. genre_1_price_1."""
    return "_".join(f"{name}_{direction}" for name, direction in keys)


def _paths_overlap(left: str, right: str) -> bool:
    return left == right or left.startswith(right + ".") or right.startswith(left + ".")


class Index:
    """Ordered mapping from key tuples to the identifiers sharing them.

    Keys are kept in ascending order of the value ordering; the declared
    directions only matter to the planner, which may walk the index backward
    to satisfy a descending sort.
    """

    def __init__(self, keys: IndexKeys, name: str | None = None):
        self.keys = keys
        self.name = name or index_name(keys)
        self.fields = [name for name, _ in keys]
        self._entries: dict[tuple, set] = {}
        self._sorted_keys: list[tuple] = []
        self._doc_keys: dict[Any, tuple] = {}

    def key_for(self, doc: Document) -> tuple:
        return tuple(ordering_key(doc.get(name)) for name in self.fields)

    def add(self, doc: Document) -> None:
        key = self.key_for(doc)
        ids = self._entries.get(key)
        if ids is None:
            ids = self._entries[key] = set()
            bisect.insort(self._sorted_keys, key)
        ids.add(doc.doc_id)
        self._doc_keys[doc.doc_id] = key

    def remove(self, doc_id: Any) -> None:
        key = self._doc_keys.pop(doc_id, None)
        if key is None:
            return
        ids = self._entries[key]
        ids.discard(doc_id)
        if not ids:
            del self._entries[key]
            position = bisect.bisect_left(self._sorted_keys, key)
            del self._sorted_keys[position]

    def update(self, doc: Document) -> None:
        """Re-key a document whose indexed fields may have changed."""
        if self._doc_keys.get(doc.doc_id) == self.key_for(doc):
            return
        self.remove(doc.doc_id)
        self.add(doc)

    def covers(self, changed_fields: Iterable[str]) -> bool:
        """Return True if any changed field path touches an indexed field."""
        return any(
            _paths_overlap(indexed, changed)
            for indexed in self.fields
            for changed in changed_fields
        )

    def clear(self) -> None:
        self._entries.clear()
        self._sorted_keys.clear()
        self._doc_keys.clear()

    def ids_for(self, *values: Any) -> set:
        """Identifiers whose leading key components equal the given values."""
        prefix = tuple(ordering_key(value) for value in values)
        start = bisect.bisect_left(self._sorted_keys, prefix)
        found: set = set()
        for key in self._sorted_keys[start:]:
            if key[:len(prefix)] != prefix:
                break
            found |= self._entries[key]
        return found

    def lookup(self, predicate: Predicate) -> set | None:
        """Candidate identifiers for the filter's conditions on the leading field.

        Only equality, $in and range conditions narrow the candidates; other
        operators are left to the full predicate. Returns None when nothing
        on the leading field can use the index.
        """
        candidates: set | None = None
        for op, operand in predicate.conditions_for(self.fields[0]):
            if op == "$eq":
                if value_kind(operand) not in _SCALAR_KINDS:
                    continue
                found = self.ids_for(operand)
            elif op == "$in":
                if any(value_kind(item) not in _SCALAR_KINDS for item in operand):
                    continue
                found = set()
                for item in operand:
                    found |= self.ids_for(item)
            elif op in RANGE_OPERATORS:
                if value_kind(operand) not in ("number", "string"):
                    # Ranges over other kinds never match anything.
                    found = set()
                else:
                    found = self._range_ids(op, operand)
            else:
                continue
            candidates = found if candidates is None else candidates & found
        return candidates

    def _range_ids(self, op: str, operand: Any) -> set:
        bound = ordering_key(operand)
        rank = bound[0]
        if op in ("$gt", "$gte"):
            start = bisect.bisect_left(self._sorted_keys, (bound,))
        else:
            start = bisect.bisect_left(self._sorted_keys, ((rank,),))

        found: set = set()
        for key in self._sorted_keys[start:]:
            leading = key[0]
            if leading[0] != rank:
                break
            if op == "$gt" and leading == bound:
                continue
            if op == "$lt" and leading >= bound:
                break
            if op == "$lte" and leading > bound:
                break
            found |= self._entries[key]
        return found

    @property
    def key_pattern(self) -> dict[str, int]:
        return dict(self.keys)

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "key": self.key_pattern}

    def __len__(self) -> int:
        return len(self._doc_keys)

    def __contains__(self, doc_id: Any) -> bool:
        return doc_id in self._doc_keys

    def __repr__(self) -> str:
        return f"Index({self.name!r}, entries={len(self)})"


@dataclass
class QueryPlan:
    """Planner decision for one filter/sort pair.

    Attributes:
        index: Winning index, or None for a collection scan
        rejected: Candidate indexes that lost
        sort_direction: 1 or -1 if the winning index yields the sort order
            when walked forward or backward, None if a sort pass is needed
    """
    index: Index | None = None
    rejected: list[Index] = field(default_factory=list)
    sort_direction: int | None = None


class IndexManager:
    """Owns every index of one collection and keeps them in step with writes."""

    def __init__(self):
        self._indexes: dict[str, Index] = {}
        self._indexes[ID_INDEX_NAME] = Index(((ID_FIELD, 1),), name=ID_INDEX_NAME)

    def find_by_keys(self, keys: IndexKeys) -> Index | None:
        for index in self._indexes.values():
            if index.keys == keys:
                return index
        return None

    def create_index(self, field_spec: Any, documents: Iterable[Document]) -> tuple[Index, bool]:
        """Register an index and back-fill it from the given documents.

        Returns:
            Tuple of (index, created); created is False when an index on the
            identical field list already existed and was returned untouched.

        Raises:
            ValidationError: If the field specification is malformed
        """
        keys = normalize_key_spec(field_spec)
        existing = self.find_by_keys(keys)
        if existing is not None:
            logger.debug(f"IndexManager: index {existing.name} already exists")
            return existing, False

        index = Index(keys)
        for doc in documents:
            index.add(doc)
        self._indexes[index.name] = index
        logger.info(f"IndexManager: created index {index.name} over {len(index)} documents")
        return index, True

    def drop_index(self, name_or_spec: Any) -> str:
        """Remove a secondary index by name or field specification.

        Raises:
            ValidationError: If asked to drop the _id_ index
            IndexNotFoundError: If no such index exists
        """
        if isinstance(name_or_spec, str) and name_or_spec in self._indexes:
            index = self._indexes[name_or_spec]
        else:
            try:
                index = self.find_by_keys(normalize_key_spec(name_or_spec))
            except ValidationError:
                index = None
        if index is None:
            raise IndexNotFoundError(f"Index not found: {name_or_spec!r}")
        if index.name == ID_INDEX_NAME:
            raise ValidationError("Cannot drop the _id_ index")
        del self._indexes[index.name]
        logger.info(f"IndexManager: dropped index {index.name}")
        return index.name

    def drop_secondary(self) -> None:
        """Remove every index except _id_ and empty the _id_ index."""
        id_index = self._indexes[ID_INDEX_NAME]
        id_index.clear()
        self._indexes = {ID_INDEX_NAME: id_index}

    def get(self, name: str) -> Index | None:
        return self._indexes.get(name)

    def list_indexes(self) -> list[dict[str, Any]]:
        return [index.describe() for index in self._indexes.values()]

    def __iter__(self):
        return iter(list(self._indexes.values()))

    def __len__(self) -> int:
        return len(self._indexes)

    def on_insert(self, doc: Document) -> None:
        for index in self._indexes.values():
            index.add(doc)

    def on_update(self, doc: Document, changed_fields: Iterable[str]) -> None:
        changed = list(changed_fields)
        if not changed:
            return
        for index in self._indexes.values():
            if index.covers(changed):
                index.update(doc)

    def on_delete(self, doc_id: Any) -> None:
        for index in self._indexes.values():
            index.remove(doc_id)

    def lookup(self, field_spec: Any, predicate: Predicate) -> set | None:
        """Candidate identifiers from the index on field_spec, or None if unusable.

        Raises:
            IndexNotFoundError: If no index exists on the given fields
        """
        if isinstance(field_spec, str) and field_spec in self._indexes:
            index = self._indexes[field_spec]
        else:
            index = self.find_by_keys(normalize_key_spec(field_spec))
        if index is None:
            raise IndexNotFoundError(f"No index on {field_spec!r}")
        return index.lookup(predicate)

    def plan(self, predicate: Predicate, sort_keys: IndexKeys = ()) -> QueryPlan:
        """Pick the index whose leading keys match the most filter fields.

        Ties go to the index that also yields the requested sort order, then
        to the earliest created one. Indexes matching no filter field are not
        candidates.
        """
        filter_fields = set(predicate.fields)
        scored = []
        for index in self._indexes.values():
            score = _prefix_score(index, filter_fields)
            if score:
                scored.append((index, score, _sort_direction(index, score, sort_keys)))

        if not scored:
            return QueryPlan()

        best = scored[0]
        for candidate in scored[1:]:
            if (candidate[1], candidate[2] is not None) > (best[1], best[2] is not None):
                best = candidate

        rejected = [index for index, _, _ in scored if index is not best[0]]
        return QueryPlan(index=best[0], rejected=rejected, sort_direction=best[2])

    def explain(self, predicate: Predicate, sort_keys: IndexKeys, total_docs: int) -> dict[str, Any]:
        """Describe the plan for a query without running it."""
        plan = self.plan(predicate, sort_keys)
        if plan.index is None:
            return collection_scan_explain(predicate, sort_keys, total_docs)

        candidates = plan.index.lookup(predicate)
        filter_fields = set(predicate.fields)
        rejected = []
        for index in plan.rejected:
            direction = _sort_direction(index, _prefix_score(index, filter_fields), sort_keys)
            rejected.append(_index_plan(index, predicate, sort_keys, direction))
        return {
            "winningPlan": _index_plan(plan.index, predicate, sort_keys, plan.sort_direction),
            "rejectedPlans": rejected,
            "estimatedDocsExamined": total_docs if candidates is None else len(candidates),
        }


def collection_scan_explain(predicate: Predicate, sort_keys: IndexKeys, total_docs: int) -> dict[str, Any]:
    """Explain output for a query that reads every document."""
    return {
        "winningPlan": _with_sort({"stage": "COLLSCAN", "filter": predicate.spec, "direction": "forward"}, sort_keys),
        "rejectedPlans": [],
        "estimatedDocsExamined": total_docs,
    }


def _prefix_score(index: Index, filter_fields: set) -> int:
    score = 0
    for name in index.fields:
        if name not in filter_fields:
            break
        score += 1
    return score


def _sort_direction(index: Index, matched: int, sort_keys: IndexKeys) -> int | None:
    """Return 1/-1 if walking the index forward/backward yields sort_keys."""
    if not sort_keys:
        return None
    for offset in sorted({0, matched}):
        segment = index.keys[offset:offset + len(sort_keys)]
        if len(segment) != len(sort_keys):
            continue
        if [name for name, _ in segment] != [name for name, _ in sort_keys]:
            continue
        if all(a == b for (_, a), (_, b) in zip(segment, sort_keys)):
            return 1
        if all(a == -b for (_, a), (_, b) in zip(segment, sort_keys)):
            return -1
    return None


def _with_sort(stage: dict[str, Any], sort_keys: IndexKeys) -> dict[str, Any]:
    if not sort_keys:
        return stage
    return {"stage": "SORT", "sortPattern": dict(sort_keys), "inputStage": stage}


def _index_plan(
    index: Index, predicate: Predicate, sort_keys: IndexKeys, sort_direction: int | None
) -> dict[str, Any]:
    ixscan = {
        "stage": "IXSCAN",
        "indexName": index.name,
        "keyPattern": index.key_pattern,
        "direction": "backward" if sort_direction == -1 else "forward",
    }
    fetch = {"stage": "FETCH", "filter": predicate.spec, "inputStage": ixscan}
    if sort_direction is not None:
        return fetch
    return _with_sort(fetch, sort_keys)
