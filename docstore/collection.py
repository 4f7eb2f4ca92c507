# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Collection: owns documents and indexes and exposes the store operations."""

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .aggregation import Pipeline, project_record
from .config import CollectionConfig
from .cursor import Cursor
from .document import ID_FIELD, MISSING, Document, sort_records, validate_document, value_kind
from .errors import DuplicateKeyError, ValidationError
from .index import IndexKeys, IndexManager, collection_scan_explain, normalize_key_spec
from .locking import ReadWriteLock
from .predicate import Predicate, compile_filter
from .update import compile_update, update_documents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertOneResult:
    inserted_id: Any


@dataclass(frozen=True)
class InsertManyResult:
    inserted_ids: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int


class Collection:
    """In-memory document collection with secondary indexes.

    Writes (inserts, updates, deletes, index creation and drops) hold the
    collection's write lock for their whole duration; reads share the read
    lock. Every specification is validated before the lock is taken, so a
    malformed request never leaves a partial effect.
    """

    @classmethod
    def from_config(cls, config: CollectionConfig, name: str = "default") -> "Collection":
        """Create a Collection from configuration.

        Raises:
            ValueError: If the configured id_strategy is unknown
        """
        from .factory import create_id_factory

        return cls(
            name=name,
            id_factory=create_id_factory(config.id_strategy),
            use_indexes=config.use_indexes,
        )

    def __init__(
        self,
        name: str = "default",
        id_factory: Callable[[], Any] | None = None,
        use_indexes: bool = True,
    ):
        """Initialize an empty collection.

        Args:
            name: Collection name, used in log messages
            id_factory: Callable returning fresh identifiers (ObjectId hex strings by default)
            use_indexes: If False, queries always scan the whole collection
        """
        if id_factory is None:
            from .factory import create_id_factory

            id_factory = create_id_factory("objectid")

        self.name = name
        self.use_indexes = use_indexes
        self._id_factory = id_factory
        self._documents: dict[Any, Document] = {}
        self._indexes = IndexManager()
        self._lock = ReadWriteLock()
        self._sequence = itertools.count()

    # =========================
    # Writes
    # =========================
    def _prepare(self, data: Any, pending: set) -> tuple[Any, Mapping[str, Any]]:
        """Validate a document and choose its identifier without storing it."""
        errors = validate_document(data)
        if errors:
            raise ValidationError(errors)

        doc_id = data.get(ID_FIELD, MISSING)
        if doc_id is MISSING:
            doc_id = self._id_factory()
            while doc_id in self._documents or doc_id in pending:
                doc_id = self._id_factory()
        elif value_kind(doc_id) in ("object", "array"):
            raise ValidationError(f"_id must be a scalar value, got {type(doc_id).__name__}")
        elif isinstance(doc_id, bool):
            # True and 1 hash alike, so they cannot share the identifier space.
            raise ValidationError("_id must not be a boolean")
        elif doc_id in self._documents or doc_id in pending:
            raise DuplicateKeyError(f"Duplicate _id {doc_id!r} in collection {self.name}")
        pending.add(doc_id)
        return doc_id, data

    def _store(self, doc_id: Any, data: Mapping[str, Any]) -> Document:
        doc = Document.create(data, doc_id, next(self._sequence))
        self._documents[doc_id] = doc
        self._indexes.on_insert(doc)
        return doc

    def insert_one(self, document: Mapping[str, Any]) -> InsertOneResult:
        """Insert a document, assigning an _id unless one is supplied.

        Args:
            document: Document data as dictionary (copied; never stored by reference)

        Returns:
            InsertOneResult with the document's identifier

        Raises:
            ValidationError: If the document is malformed
            DuplicateKeyError: If the supplied _id already exists
        """
        with self._lock.write_locked():
            doc_id, data = self._prepare(document, set())
            self._store(doc_id, data)
        logger.debug(f"Collection {self.name}: inserted document {doc_id}")
        return InsertOneResult(inserted_id=doc_id)

    def insert_many(self, documents: Iterable[Mapping[str, Any]]) -> InsertManyResult:
        """Insert several documents as one write.

        Every document is validated and assigned an identifier before any is
        stored, so a bad document or duplicate _id leaves the collection
        unchanged.
        """
        documents = list(documents)
        with self._lock.write_locked():
            pending: set = set()
            prepared = [self._prepare(document, pending) for document in documents]
            for doc_id, data in prepared:
                self._store(doc_id, data)
        inserted_ids = [doc_id for doc_id, _ in prepared]
        logger.debug(f"Collection {self.name}: inserted {len(inserted_ids)} documents")
        return InsertManyResult(inserted_ids=inserted_ids)

    def update_many(self, filter: Mapping[str, Any], update: Mapping[str, Any]) -> UpdateResult:
        """Apply update operators to every matching document.

        Returns:
            UpdateResult with matched and modified counts. Documents skipped
            because a field had the wrong kind count as matched only.

        Raises:
            ValidationError: If the filter or update specification is malformed
        """
        predicate = compile_filter(filter)
        operations = compile_update(update)
        with self._lock.write_locked():
            documents, _ = self._select(predicate)
            matched, modified = update_documents(documents, operations, self._indexes)
        logger.debug(
            f"Collection {self.name}: update_many matched {matched}, modified {modified}"
        )
        return UpdateResult(matched_count=matched, modified_count=modified)

    def delete_many(self, filter: Mapping[str, Any]) -> DeleteResult:
        """Remove every matching document from the collection and all indexes."""
        predicate = compile_filter(filter)
        with self._lock.write_locked():
            documents, _ = self._select(predicate)
            for doc in documents:
                del self._documents[doc.doc_id]
                self._indexes.on_delete(doc.doc_id)
        logger.debug(f"Collection {self.name}: deleted {len(documents)} documents")
        return DeleteResult(deleted_count=len(documents))

    def create_index(self, field_spec: Any) -> str:
        """Create an index and back-fill it; returns the index name.

        Creating an index on an already-indexed field list returns the
        existing index's name without rebuilding it.
        """
        with self._lock.write_locked():
            index, _ = self._indexes.create_index(field_spec, self._documents.values())
        return index.name

    def drop_index(self, name_or_spec: Any) -> None:
        """Drop a secondary index by name or field specification.

        Raises:
            IndexNotFoundError: If no such index exists
            ValidationError: If asked to drop the _id_ index
        """
        with self._lock.write_locked():
            self._indexes.drop_index(name_or_spec)

    def drop(self) -> None:
        """Remove every document and every secondary index."""
        with self._lock.write_locked():
            count = len(self._documents)
            self._documents.clear()
            self._indexes.drop_secondary()
        logger.info(f"Collection {self.name}: dropped ({count} documents removed)")

    # =========================
    # Reads
    # =========================
    def _select(self, predicate: Predicate) -> tuple[list[Document], int]:
        """Return matching stored documents in insertion order and how many were examined.

        Callers must hold the lock.
        """
        candidates = None
        if self.use_indexes:
            plan = self._indexes.plan(predicate)
            if plan.index is not None:
                candidates = plan.index.lookup(predicate)

        if candidates is None:
            pool: Iterable[Document] = self._documents.values()
            examined = len(self._documents)
        else:
            pool = sorted((self._documents[doc_id] for doc_id in candidates), key=lambda doc: doc.seq)
            examined = len(candidates)

        return [doc for doc in pool if predicate(doc.fields)], examined

    def _query(
        self,
        predicate: Predicate,
        sort_keys: IndexKeys = (),
        skip: int = 0,
        limit: int = 0,
        projection: Any = None,
    ) -> tuple[list[dict], int]:
        with self._lock.read_locked():
            documents, examined = self._select(predicate)
            records = [doc.to_dict() for doc in documents]

        if sort_keys:
            records = sort_records(records, sort_keys)
        if skip:
            records = records[skip:]
        if limit:
            records = records[:limit]
        if projection is not None:
            records = [project_record(record, projection) for record in records]
        logger.debug(
            f"Collection {self.name}: query {predicate.spec} examined {examined}, "
            f"returned {len(records)}"
        )
        return records, examined

    def find(self, filter: Mapping[str, Any] | None = None, projection: Mapping[str, Any] | None = None) -> Cursor:
        """Return a lazy cursor over documents matching filter.

        Raises:
            ValidationError: If the filter or projection is malformed
        """
        cursor = Cursor(self, compile_filter(filter))
        if projection is not None:
            cursor.project(projection)
        return cursor

    def find_one(
        self, filter: Mapping[str, Any] | None = None, projection: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        results = self.find(filter, projection).limit(1).to_list()
        return results[0] if results else None

    def count_documents(self, filter: Mapping[str, Any] | None = None) -> int:
        predicate = compile_filter(filter)
        with self._lock.read_locked():
            documents, _ = self._select(predicate)
        return len(documents)

    def aggregate(self, pipeline: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Run an aggregation pipeline over the collection.

        A leading $match is answered through the query path, so it can use
        an index; the remaining stages run on copies outside the lock.

        Raises:
            ValidationError: If any stage is unsupported or malformed
        """
        compiled = Pipeline(pipeline)
        leading = compiled.leading_match
        with self._lock.read_locked():
            if leading is not None:
                documents, _ = self._select(leading)
            else:
                documents = list(self._documents.values())
            records = [doc.to_dict() for doc in documents]

        results = compiled.run(records, skip_leading_match=leading is not None)
        logger.debug(f"Collection {self.name}: aggregate returned {len(results)} records")
        return results

    def list_indexes(self) -> list[dict[str, Any]]:
        """Describe every index as {"name", "key"} in creation order, _id_ first."""
        with self._lock.read_locked():
            return self._indexes.list_indexes()

    def explain(self, filter: Mapping[str, Any] | None = None, sort: Any = None) -> dict[str, Any]:
        """Report the plan a query would use without running it.

        Returns:
            Mapping with winningPlan, rejectedPlans and estimatedDocsExamined
        """
        predicate = compile_filter(filter)
        sort_keys = normalize_key_spec(sort, kind="Sort") if sort else ()
        with self._lock.read_locked():
            if not self.use_indexes:
                return collection_scan_explain(predicate, sort_keys, len(self._documents))
            return self._indexes.explain(predicate, sort_keys, len(self._documents))

    def index_lookup(self, field_spec: Any, filter: Mapping[str, Any]) -> set | None:
        """Candidate identifiers an index yields for a filter (None if it cannot narrow)."""
        predicate = compile_filter(filter)
        with self._lock.read_locked():
            return self._indexes.lookup(field_spec, predicate)

    def __len__(self) -> int:
        return len(self._documents)

    def __repr__(self) -> str:
        return f"Collection({self.name!r}, documents={len(self._documents)}, indexes={len(self._indexes)})"
