# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""In-memory document store.

An embeddable, single-node document collection with predicate queries,
field-level update operators, secondary indexes with query-plan reporting,
and an aggregation pipeline.
"""

__version__ = "0.1.0"

from .aggregation import Pipeline, run_pipeline
from .collection import (
    Collection,
    DeleteResult,
    InsertManyResult,
    InsertOneResult,
    UpdateResult,
)
from .config import CollectionConfig, EnvConfigProvider, StaticConfigProvider
from .cursor import Cursor
from .document import MISSING, Document
from .errors import (
    DocumentStoreError,
    DuplicateKeyError,
    IndexNotFoundError,
    InvalidOperationError,
    TypeMismatchError,
    ValidationError,
)
from .factory import create_collection, create_id_factory
from .predicate import Predicate, compile_filter, matches

__all__ = [
    # Version
    "__version__",
    # Collection
    "Collection",
    "Cursor",
    "Document",
    "MISSING",
    "create_collection",
    "create_id_factory",
    # Results
    "InsertOneResult",
    "InsertManyResult",
    "UpdateResult",
    "DeleteResult",
    # Queries and pipelines
    "Predicate",
    "compile_filter",
    "matches",
    "Pipeline",
    "run_pipeline",
    # Configuration
    "CollectionConfig",
    "EnvConfigProvider",
    "StaticConfigProvider",
    # Exceptions
    "DocumentStoreError",
    "ValidationError",
    "TypeMismatchError",
    "DuplicateKeyError",
    "IndexNotFoundError",
    "InvalidOperationError",
]
