# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Factory for creating collections based on configuration."""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from bson import ObjectId

from .collection import Collection
from .config import CollectionConfig

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]


def _build_objectid() -> IdFactory:
    # Rendered as 24-char hex strings so identifiers stay plain values.
    return lambda: str(ObjectId())


def _build_uuid() -> IdFactory:
    return lambda: str(uuid.uuid4())


_ID_DRIVERS: dict[str, Callable[[], IdFactory]] = {
    "objectid": _build_objectid,
    "uuid": _build_uuid,
}


def create_id_factory(id_strategy: str) -> IdFactory:
    """Return a callable producing fresh identifiers for the given strategy.

    Raises:
        ValueError: If id_strategy is not recognized
    """
    builder = _ID_DRIVERS.get(id_strategy)
    if builder is None:
        raise ValueError(
            f"Unknown id_strategy: {id_strategy}. Expected one of {sorted(_ID_DRIVERS)}"
        )
    return builder()


def create_collection(name: str = "default", config: CollectionConfig | None = None) -> Collection:
    """Create a collection.

    Args:
        name: Collection name, used in log messages
        config: Collection settings. If None, reads DOCSTORE_* environment
                variables (defaults to ObjectId identifiers with indexes enabled)

    Returns:
        Collection instance

    Raises:
        ValueError: If the configured id_strategy is unknown
    """
    if config is None:
        config = CollectionConfig.from_env()

    collection = Collection(
        name=name,
        id_factory=create_id_factory(config.id_strategy),
        use_indexes=config.use_indexes,
    )
    logger.debug(
        f"create_collection: created '{name}' (id_strategy={config.id_strategy}, "
        f"use_indexes={config.use_indexes})"
    )
    return collection
