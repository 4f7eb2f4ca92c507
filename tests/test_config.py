# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for configuration and the collection factory."""

import uuid

import pytest

from docstore import (
    Collection,
    CollectionConfig,
    EnvConfigProvider,
    StaticConfigProvider,
    create_collection,
    create_id_factory,
)


class TestConfigProviders:
    """Tests for the configuration providers."""

    def test_env_provider_reads_mapping(self):
        """Test EnvConfigProvider with an explicit environment."""
        provider = EnvConfigProvider({"DOCSTORE_USE_INDEXES": "no"})

        assert provider.get("DOCSTORE_USE_INDEXES") == "no"
        assert provider.get("MISSING_KEY", "fallback") == "fallback"
        assert provider.get_bool("DOCSTORE_USE_INDEXES", True) is False

    def test_env_provider_defaults_to_os_environ(self, monkeypatch):
        """Test that EnvConfigProvider falls back to os.environ."""
        monkeypatch.setenv("DOCSTORE_ID_STRATEGY", "uuid")

        assert EnvConfigProvider().get("DOCSTORE_ID_STRATEGY") == "uuid"

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("YES", True),
        ("1", True),
        ("off", False),
        ("0", False),
        ("maybe", True),
    ])
    def test_get_bool(self, raw, expected):
        """Test boolean parsing; unknown strings keep the default."""
        provider = StaticConfigProvider({"flag": raw})

        assert provider.get_bool("flag", True) is expected

    def test_static_provider_set(self):
        """Test updating a static provider."""
        provider = StaticConfigProvider()
        provider.set("DOCSTORE_ID_STRATEGY", "uuid")

        assert provider.get("DOCSTORE_ID_STRATEGY") == "uuid"


class TestCollectionConfig:
    """Tests for CollectionConfig."""

    def test_defaults(self):
        """Test the default settings."""
        config = CollectionConfig.from_env({})

        assert config.id_strategy == "objectid"
        assert config.use_indexes is True

    def test_from_env(self, monkeypatch):
        """Test reading DOCSTORE_* variables from the process environment."""
        monkeypatch.setenv("DOCSTORE_ID_STRATEGY", "UUID")
        monkeypatch.setenv("DOCSTORE_USE_INDEXES", "false")

        config = CollectionConfig.from_env()

        assert config == CollectionConfig(id_strategy="uuid", use_indexes=False)

    def test_from_provider(self):
        """Test building config from a static provider."""
        provider = StaticConfigProvider({"DOCSTORE_USE_INDEXES": False})

        config = CollectionConfig.from_provider(provider)

        assert config.use_indexes is False
        assert config.id_strategy == "objectid"


class TestFactory:
    """Tests for create_id_factory and create_collection."""

    def test_objectid_strategy(self):
        """Test that ObjectId identifiers are unique 24-char hex strings."""
        make_id = create_id_factory("objectid")

        ids = {make_id() for _ in range(100)}

        assert len(ids) == 100
        assert all(len(value) == 24 for value in ids)

    def test_uuid_strategy(self):
        """Test that uuid identifiers parse as UUIDs."""
        make_id = create_id_factory("uuid")

        assert uuid.UUID(make_id()).version == 4

    def test_unknown_strategy(self):
        """Test that an unknown strategy raises ValueError."""
        with pytest.raises(ValueError, match="Unknown id_strategy: serial"):
            create_id_factory("serial")

    def test_create_collection_from_config(self):
        """Test creating a collection with explicit settings."""
        collection = create_collection("books", CollectionConfig(id_strategy="uuid", use_indexes=False))

        inserted = collection.insert_one({"title": "Dune"}).inserted_id

        assert isinstance(collection, Collection)
        assert collection.name == "books"
        assert collection.use_indexes is False
        assert uuid.UUID(inserted)

    def test_create_collection_from_env(self, monkeypatch):
        """Test that create_collection reads the environment when no config is given."""
        monkeypatch.setenv("DOCSTORE_USE_INDEXES", "0")
        monkeypatch.delenv("DOCSTORE_ID_STRATEGY", raising=False)

        collection = create_collection()

        assert collection.use_indexes is False
        assert len(collection.insert_one({}).inserted_id) == 24

    def test_create_collection_unknown_strategy(self):
        """Test that a bad configured strategy fails at creation."""
        with pytest.raises(ValueError):
            create_collection(config=CollectionConfig(id_strategy="serial"))

    def test_collection_from_config(self):
        """Test the Collection.from_config classmethod."""
        collection = Collection.from_config(CollectionConfig(), name="orders")

        assert collection.name == "orders"
        assert collection.use_indexes is True
