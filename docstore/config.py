# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Configuration providers and the collection configuration model."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

ENV_ID_STRATEGY = "DOCSTORE_ID_STRATEGY"
ENV_USE_INDEXES = "DOCSTORE_USE_INDEXES"

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        value_lower = value.lower()
        if value_lower in _TRUE_VALUES:
            return True
        if value_lower in _FALSE_VALUES:
            return False
    return default


class ConfigProvider(ABC):
    """Abstract base class for configuration providers."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        raise NotImplementedError

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get a boolean configuration value."""
        return _parse_bool(self.get(key), default)


class EnvConfigProvider(ConfigProvider):
    """Configuration provider that reads from environment variables."""

    def __init__(self, environ: dict[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str, default: Any = None) -> Any:
        return self._environ.get(key, default)


class StaticConfigProvider(ConfigProvider):
    """Configuration provider with static values (useful for tests)."""

    def __init__(self, config: dict[str, Any] | None = None):
        self._config = config if config is not None else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._config[key] = value


@dataclass
class CollectionConfig:
    """Settings for one collection.

    Attributes:
        id_strategy: How identifiers are generated ("objectid" or "uuid")
        use_indexes: If False, every query runs as a collection scan
    """
    id_strategy: str = "objectid"
    use_indexes: bool = True

    @classmethod
    def from_provider(cls, provider: ConfigProvider) -> "CollectionConfig":
        """Build a config from any provider, falling back to defaults."""
        return cls(
            id_strategy=str(provider.get(ENV_ID_STRATEGY, cls.id_strategy)).lower(),
            use_indexes=provider.get_bool(ENV_USE_INDEXES, cls.use_indexes),
        )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "CollectionConfig":
        """Build a config from DOCSTORE_* environment variables."""
        return cls.from_provider(EnvConfigProvider(environ))
