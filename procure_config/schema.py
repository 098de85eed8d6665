"""
RuntimeSettings schema.

Frozen dataclasses for the runtime settings file.  YAML is parsed into these
types by the loader; nothing else reads the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_ACTION_FLAGS = ("create", "edit", "delete", "read", "approve", "submit")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 5


@dataclass(frozen=True)
class DataServiceSettings:
    default_page_size: int = 25
    max_page_size: int = 1000


@dataclass(frozen=True)
class CacheSettings:
    """TTLs for the configuration provider, in seconds."""

    template_ttl_seconds: float = 300.0
    permission_ttl_seconds: float = 60.0


@dataclass(frozen=True)
class ViewSettings:
    error_message_max_length: int = 200
    action_flags: tuple[str, ...] = DEFAULT_ACTION_FLAGS


@dataclass(frozen=True)
class RuntimeSettings:
    """The runtime artifact returned by ``get_runtime_settings()``."""

    name: str = "default"
    version: int = 1
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    data_service: DataServiceSettings = field(default_factory=DataServiceSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    view: ViewSettings = field(default_factory=ViewSettings)
    modules: dict[str, dict[str, Any]] = field(default_factory=dict)
    checksum: str = ""

    def module_section(self, name: str) -> dict[str, Any]:
        return dict(self.modules.get(name) or {})
