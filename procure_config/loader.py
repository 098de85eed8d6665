"""
Settings Loader (``procure_config.loader``).

Responsibility
--------------
Load the runtime settings YAML file and parse it into the frozen
``procure_config.schema`` dataclasses.  Callers go through
``procure_config.get_runtime_settings()``.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types or out-of-range values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from procure_config.schema import (
    CacheSettings,
    DatabaseSettings,
    DataServiceSettings,
    RuntimeSettings,
    ViewSettings,
)

_TOP_LEVEL_KEYS = frozenset({"name", "version", "database", "data_service", "cache", "view", "modules"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: settings document must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Settings section '{key}' must be a mapping")
    return value


def _build(cls, section_name: str, data: dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section_name}': {', '.join(unknown)}")
    return cls(**data)


def _positive_int(section: str, name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{name} must be a positive integer, got {value!r}")
    return value


def _non_negative_number(section: str, name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{section}.{name} must be a non-negative number, got {value!r}")
    return float(value)


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    settings = _build(DatabaseSettings, "database", data)
    if not isinstance(settings.url, str) or not settings.url:
        raise ValueError("database.url must be a non-empty string")
    _positive_int("database", "pool_size", settings.pool_size)
    return settings


def parse_data_service(data: dict[str, Any]) -> DataServiceSettings:
    settings = _build(DataServiceSettings, "data_service", data)
    _positive_int("data_service", "default_page_size", settings.default_page_size)
    _positive_int("data_service", "max_page_size", settings.max_page_size)
    if settings.default_page_size > settings.max_page_size:
        raise ValueError("data_service.default_page_size must not exceed max_page_size")
    return settings


def parse_cache(data: dict[str, Any]) -> CacheSettings:
    settings = _build(CacheSettings, "cache", data)
    return CacheSettings(
        template_ttl_seconds=_non_negative_number("cache", "template_ttl_seconds", settings.template_ttl_seconds),
        permission_ttl_seconds=_non_negative_number(
            "cache", "permission_ttl_seconds", settings.permission_ttl_seconds
        ),
    )


def parse_view(data: dict[str, Any]) -> ViewSettings:
    data = dict(data)
    if "action_flags" in data:
        flags = data["action_flags"]
        if not isinstance(flags, list) or not all(isinstance(f, str) for f in flags):
            raise ValueError("view.action_flags must be a list of action names")
        data["action_flags"] = tuple(flags)
    settings = _build(ViewSettings, "view", data)
    _positive_int("view", "error_message_max_length", settings.error_message_max_length)
    return settings


def parse_modules(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    result = {}
    for name, section in data.items():
        if section is None:
            section = {}
        if not isinstance(section, dict):
            raise ValueError(f"modules.{name} must be a mapping")
        result[str(name)] = dict(section)
    return result


def parse_settings(data: dict[str, Any]) -> RuntimeSettings:
    """
    Parse a settings document.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical JSON of ``data``.
    Raises:
        ValueError: on unknown keys or invalid values.
    """
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ValueError(f"Unknown settings keys: {', '.join(unknown)}")
    return RuntimeSettings(
        name=str(data.get("name", "default")),
        version=int(data.get("version", 1)),
        database=parse_database(_section(data, "database")),
        data_service=parse_data_service(_section(data, "data_service")),
        cache=parse_cache(_section(data, "cache")),
        view=parse_view(_section(data, "view")),
        modules=parse_modules(_section(data, "modules")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
