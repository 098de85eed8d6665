"""
procure_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain runtime settings through
    ``get_runtime_settings()``.  No other component reads the settings file
    or the ``PROCURE_SETTINGS_PATH`` environment variable.

Architecture position:
    Configuration.  Depends only on pyyaml; consumed by
    ``procure_services``.  The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` -- the resolved settings file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits a ``PROCURE_CONFIG_TRACE`` log entry with
    the settings name, version, source path and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from procure_config.loader import load_yaml_file, parse_settings
from procure_config.schema import RuntimeSettings

_logger = logging.getLogger("procure_kernel.config")

SETTINGS_PATH_ENV = "PROCURE_SETTINGS_PATH"

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"


def resolve_settings_path(path: str | Path | None = None) -> Path:
    """Argument, then ``PROCURE_SETTINGS_PATH``, then the packaged default."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(SETTINGS_PATH_ENV)
    if env_path:
        return Path(env_path)
    return _DEFAULT_SETTINGS_FILE


def get_runtime_settings(path: str | Path | None = None) -> RuntimeSettings:
    """The ONLY public settings entrypoint.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If the document fails validation.
    """
    source = resolve_settings_path(path)
    if not source.is_file():
        raise FileNotFoundError(f"Settings file not found: {source}")

    settings = parse_settings(load_yaml_file(source))

    _logger.info(
        "PROCURE_CONFIG_TRACE",
        extra={
            "trace_type": "PROCURE_CONFIG_TRACE",
            "settings_name": settings.name,
            "settings_version": settings.version,
            "source": str(source),
            "checksum": settings.checksum,
            "module_count": len(settings.modules),
        },
    )
    return settings


__all__ = [
    "RuntimeSettings",
    "SETTINGS_PATH_ENV",
    "get_runtime_settings",
    "resolve_settings_path",
]
