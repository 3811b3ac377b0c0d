"""
iml_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- YAML-driven.  Sits beside ``iml_kernel`` and below
    ``iml_services``.  The kernel MUST NEVER import from ``iml_config``;
    the coordinator translates configuration into constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The returned configuration has passed schema validation.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` -- schema validation failures.
"""

from __future__ import annotations

import os
from pathlib import Path

from iml_config.loader import load_configuration
from iml_config.schema import ImlConfiguration, StorageKeys
from iml_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "IML_CONFIG_PATH"

_cache: dict[Path, ImlConfiguration] = {}


def get_active_config(config_path: Path | str | None = None) -> ImlConfiguration:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``config_path``, then ``$IML_CONFIG_PATH``,
    then the bundled ``defaults.yaml``.  Results are cached per resolved
    path; use ``clear_config_cache()`` after editing a file.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    path = Path(config_path).resolve()

    cached = _cache.get(path)
    if cached is not None:
        return cached

    config = load_configuration(path)
    _cache[path] = config

    _logger.info(
        "IML_CONFIG_TRACE",
        extra={
            "trace_type": "IML_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


def clear_config_cache() -> None:
    _cache.clear()


__all__ = [
    "get_active_config",
    "clear_config_cache",
    "ImlConfiguration",
    "StorageKeys",
    "DEFAULT_CONFIG_PATH",
    "CONFIG_PATH_ENV",
]
