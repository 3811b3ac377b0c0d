"""
Configuration Loader (``iml_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
``iml_config.schema`` dataclasses.  Runtime code does not call this
directly; the single entrypoint is ``iml_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from iml_config.schema import ImlConfiguration, StorageKeys


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_storage_keys(data: dict[str, Any] | None) -> StorageKeys:
    """Parse StorageKeys; absent entries keep their defaults."""
    data = data or {}
    unknown = set(data) - set(StorageKeys.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown storage key(s): {', '.join(sorted(unknown))}")
    return StorageKeys(**data)


def parse_configuration(data: dict[str, Any]) -> ImlConfiguration:
    """Parse an ``ImlConfiguration`` from a YAML document."""
    stock = data.get("stock") or {}
    billing = data.get("billing") or {}
    cycles = data.get("cycles") or {}
    orders = data.get("orders") or {}
    logging_section = data.get("logging") or {}
    return ImlConfiguration(
        config_id=data["config_id"],
        version=int(data["version"]),
        storage=parse_storage_keys(data.get("storage_keys")),
        database_url=data.get("database_url", "sqlite:///iml.db"),
        log_level=str(logging_section.get("level", "INFO")).upper(),
        low_stock_threshold=int(stock.get("low_stock_threshold", 500)),
        amount_decimal_places=int(billing.get("amount_decimal_places", 2)),
        enforce_cycle_capacity=bool(cycles.get("enforce_capacity", True)),
        cascade_on_delete=bool(orders.get("cascade_on_delete", False)),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> ImlConfiguration:
    return parse_configuration(load_yaml_file(path))
