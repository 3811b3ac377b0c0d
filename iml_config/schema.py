"""
Configuration schema (``iml_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the runtime configuration: where each record
family is stored, which database the SQL adapter uses, and the business
thresholds (low stock, amount rounding, cycle capacity, cascade on delete).

Invariants enforced
-------------------
* Every dataclass validates itself in ``__post_init__`` and raises
  ``ValueError`` with a descriptive message.
* Storage keys are non-empty and pairwise distinct.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageKeys:
    """Named keys of the persisted record families."""
    orders: str = "iml_orders"
    label_receipts: str = "iml_label_quantity_received"
    purchase_tracking: str = "iml_tracking_followups"
    production: str = "iml_production_followups"
    inventory: str = "iml_inventory_followups"
    billing: str = "iml_sales_billing"
    dispatch: str = "iml_dispatch"
    sequences: str = "iml_sequences"

    def __post_init__(self) -> None:
        values = []
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"storage key {f.name!r} must be a non-empty string")
            values.append(value)
        if len(set(values)) != len(values):
            raise ValueError("storage keys must be distinct")


@dataclass(frozen=True)
class ImlConfiguration:
    """The compiled runtime configuration."""
    config_id: str
    version: int
    storage: StorageKeys
    database_url: str = "sqlite:///iml.db"
    log_level: str = "INFO"
    low_stock_threshold: int = 500
    amount_decimal_places: int = 2
    enforce_cycle_capacity: bool = True
    cascade_on_delete: bool = False
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.config_id:
            raise ValueError("config_id must not be empty")
        if self.version < 1:
            raise ValueError(f"version must be >= 1 (got {self.version})")
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(_LOG_LEVELS)} (got {self.log_level!r})"
            )
        if self.low_stock_threshold < 0:
            raise ValueError(
                f"low_stock_threshold must be non-negative (got {self.low_stock_threshold})"
            )
        if not 0 <= self.amount_decimal_places <= 6:
            raise ValueError(
                f"amount_decimal_places must be between 0 and 6 (got {self.amount_decimal_places})"
            )
