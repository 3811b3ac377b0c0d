"""
Stage history entries (``iml_kernel.domain.entries``).

Responsibility
--------------
Immutable records appended to the per-product stage histories: label
receipts, purchase tracking followups, production followups and inventory
verifications.  Each entry type declares the fields an operator must fill
in; ``validate()`` names every one that is missing.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Entries are
frozen; finalizing a history produces new entries via
``dataclasses.replace`` rather than mutating stored ones.

Invariants enforced
-------------------
* A required field that is None, empty or whitespace-only is missing.
* ``entry_id`` and ``recorded_at`` are stamped by the store, never by callers.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, ClassVar

from iml_kernel.exceptions import ValidationError


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


@dataclass(frozen=True, kw_only=True)
class StageEntry:
    """Fields shared by every stage history entry."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ()
    ENTITY_NAME: ClassVar[str] = "StageEntry"

    entry_id: int = 0
    recorded_at: datetime | None = None
    submitted: bool = False
    cycle_no: int | None = None

    def missing_fields(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if is_blank(getattr(self, name))]

    def validate(self) -> None:
        """Raise ValidationError listing all missing required fields."""
        missing = self.missing_fields()
        if missing:
            raise ValidationError(self.ENTITY_NAME, missing)
        self._check_values()

    def _check_values(self) -> None:
        """Per-type value rules, run once required fields are present."""

    def finalized(self) -> StageEntry:
        return replace(self, submitted=True)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageEntry:
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        recorded_at = kwargs.get("recorded_at")
        if isinstance(recorded_at, str):
            kwargs["recorded_at"] = datetime.fromisoformat(recorded_at)
        return cls(**kwargs)


@dataclass(frozen=True, kw_only=True)
class LabelReceiptEntry(StageEntry):
    """Labels delivered by the supplier for an order product."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("quantity",)
    ENTITY_NAME: ClassVar[str] = "LabelReceipt"

    quantity: int | None = None
    all_received: bool = False
    comment: str = ""

    def _check_values(self) -> None:
        if self.quantity <= 0:
            raise ValidationError(
                self.ENTITY_NAME, reason="quantity must be greater than zero"
            )


@dataclass(frozen=True, kw_only=True)
class PurchaseTrackingEntry(StageEntry):
    """Purchase followup: labels ordered from the supplier so far."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("quantity",)
    ENTITY_NAME: ClassVar[str] = "PurchaseTracking"

    quantity: int | None = None
    comment: str = ""

    def _check_values(self) -> None:
        if self.quantity <= 0:
            raise ValidationError(
                self.ENTITY_NAME, reason="quantity must be greater than zero"
            )


@dataclass(frozen=True, kw_only=True)
class ProductionEntry(StageEntry):
    """
    One production shift report.

    Labels consumed by the shift are ``accepted_components +
    rejected_components + label_wastage``.
    """

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "accepted_components",
        "rejected_components",
        "packing_incharge",
        "approved_by",
    )
    ENTITY_NAME: ClassVar[str] = "ProductionEntry"

    accepted_components: int | None = None
    rejected_components: int | None = None
    label_wastage: int = 0
    shift: str = ""
    packing_incharge: str | None = None
    approved_by: str | None = None
    machine_number: str = ""

    def _check_values(self) -> None:
        for name in ("accepted_components", "rejected_components", "label_wastage"):
            if getattr(self, name) < 0:
                raise ValidationError(self.ENTITY_NAME, reason=f"{name} must not be negative")


@dataclass(frozen=True, kw_only=True)
class InventoryEntry(StageEntry):
    """Verified finished-goods count for an order product."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("final_qty",)
    ENTITY_NAME: ClassVar[str] = "InventoryEntry"

    final_qty: int | None = None
    remarks: str = ""
