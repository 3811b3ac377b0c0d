"""
Quantity Ledger (``iml_engines.quantity_ledger``).

Responsibility
--------------
Pure arithmetic over stage histories: normalizing operator-entered
quantities, summing a field across entries, and computing what remains of
a total after consumption.  Every running total shown by the system
(remaining labels, labels received, available stock) is derived here on
read; nothing is stored.

Architecture position
---------------------
**Engines** -- pure calculation, zero I/O.  Entries may be stage entry
objects or plain mappings as they come out of persisted JSON.

Invariants enforced
-------------------
* ``remaining`` is never negative.
* ``remaining(total, [])`` equals ``total`` for non-negative totals.
* Results do not depend on entry order.
* ``to_quantity`` never raises: unreadable input counts as 0.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from iml_engines.tracer import traced_engine

# Labels used up by a production entry: good parts, rejects and spoiled labels
LABEL_CONSUMPTION_FIELDS: tuple[str, ...] = (
    "accepted_components",
    "rejected_components",
    "label_wastage",
)


def to_quantity(value: Any) -> int:
    """
    Normalize an operator-entered quantity to an int.

    None, blank and non-numeric values give 0.  Thousands separators are
    stripped ("1,200" -> 1200) and fractions truncate toward zero.
    """
    if value is None:
        return 0
    if isinstance(value, int):
        return int(value)
    try:
        if isinstance(value, (float, Decimal)):
            return int(value)
        text = str(value).replace(",", "").strip()
        if not text:
            return 0
        return int(Decimal(text))
    except (InvalidOperation, ValueError, OverflowError):
        return 0


def _field_value(entry: Any, field: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(field)
    return getattr(entry, field, None)


def sum_field(entries: Iterable[Any], field: str) -> int:
    """Sum ``field`` over ``entries``; missing fields contribute 0."""
    return sum(to_quantity(_field_value(entry, field)) for entry in entries)


@traced_engine("quantity_ledger.remaining", "1.0", ("total", "fields"))
def remaining(total: Any, entries: Iterable[Any], fields: Iterable[str]) -> int:
    """``max(0, total - sum of fields over entries)``."""
    entries = list(entries)
    used = sum(sum_field(entries, field) for field in fields)
    return max(0, to_quantity(total) - used)


def labels_consumed(production_entries: Iterable[Any]) -> int:
    entries = list(production_entries)
    return sum(sum_field(entries, field) for field in LABEL_CONSUMPTION_FIELDS)


def remaining_labels(no_of_labels: Any, production_entries: Iterable[Any]) -> int:
    """Labels still available for production."""
    return remaining(no_of_labels, production_entries, LABEL_CONSUMPTION_FIELDS)


def total_received(label_entries: Iterable[Any]) -> int:
    """Labels delivered across all receipt entries."""
    return sum_field(label_entries, "quantity")


def total_produced(production_entries: Iterable[Any]) -> int:
    return sum_field(production_entries, "accepted_components")


def available_stock(inventory_entries: Iterable[Any]) -> int:
    """Verified stock recorded in one inventory history."""
    return sum_field(inventory_entries, "final_qty")


@traced_engine("quantity_ledger.aggregate_stock", "1.0")
def aggregate_stock(histories: Iterable[Iterable[Any]]) -> int:
    """Sum ``final_qty`` across many inventory histories."""
    return sum(available_stock(history) for history in histories)
