"""
Read projections (``iml_engines.projections``).

Responsibility
--------------
Pure functions that shape orders, stage histories and billing/dispatch
records into the views the screens render: grouping by company and order
number, grouping stock by category and size, free-text search, stock status
classification, the per-bill product detail and the purchase queue.

Architecture position
---------------------
**Engines** -- pure, zero I/O.  Callers (the coordinator) load the inputs
from the stores and pass them in.

Invariants enforced
-------------------
* Groupings preserve first-seen order of companies, orders and products.
* Missing company / order number / category fall back to fixed labels so
  that no item is dropped from a view.
* Stock only counts inventory histories whose order product still exists.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from iml_engines.quantity_ledger import (
    available_stock,
    remaining,
    sum_field,
    total_received,
)
from iml_engines.tracer import traced_engine
from iml_kernel.domain.records import BillingRecord
from iml_kernel.domain.values import Order, history_key

UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_ORDER_NUMBER = "N/A"
UNCATEGORIZED = "Uncategorized"
DEFAULT_LOW_STOCK_THRESHOLD = 500

T = TypeVar("T")


class StockStatus(Enum):
    OUT_OF_STOCK = "Out of Stock"
    LOW_STOCK = "Low Stock"
    AVAILABLE = "Available"


@dataclass(frozen=True)
class StockLine:
    category: str
    size: str
    quantity: int
    status: StockStatus


@dataclass(frozen=True)
class BillingDetailLine:
    product_id: str
    product_name: str
    size: str
    iml_name: str
    iml_type: str
    order_qty: int
    final_qty: int
    billed: bool

    @property
    def pending(self) -> bool:
        return not self.billed


@dataclass(frozen=True)
class PurchaseLine:
    order_id: str
    order_number: str
    company: str
    product_id: str
    iml_name: str
    ordered_qty: int
    tracked_qty: int
    received_qty: int
    label_type: str | None
    supplier: str | None

    @property
    def remaining_to_track(self) -> int:
        return max(0, self.ordered_qty - self.tracked_qty)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def _company_and_number(item: Any) -> tuple[str, str]:
    if isinstance(item, Order):
        return item.contact.company, item.order_number
    if isinstance(item, PurchaseLine):
        return item.company, item.order_number
    return item.order.company, item.order.order_number


def group_by_company(
    items: Iterable[T],
    order_fallback: str = UNKNOWN_ORDER_NUMBER,
) -> dict[str, dict[str, list[T]]]:
    """
    Group orders (or billing/dispatch records) by company, then order number.

    Blank companies go under "Unknown Company" and blank order numbers
    under ``order_fallback``.
    """
    grouped: dict[str, dict[str, list[T]]] = {}
    for item in items:
        company, number = _company_and_number(item)
        company = (company or "").strip() or UNKNOWN_COMPANY
        number = (number or "").strip() or order_fallback
        grouped.setdefault(company, {}).setdefault(number, []).append(item)
    return grouped


def group_by_category(lines: Iterable[StockLine]) -> dict[str, dict[str, StockLine]]:
    grouped: dict[str, dict[str, StockLine]] = {}
    for line in lines:
        category = line.category.strip() or UNCATEGORIZED
        grouped.setdefault(category, {})[line.size] = line
    return grouped


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _search_fields(item: Any) -> list[str]:
    if isinstance(item, Order):
        fields = [
            item.contact.company,
            item.contact.contact_name,
            item.contact.phone,
            item.order_number,
        ]
        for product in item.products:
            fields.extend([product.iml_name, product.product_name])
        return fields
    if isinstance(item, PurchaseLine):
        return [item.company, item.order_number, item.iml_name]
    reference = getattr(item, "order", None)
    fields = []
    if reference is not None:
        fields.extend([
            reference.company,
            reference.contact_name,
            reference.phone,
            reference.order_number,
        ])
    for product in getattr(item, "products", ()):
        fields.extend([product.iml_name, product.product_name])
    return fields


def matches_search(item: Any, term: str | None) -> bool:
    """Case-insensitive match of ``term`` against the searchable fields."""
    needle = (term or "").strip().lower()
    if not needle:
        return True
    return any(needle in (value or "").lower() for value in _search_fields(item))


def filter_items(items: Iterable[T], term: str | None) -> list[T]:
    return [item for item in items if matches_search(item, term)]


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def stock_status(
    quantity: int,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity > low_stock_threshold:
        return StockStatus.AVAILABLE
    return StockStatus.LOW_STOCK


def _product_index(orders: Iterable[Order]) -> dict[str, tuple[str, str]]:
    index: dict[str, tuple[str, str]] = {}
    for order in orders:
        for product in order.products:
            index[history_key(order.order_id, product.product_id)] = (
                product.product_name,
                product.size,
            )
    return index


@traced_engine("projections.stock_lines", "1.0")
def stock_lines(
    orders: Iterable[Order],
    inventory_histories: Mapping[str, Iterable[Any]],
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> list[StockLine]:
    """Available stock per (category, size) across all orders."""
    index = _product_index(orders)
    totals: dict[tuple[str, str], int] = {}
    for key, history in inventory_histories.items():
        if key not in index:
            continue
        totals[index[key]] = totals.get(index[key], 0) + available_stock(history)
    return [
        StockLine(category, size, qty, stock_status(qty, low_stock_threshold))
        for (category, size), qty in totals.items()
    ]


def stock_for(
    orders: Iterable[Order],
    inventory_histories: Mapping[str, Iterable[Any]],
    category: str,
    size: str,
) -> int:
    """Available stock for one (category, size) tuple."""
    total = 0
    for key, (cat, sz) in _product_index(orders).items():
        if cat == category and sz == size:
            total += available_stock(inventory_histories.get(key, ()))
    return total


# ---------------------------------------------------------------------------
# Billing and purchase views
# ---------------------------------------------------------------------------


def billing_detail(
    record: BillingRecord,
    order: Order | None,
) -> list[BillingDetailLine]:
    """
    Every product of the billed order, billed ones first in record order.

    Products of the order that this record did not bill are listed with
    ``final_qty=0`` and ``pending`` set.  When the order no longer exists
    only the billed snapshot is returned.
    """
    lines = [
        BillingDetailLine(
            product_id=p.product_id,
            product_name=p.product_name,
            size=p.size,
            iml_name=p.iml_name,
            iml_type=p.iml_type,
            order_qty=p.order_qty,
            final_qty=p.final_qty,
            billed=True,
        )
        for p in record.products
    ]
    if order is None:
        return lines
    billed = record.billed_product_ids()
    for product in order.products:
        if product.product_id in billed:
            continue
        lines.append(
            BillingDetailLine(
                product_id=product.product_id,
                product_name=product.product_name,
                size=product.size,
                iml_name=product.iml_name,
                iml_type=product.iml_type.value,
                order_qty=product.ordered_qty,
                final_qty=0,
                billed=False,
            )
        )
    return lines


def purchase_lines(
    orders: Iterable[Order],
    tracking_histories: Mapping[str, Iterable[Any]],
    receipt_histories: Mapping[str, Iterable[Any]],
) -> list[PurchaseLine]:
    """Products moved to purchase with their tracking and receipt progress."""
    lines: list[PurchaseLine] = []
    for order in orders:
        for product in order.products:
            if not product.move_to_purchase:
                continue
            key = history_key(order.order_id, product.product_id)
            lines.append(
                PurchaseLine(
                    order_id=order.order_id,
                    order_number=order.order_number,
                    company=order.contact.company,
                    product_id=product.product_id,
                    iml_name=product.iml_name,
                    ordered_qty=product.ordered_qty,
                    tracked_qty=sum_field(tracking_histories.get(key, ()), "quantity"),
                    received_qty=total_received(receipt_histories.get(key, ())),
                    label_type=product.label_type,
                    supplier=product.supplier,
                )
            )
    return lines


def remaining_to_track(ordered_qty: int, tracking_entries: Iterable[Any]) -> int:
    return remaining(ordered_qty, tracking_entries, ("quantity",))
