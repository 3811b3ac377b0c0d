"""
Module: iml_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: the
    quantity ledger and the read projections.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import iml_kernel.domain, iml_kernel.logging_config and
    sibling engine modules.
    MUST NOT import iml_services.

Invariants enforced:
    - Engines never read the clock or the store; callers pass every input.
    - Determinism: identical inputs always produce identical outputs.
"""

from iml_engines.projections import (
    BillingDetailLine,
    PurchaseLine,
    StockLine,
    StockStatus,
    billing_detail,
    filter_items,
    group_by_category,
    group_by_company,
    matches_search,
    purchase_lines,
    stock_for,
    stock_lines,
    stock_status,
)
from iml_engines.quantity_ledger import (
    LABEL_CONSUMPTION_FIELDS,
    aggregate_stock,
    available_stock,
    labels_consumed,
    remaining,
    remaining_labels,
    sum_field,
    to_quantity,
    total_produced,
    total_received,
)
from iml_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "LABEL_CONSUMPTION_FIELDS",
    "to_quantity",
    "sum_field",
    "remaining",
    "remaining_labels",
    "labels_consumed",
    "total_received",
    "total_produced",
    "available_stock",
    "aggregate_stock",
    "StockStatus",
    "StockLine",
    "BillingDetailLine",
    "PurchaseLine",
    "group_by_company",
    "group_by_category",
    "matches_search",
    "filter_items",
    "stock_status",
    "stock_lines",
    "stock_for",
    "billing_detail",
    "purchase_lines",
    "traced_engine",
    "compute_input_fingerprint",
]
