"""
Pure domain layer.

This module contains the order aggregate, stage history entries, billing
and dispatch records, and the cycle engine, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from iml_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from iml_kernel.domain.entries import (
    InventoryEntry,
    LabelReceiptEntry,
    ProductionEntry,
    PurchaseTrackingEntry,
    StageEntry,
)
from iml_kernel.domain.records import (
    BilledProduct,
    BillingRecord,
    DispatchRecord,
    OrderReference,
)
from iml_kernel.domain.values import (
    BillingStatus,
    Colors,
    Contact,
    Cycle,
    CycleQuantities,
    CycleStage,
    DesignStatus,
    DispatchStatus,
    ImlType,
    Order,
    OrderDetails,
    PaymentStatus,
    Product,
    StageStatus,
    history_key,
)
from iml_kernel.domain.workflow import CYCLE_STAGE_WORKFLOW, Guard, Transition, Workflow

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "StageEntry",
    "LabelReceiptEntry",
    "PurchaseTrackingEntry",
    "ProductionEntry",
    "InventoryEntry",
    "BilledProduct",
    "BillingRecord",
    "DispatchRecord",
    "OrderReference",
    "Order",
    "OrderDetails",
    "Contact",
    "Product",
    "Colors",
    "Cycle",
    "CycleQuantities",
    "CycleStage",
    "StageStatus",
    "ImlType",
    "DesignStatus",
    "PaymentStatus",
    "BillingStatus",
    "DispatchStatus",
    "history_key",
    "Guard",
    "Transition",
    "Workflow",
    "CYCLE_STAGE_WORKFLOW",
]
