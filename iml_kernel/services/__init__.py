"""Kernel services: stores and sequence allocation over the persistence adapter."""

from iml_kernel.services.record_store import BillingStore, DispatchStore, OrderRepository
from iml_kernel.services.sequence_service import SequenceService
from iml_kernel.services.stage_store import (
    HistoryStore,
    HistoryView,
    InventoryStore,
    LabelReceiptStore,
    ProductionStore,
    PurchaseTrackingStore,
)

__all__ = [
    "SequenceService",
    "HistoryStore",
    "HistoryView",
    "LabelReceiptStore",
    "PurchaseTrackingStore",
    "ProductionStore",
    "InventoryStore",
    "OrderRepository",
    "BillingStore",
    "DispatchStore",
]
