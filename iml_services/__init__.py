"""
iml_services -- orchestration layer called by the presentation layer.

Wires the kernel stores, the pure engines and the active configuration
into the ``ReconciliationCoordinator``.
"""

from iml_services.reconciliation_coordinator import (
    DeletionResult,
    InventoryResult,
    ProductionSummary,
    ReconciliationCoordinator,
)

__all__ = [
    "ReconciliationCoordinator",
    "ProductionSummary",
    "InventoryResult",
    "DeletionResult",
]
