"""
Cycle Engine (``iml_kernel.domain.cycles``).

Responsibility
--------------
Owns the lifecycle of a product's production cycles: opening a new cycle,
deciding which cycle may still be edited, moving a cycle's stage statuses
forward, and keeping ``produced + stock`` within ``planned``.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over the mutable ``Product`` /
``Cycle`` aggregate.  ZERO I/O.  Stage transitions are looked up in
``CYCLE_STAGE_WORKFLOW``.

Invariants enforced
-------------------
* Cycle numbers are contiguous from 1 (``add_cycle`` is the only way to
  grow the list).
* Exactly the last cycle is editable.
* Stage statuses never move backwards.
* ``produced + stock <= planned`` when capacity enforcement is on.

Failure modes
-------------
- ``InvalidTransitionError`` on a backward status move.
- ``CycleNotEditableError`` when a superseded cycle is mutated.
- ``CapacityExceededError`` when quantities overflow ``planned``.
"""

from __future__ import annotations

from iml_kernel.domain.values import (
    Cycle,
    CycleQuantities,
    CycleStage,
    Product,
    StageStatus,
)
from iml_kernel.domain.workflow import CYCLE_STAGE_WORKFLOW, Workflow
from iml_kernel.exceptions import (
    CapacityExceededError,
    CycleNotEditableError,
    InvalidTransitionError,
    ValidationError,
)


def add_cycle(product: Product, planned: int = 0) -> Cycle:
    """Append cycle ``len + 1`` and make it the only editable one."""
    if planned < 0:
        raise ValidationError("Cycle", reason="planned must not be negative")
    for existing in product.cycles:
        existing.editable = False
    cycle = Cycle(
        cycle_no=len(product.cycles) + 1,
        editable=True,
        quantities=CycleQuantities(planned=planned),
    )
    product.cycles.append(cycle)
    return cycle


def current_cycle(product: Product) -> Cycle | None:
    return product.cycles[-1] if product.cycles else None


def ensure_cycle(product: Product) -> Cycle:
    """Return the current cycle, opening the first one on first activity."""
    cycle = current_cycle(product)
    if cycle is None:
        cycle = add_cycle(product, planned=product.ordered_qty)
    return cycle


def is_editable(product: Product, cycle: Cycle) -> bool:
    return bool(product.cycles) and product.cycles[-1] is cycle


def require_editable(product: Product, cycle: Cycle) -> None:
    if not is_editable(product, cycle):
        current = current_cycle(product)
        raise CycleNotEditableError(
            product.product_id,
            cycle.cycle_no,
            current.cycle_no if current else 0,
        )


def advance_stage(
    cycle: Cycle,
    stage: CycleStage,
    new_status: StageStatus,
    workflow: Workflow = CYCLE_STAGE_WORKFLOW,
) -> bool:
    """
    Move ``stage`` of ``cycle`` to ``new_status``.

    Returns True when the status changed, False for a same-status no-op.
    """
    old_status = cycle.status_of(stage)
    if old_status is new_status:
        return False
    if workflow.find(old_status.value, new_status.value) is None:
        raise InvalidTransitionError(stage.value, old_status.value, new_status.value)
    cycle.workflow_status[stage] = new_status
    return True


def promote(
    cycle: Cycle,
    stage: CycleStage,
    status: StageStatus,
    workflow: Workflow = CYCLE_STAGE_WORKFLOW,
) -> bool:
    """Advance ``stage`` to ``status`` unless it is already there or beyond."""
    current = cycle.status_of(stage)
    if workflow.rank(current.value) >= workflow.rank(status.value):
        return False
    return advance_stage(cycle, stage, status, workflow)


def set_quantities(
    cycle: Cycle,
    produced: int | None = None,
    stock: int | None = None,
    enforce_capacity: bool = True,
) -> None:
    """Replace ``produced`` and/or ``stock`` on the cycle."""
    new_produced = cycle.quantities.produced if produced is None else produced
    new_stock = cycle.quantities.stock if stock is None else stock
    if new_produced < 0 or new_stock < 0:
        raise ValidationError("Cycle", reason="quantities must not be negative")
    if enforce_capacity and new_produced + new_stock > cycle.quantities.planned:
        raise CapacityExceededError(
            "Cycle",
            "produced+stock",
            new_produced + new_stock,
            cycle.quantities.planned,
        )
    cycle.quantities.produced = new_produced
    cycle.quantities.stock = new_stock


def production_complete(cycle: Cycle) -> bool:
    q = cycle.quantities
    return q.planned > 0 and q.produced + q.stock >= q.planned


def sync_production_status(cycle: Cycle) -> StageStatus:
    """Derive the production status from the cycle quantities."""
    if production_complete(cycle):
        promote(cycle, CycleStage.PRODUCTION, StageStatus.DONE)
    elif cycle.quantities.produced + cycle.quantities.stock > 0:
        promote(cycle, CycleStage.PRODUCTION, StageStatus.IN_PROGRESS)
    return cycle.status_of(CycleStage.PRODUCTION)


def mark_labels_received(cycle: Cycle) -> None:
    cycle.labels_received = True


def check_cycle_sequence(product: Product) -> None:
    """Raise ValidationError unless cycles are numbered 1..n with only the last editable."""
    for index, cycle in enumerate(product.cycles):
        if cycle.cycle_no != index + 1:
            raise ValidationError(
                "Product",
                reason=(
                    f"cycle numbers of {product.product_id} are not contiguous "
                    f"(position {index + 1} holds cycle {cycle.cycle_no})"
                ),
            )
        should_edit = index == len(product.cycles) - 1
        if cycle.editable != should_edit:
            raise ValidationError(
                "Product",
                reason=f"only the last cycle of {product.product_id} may be editable",
            )
