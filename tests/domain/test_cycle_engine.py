"""
Tests for the cycle engine.

Verifies:
- Cycle numbering is contiguous and only the last cycle is editable
- Stage transitions follow the cycle stage workflow
- Capacity checks on produced + stock
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from iml_kernel.domain import cycles
from iml_kernel.domain.values import (
    Cycle,
    CycleQuantities,
    CycleStage,
    Product,
    StageStatus,
)
from iml_kernel.domain.workflow import CYCLE_STAGE_WORKFLOW, Transition, Workflow
from iml_kernel.exceptions import (
    CapacityExceededError,
    CycleNotEditableError,
    InvalidTransitionError,
    ValidationError,
)


class TestAddCycle:

    @given(st.lists(st.integers(min_value=0, max_value=10_000), min_size=1, max_size=12))
    def test_numbering_and_editability(self, planned_values):
        product = Product(product_id="p1")
        for planned in planned_values:
            cycles.add_cycle(product, planned=planned)

        assert [c.cycle_no for c in product.cycles] == list(range(1, len(planned_values) + 1))
        assert [c.editable for c in product.cycles] == (
            [False] * (len(planned_values) - 1) + [True]
        )
        cycles.check_cycle_sequence(product)

    def test_negative_planned_rejected(self):
        product = Product(product_id="p1")
        with pytest.raises(ValidationError):
            cycles.add_cycle(product, planned=-1)
        assert product.cycles == []

    def test_ensure_cycle_opens_first_with_ordered_qty(self):
        product = Product(product_id="p1", ordered_qty=1000)
        cycle = cycles.ensure_cycle(product)
        assert cycle.cycle_no == 1
        assert cycle.quantities.planned == 1000
        assert cycles.ensure_cycle(product) is cycle


class TestEditability:

    def test_superseded_cycle_not_editable(self):
        product = Product(product_id="p1")
        first = cycles.add_cycle(product, 100)
        cycles.add_cycle(product, 200)
        assert not cycles.is_editable(product, first)
        with pytest.raises(CycleNotEditableError) as exc_info:
            cycles.require_editable(product, first)
        assert exc_info.value.cycle_no == 1
        assert exc_info.value.current_cycle_no == 2

    def test_check_cycle_sequence_detects_gap(self):
        product = Product(
            product_id="p1",
            cycles=[Cycle(cycle_no=1, editable=False), Cycle(cycle_no=3, editable=True)],
        )
        with pytest.raises(ValidationError):
            cycles.check_cycle_sequence(product)

    def test_check_cycle_sequence_detects_stale_editable(self):
        product = Product(
            product_id="p1",
            cycles=[Cycle(cycle_no=1, editable=True), Cycle(cycle_no=2, editable=True)],
        )
        with pytest.raises(ValidationError):
            cycles.check_cycle_sequence(product)


class TestStageTransitions:

    def test_pending_to_in_progress_to_done(self):
        cycle = Cycle(cycle_no=1)
        assert cycles.advance_stage(cycle, CycleStage.PRODUCTION, StageStatus.IN_PROGRESS)
        assert cycles.advance_stage(cycle, CycleStage.PRODUCTION, StageStatus.DONE)
        assert cycle.status_of(CycleStage.PRODUCTION) is StageStatus.DONE

    def test_pending_straight_to_done(self):
        cycle = Cycle(cycle_no=1)
        assert cycles.advance_stage(cycle, CycleStage.BILLING, StageStatus.DONE)

    def test_same_status_is_noop(self):
        cycle = Cycle(cycle_no=1)
        assert not cycles.advance_stage(cycle, CycleStage.INVENTORY, StageStatus.PENDING)

    @pytest.mark.parametrize(
        "start, target",
        [
            (StageStatus.DONE, StageStatus.IN_PROGRESS),
            (StageStatus.DONE, StageStatus.PENDING),
            (StageStatus.IN_PROGRESS, StageStatus.PENDING),
        ],
    )
    def test_backward_move_rejected(self, start, target):
        cycle = Cycle(cycle_no=1)
        cycle.workflow_status[CycleStage.DISPATCH] = start
        with pytest.raises(InvalidTransitionError) as exc_info:
            cycles.advance_stage(cycle, CycleStage.DISPATCH, target)
        assert exc_info.value.from_status == start.value
        assert cycle.status_of(CycleStage.DISPATCH) is start

    def test_promote_never_moves_backwards(self):
        cycle = Cycle(cycle_no=1)
        cycle.workflow_status[CycleStage.INVENTORY] = StageStatus.DONE
        assert not cycles.promote(cycle, CycleStage.INVENTORY, StageStatus.IN_PROGRESS)
        assert cycle.status_of(CycleStage.INVENTORY) is StageStatus.DONE

    def test_stages_are_independent(self):
        cycle = Cycle(cycle_no=1)
        cycles.promote(cycle, CycleStage.BILLING, StageStatus.DONE)
        assert cycle.status_of(CycleStage.PRODUCTION) is StageStatus.PENDING


class TestWorkflowDefinition:

    def test_rank_orders_states(self):
        ranks = [CYCLE_STAGE_WORKFLOW.rank(s.value) for s in StageStatus]
        assert ranks == sorted(ranks)

    def test_done_is_terminal(self):
        assert "DONE" in CYCLE_STAGE_WORKFLOW.terminal_states
        assert not [t for t in CYCLE_STAGE_WORKFLOW.transitions if t.from_state == "DONE"]

    def test_transition_to_unknown_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="A",
                states=("A",),
                transitions=(Transition("A", "B", "go"),),
            )


class TestQuantities:

    def test_capacity_exceeded(self):
        cycle = Cycle(cycle_no=1, quantities=CycleQuantities(planned=100))
        with pytest.raises(CapacityExceededError) as exc_info:
            cycles.set_quantities(cycle, produced=80, stock=30)
        assert exc_info.value.requested == 110
        assert exc_info.value.available == 100
        assert cycle.quantities.produced == 0

    def test_capacity_not_enforced_when_disabled(self):
        cycle = Cycle(cycle_no=1, quantities=CycleQuantities(planned=100))
        cycles.set_quantities(cycle, produced=150, enforce_capacity=False)
        assert cycle.quantities.produced == 150

    def test_negative_quantities_rejected(self):
        with pytest.raises(ValueError):
            CycleQuantities(planned=-1)
        cycle = Cycle(cycle_no=1, quantities=CycleQuantities(planned=10))
        with pytest.raises(ValidationError):
            cycles.set_quantities(cycle, stock=-1)

    def test_sync_production_status(self):
        cycle = Cycle(cycle_no=1, quantities=CycleQuantities(planned=100))
        assert cycles.sync_production_status(cycle) is StageStatus.PENDING
        cycles.set_quantities(cycle, produced=40)
        assert cycles.sync_production_status(cycle) is StageStatus.IN_PROGRESS
        cycles.set_quantities(cycle, produced=70, stock=30)
        assert cycles.sync_production_status(cycle) is StageStatus.DONE

    def test_stock_alone_starts_production(self):
        cycle = Cycle(cycle_no=1, quantities=CycleQuantities(planned=100))
        cycles.set_quantities(cycle, stock=25)
        assert cycles.sync_production_status(cycle) is StageStatus.IN_PROGRESS

    def test_mark_labels_received(self):
        cycle = Cycle(cycle_no=1)
        cycles.mark_labels_received(cycle)
        assert cycle.labels_received
