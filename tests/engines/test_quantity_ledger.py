"""
Tests for the quantity ledger engine.

Covers quantity normalization, remaining-after-consumption arithmetic and
the stock aggregation helpers, including property-based checks that
remaining is never negative and does not depend on entry order.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

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
from iml_kernel.domain.entries import InventoryEntry, ProductionEntry


def _production(accepted, rejected, wastage):
    return {
        "accepted_components": accepted,
        "rejected_components": rejected,
        "label_wastage": wastage,
    }


entry_strategy = st.fixed_dictionaries({
    "accepted_components": st.integers(min_value=0, max_value=5_000),
    "rejected_components": st.integers(min_value=0, max_value=5_000),
    "label_wastage": st.integers(min_value=0, max_value=500),
})


class TestToQuantity:
    """Operator input normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (None, 0),
            ("", 0),
            ("   ", 0),
            ("abc", 0),
            (12, 12),
            ("12", 12),
            (" 1,200 ", 1200),
            ("12.9", 12),
            (7.8, 7),
            (Decimal("3.5"), 3),
            ("-4", -4),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert to_quantity(raw) == expected

    def test_never_raises_on_garbage(self):
        assert to_quantity(object()) == 0
        assert to_quantity(float("inf")) == 0


class TestSumField:

    def test_mappings_and_objects_mix(self):
        entries = [
            {"quantity": "100"},
            InventoryEntry(final_qty=50),
            {"other": 3},
        ]
        assert sum_field(entries, "quantity") == 100
        assert sum_field(entries, "final_qty") == 50

    def test_empty(self):
        assert sum_field([], "quantity") == 0


class TestRemaining:
    """remaining = max(0, total - consumption)."""

    def test_empty_history_returns_total(self):
        assert remaining(1000, [], LABEL_CONSUMPTION_FIELDS) == 1000

    def test_clamps_at_zero(self):
        entries = [_production(900, 200, 0)]
        assert remaining(1000, entries, LABEL_CONSUMPTION_FIELDS) == 0

    def test_two_followups_leave_twenty_labels(self):
        entries = [_production(600, 50, 10), _production(300, 20, 0)]
        assert remaining_labels(1000, entries) == 20

    def test_typed_entries(self):
        entries = [
            ProductionEntry(
                accepted_components=600,
                rejected_components=50,
                label_wastage=10,
                packing_incharge="Anil",
                approved_by="Meena",
            ),
        ]
        assert remaining_labels("1,000", entries) == 340

    @given(
        total=st.integers(min_value=-1_000, max_value=100_000),
        entries=st.lists(entry_strategy, max_size=20),
    )
    def test_never_negative(self, total, entries):
        assert remaining(total, entries, LABEL_CONSUMPTION_FIELDS) >= 0

    @given(total=st.integers(min_value=0, max_value=1_000_000))
    def test_empty_history_is_identity(self, total):
        assert remaining(total, [], LABEL_CONSUMPTION_FIELDS) == total

    @settings(max_examples=50)
    @given(
        total=st.integers(min_value=0, max_value=100_000),
        data=st.data(),
    )
    def test_independent_of_entry_order(self, total, data):
        entries = data.draw(st.lists(entry_strategy, max_size=10))
        shuffled = data.draw(st.permutations(entries))
        assert remaining(total, entries, LABEL_CONSUMPTION_FIELDS) == remaining(
            total, shuffled, LABEL_CONSUMPTION_FIELDS
        )

    def test_emits_engine_trace(self, captured_logs):
        remaining(10, [], ("quantity",))
        traces = [r for r in captured_logs() if r["message"] == "IML_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "quantity_ledger.remaining"
        assert len(traces[-1]["input_fingerprint"]) == 16


class TestTotals:

    def test_labels_consumed_counts_all_three_fields(self):
        assert labels_consumed([_production(10, 2, 1), _production(5, 0, 0)]) == 18

    def test_total_produced_counts_accepted_only(self):
        assert total_produced([_production(10, 2, 1), _production(5, 0, 0)]) == 15

    def test_total_received(self):
        assert total_received([{"quantity": 400}, {"quantity": "600"}]) == 1000

    def test_available_stock(self):
        assert available_stock([{"final_qty": 300}, {"final_qty": 200}]) == 500

    def test_aggregate_stock_across_histories(self):
        histories = [[{"final_qty": 300}], [{"final_qty": 450}], []]
        assert aggregate_stock(histories) == 750
