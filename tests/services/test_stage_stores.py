"""
Tests for the append-only stage history stores.

Verifies:
- Validation names every missing field and writes nothing
- entry_id / recorded_at are stamped by the store
- Finalized entries cannot be deleted
- History views are lazy snapshots
"""

from datetime import timedelta

import pytest

from iml_kernel.domain.entries import (
    InventoryEntry,
    LabelReceiptEntry,
    ProductionEntry,
)
from iml_kernel.exceptions import (
    EntryNotFoundError,
    ImmutableEntryError,
    ValidationError,
)
from iml_kernel.services.sequence_service import SequenceService
from iml_kernel.services.stage_store import (
    HistoryView,
    InventoryStore,
    LabelReceiptStore,
    ProductionStore,
)

KEY = "ORD-1_p1"


def _production(accepted=100, rejected=5, **overrides):
    values = {
        "accepted_components": accepted,
        "rejected_components": rejected,
        "packing_incharge": "Anil",
        "approved_by": "Meena",
    }
    values.update(overrides)
    return ProductionEntry(**values)


@pytest.fixture
def sequences(adapter):
    return SequenceService(adapter)


@pytest.fixture
def production_store(adapter, clock, sequences):
    return ProductionStore(adapter, "iml_production_followups", clock, sequences)


@pytest.fixture
def inventory_store(adapter, clock, sequences):
    return InventoryStore(adapter, "iml_inventory_followups", clock, sequences)


class TestAppendEntry:

    def test_stamps_id_and_timestamp(self, production_store, clock):
        stored = production_store.append_entry(KEY, _production(entry_id=999))
        assert stored.entry_id == 1
        assert stored.recorded_at == clock.now()
        assert not stored.submitted

    def test_entry_ids_increase(self, production_store, clock):
        first = production_store.append_entry(KEY, _production())
        clock.advance(60)
        second = production_store.append_entry("ORD-2_p1", _production())
        assert second.entry_id > first.entry_id
        assert second.recorded_at - first.recorded_at == timedelta(seconds=60)

    def test_rejected_entry_names_all_missing_fields(self, production_store, adapter):
        entry = ProductionEntry(accepted_components=10)
        with pytest.raises(ValidationError) as exc_info:
            production_store.append_entry(KEY, entry)
        assert set(exc_info.value.missing_fields) == {
            "rejected_components",
            "packing_incharge",
            "approved_by",
        }
        assert adapter.get("iml_production_followups") is None
        assert production_store.latest(KEY) is None

    def test_rejection_is_logged(self, production_store, captured_logs):
        with pytest.raises(ValidationError):
            production_store.append_entry(KEY, ProductionEntry())
        rejected = [r for r in captured_logs() if r["message"] == "stage_entry_rejected"]
        assert rejected
        assert rejected[0]["level"] == "WARNING"
        assert rejected[0]["history_key"] == KEY

    def test_wrong_entry_type(self, production_store):
        with pytest.raises(TypeError):
            production_store.append_entry(KEY, InventoryEntry(final_qty=1))


class TestReads:

    def test_latest_of_unknown_key_is_none(self, inventory_store):
        assert inventory_store.latest("missing") is None

    def test_latest_returns_last_entry(self, inventory_store):
        inventory_store.append_entry(KEY, InventoryEntry(final_qty=300))
        inventory_store.append_entry(KEY, InventoryEntry(final_qty=150))
        assert inventory_store.latest(KEY).final_qty == 150

    def test_history_view_is_lazy_snapshot(self, inventory_store):
        inventory_store.append_entry(KEY, InventoryEntry(final_qty=1))
        view = inventory_store.history_for(KEY)
        assert isinstance(view, HistoryView)
        assert "unloaded" in repr(view)

        assert [e.final_qty for e in view] == [1]
        inventory_store.append_entry(KEY, InventoryEntry(final_qty=2))
        assert len(view) == 1
        assert len(inventory_store.history_for(KEY)) == 2

    def test_view_created_before_append_sees_append(self, inventory_store):
        view = inventory_store.history_for(KEY)
        inventory_store.append_entry(KEY, InventoryEntry(final_qty=7))
        assert view[0].final_qty == 7

    def test_all_histories_and_keys(self, inventory_store):
        inventory_store.append_entry("a_p1", InventoryEntry(final_qty=1))
        inventory_store.append_entry("b_p1", InventoryEntry(final_qty=2))
        assert inventory_store.keys() == ["a_p1", "b_p1"]
        assert {k: len(v) for k, v in inventory_store.all_histories().items()} == {
            "a_p1": 1,
            "b_p1": 1,
        }


class TestFinalization:

    def test_mark_final_sets_submitted(self, production_store):
        production_store.append_entry(KEY, _production())
        production_store.append_entry(KEY, _production())
        assert not production_store.is_final(KEY)
        assert production_store.mark_final(KEY) == 2
        assert production_store.is_final(KEY)
        assert all(e.submitted for e in production_store.history_for(KEY))

    def test_mark_final_of_empty_history(self, production_store):
        assert production_store.mark_final(KEY) == 0
        assert not production_store.is_final(KEY)

    def test_delete_after_mark_final_rejected(self, production_store):
        stored = production_store.append_entry(KEY, _production())
        production_store.mark_final(KEY)
        with pytest.raises(ImmutableEntryError):
            production_store.delete_entry(KEY, stored.entry_id)
        assert len(production_store.history_for(KEY)) == 1

    def test_delete_unknown_entry(self, production_store):
        with pytest.raises(EntryNotFoundError):
            production_store.delete_entry(KEY, 42)


class TestDeleteAndPurge:

    def test_delete_keeps_id_sequence_monotonic(self, production_store):
        first = production_store.append_entry(KEY, _production())
        production_store.delete_entry(KEY, first.entry_id)
        second = production_store.append_entry(KEY, _production())
        assert second.entry_id == first.entry_id + 1
        assert [e.entry_id for e in production_store.history_for(KEY)] == [second.entry_id]

    def test_delete_last_entry_removes_key(self, production_store):
        stored = production_store.append_entry(KEY, _production())
        production_store.delete_entry(KEY, stored.entry_id)
        assert production_store.keys() == []

    def test_purge(self, production_store):
        production_store.append_entry(KEY, _production())
        production_store.append_entry(KEY, _production())
        assert production_store.purge(KEY) == 2
        assert production_store.purge(KEY) == 0


def test_stores_share_sequences_but_not_histories(adapter, clock, sequences):
    labels = LabelReceiptStore(adapter, "iml_label_quantity_received", clock, sequences)
    inventory = InventoryStore(adapter, "iml_inventory_followups", clock, sequences)
    labels.append_entry(KEY, LabelReceiptEntry(quantity=100))
    assert inventory.latest(KEY) is None
    assert sequences.current_value("label_receipt_entry") == 1
