"""
Tests for the persistence adapters.

Both adapters are run through the same contract; the SQLAlchemy adapter
uses an in-memory SQLite database.
"""

import logging
from dataclasses import replace

import pytest

from iml_kernel.db.adapter import InMemoryAdapter, SqlAlchemyAdapter
from iml_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from iml_kernel.exceptions import OptimisticLockError
from iml_services import reconciliation_coordinator
from iml_services.reconciliation_coordinator import ReconciliationCoordinator


@pytest.fixture
def sql_adapter():
    init_engine_from_url("sqlite://")
    create_tables()
    yield SqlAlchemyAdapter(get_session_factory())
    reset_engine()


@pytest.fixture(params=["memory", "sqlalchemy"])
def any_adapter(request):
    if request.param == "memory":
        yield InMemoryAdapter()
    else:
        yield request.getfixturevalue("sql_adapter")


class TestAdapterContract:

    def test_get_absent_returns_default(self, any_adapter):
        assert any_adapter.get("missing") is None
        assert any_adapter.get("missing", []) == []
        assert any_adapter.revision("missing") == 0

    def test_round_trip(self, any_adapter):
        value = {"ORD-1_p1": [{"entry_id": 1, "quantity": 400}]}
        assert any_adapter.set("iml_label_quantity_received", value) == 1
        assert any_adapter.get("iml_label_quantity_received") == value

    def test_get_returns_copy(self, any_adapter):
        any_adapter.set("k", {"a": [1]})
        any_adapter.get("k")["a"].append(2)
        assert any_adapter.get("k") == {"a": [1]}

    def test_revision_increments(self, any_adapter):
        any_adapter.set("k", 1)
        any_adapter.set("k", 2)
        assert any_adapter.revision("k") == 2

    def test_optimistic_lock(self, any_adapter):
        any_adapter.set("k", "first", expected_revision=0)
        with pytest.raises(OptimisticLockError) as exc_info:
            any_adapter.set("k", "stale", expected_revision=0)
        assert exc_info.value.actual_revision == 1
        assert any_adapter.get("k") == "first"

    def test_non_json_value_rejected(self, any_adapter):
        with pytest.raises(TypeError):
            any_adapter.set("k", {"bad": object()})
        assert any_adapter.get("k") is None

    def test_delete_and_keys(self, any_adapter):
        any_adapter.set("b", 1)
        any_adapter.set("a", 1)
        assert any_adapter.keys() == ["a", "b"]
        any_adapter.delete("a")
        any_adapter.delete("never-set")
        assert any_adapter.keys() == ["b"]


class TestEngine:

    def test_uninitialized_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()

    def test_engine_initialized_logged(self, captured_logs):
        init_engine_from_url("sqlite://")
        try:
            events = [r for r in captured_logs() if r["message"] == "engine_initialized"]
            assert events[0]["dialect"] == "sqlite"
        finally:
            reset_engine()


def test_coordinator_over_sqlite(sql_adapter, config, clock, order_factory):
    coordinator = ReconciliationCoordinator(sql_adapter, config=config, clock=clock)
    coordinator.create_order(order_factory())
    coordinator.move_to_purchase("ORD-1", "p1")
    coordinator.verify_inventory("ORD-1", "p1", 300)
    record = coordinator.send_to_billing("ORD-1", ["p1"])

    fresh = ReconciliationCoordinator(sql_adapter, config=config, clock=clock)
    assert fresh.billing.get(record.billing_id).total_final_qty == 300
    assert fresh.available_stock("Round", "250ml") == 300


class TestFromConfig:

    @pytest.fixture
    def sqlite_config(self, config):
        return replace(config, database_url="sqlite://", log_level="DEBUG")

    def test_builds_over_configured_database(self, sqlite_config, clock, order_factory):
        coordinator = ReconciliationCoordinator.from_config(sqlite_config, clock=clock)
        try:
            assert get_engine().dialect.name == "sqlite"
            coordinator.create_order(order_factory())
            fresh = ReconciliationCoordinator(
                SqlAlchemyAdapter(get_session_factory()), config=sqlite_config, clock=clock
            )
            assert fresh.get_order("ORD-1").contact.company == "Acme Foods"
        finally:
            reset_engine()

    def test_configures_logging_at_configured_level(self, sqlite_config, clock, monkeypatch):
        calls = []
        monkeypatch.setattr(
            reconciliation_coordinator, "configure_logging", lambda **kw: calls.append(kw)
        )
        try:
            ReconciliationCoordinator.from_config(sqlite_config, clock=clock)
        finally:
            reset_engine()
        assert calls == [{"level": logging.DEBUG}]
