"""
Pytest fixtures for the IML fulfillment test suite.

Provides:
- Structured logging configuration and log capture
- Deterministic clock
- In-memory persistence adapter and a wired coordinator
- Order factories
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from iml_config import DEFAULT_CONFIG_PATH, get_active_config
from iml_kernel.db.adapter import InMemoryAdapter
from iml_kernel.domain.clock import DeterministicClock
from iml_kernel.domain.values import (
    Contact,
    ImlType,
    Order,
    OrderDetails,
    Product,
)
from iml_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from iml_services.reconciliation_coordinator import ReconciliationCoordinator


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture iml_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.create_order(order)
            logs = captured_logs()
            assert any(r["message"] == "order_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("iml_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def adapter() -> InMemoryAdapter:
    return InMemoryAdapter()


@pytest.fixture
def config():
    return get_active_config(DEFAULT_CONFIG_PATH)


@pytest.fixture
def coordinator(adapter, config, clock) -> ReconciliationCoordinator:
    return ReconciliationCoordinator(adapter, config=config, clock=clock)


# =============================================================================
# Order factories
# =============================================================================


def make_product(
    product_id: str = "p1",
    product_name: str = "Round",
    size: str = "250ml",
    ordered_qty: int = 1000,
    iml_name: str = "Mango Delight",
    iml_type: ImlType = ImlType.LID,
) -> Product:
    return Product(
        product_id=product_id,
        product_name=product_name,
        size=size,
        iml_name=iml_name,
        iml_type=iml_type,
        ordered_qty=ordered_qty,
    )


def make_order(
    order_id: str = "ORD-1",
    company: str = "Acme Foods",
    products: list[Product] | None = None,
    estimated_quantity: int = 1000,
    estimated_value: str = "5000",
    order_number: str = "",
) -> Order:
    return Order(
        order_id=order_id,
        order_number=order_number,
        contact=Contact(
            company=company,
            contact_name="Ravi Kumar",
            phone="9876543210",
            priority="high",
        ),
        order_details=OrderDetails(
            estimated_quantity=estimated_quantity,
            estimated_value=Decimal(estimated_value),
        ),
        products=products if products is not None else [make_product()],
    )


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def placed_order(coordinator) -> Order:
    """A single-product order already moved to purchase."""
    order = coordinator.create_order(make_order())
    coordinator.move_to_purchase(order.order_id, "p1")
    return coordinator.get_order(order.order_id)
