"""
Order aggregate value types (``iml_kernel.domain.values``).

Responsibility
--------------
The nouns of order intake and cycle tracking: ``Order`` with its ``Contact``
and ``OrderDetails``, the ``Product`` lines it carries, and the production
``Cycle`` records each product accumulates.  Plus the status enums shared by
every stage.

Architecture position
---------------------
**Kernel domain layer** -- pure data.  ZERO I/O.  The aggregate is mutable
because the cycle engine updates cycles in place; stores persist it through
``to_dict`` / ``from_dict`` using snake_case JSON keys.

Invariants
----------
- ``Cycle.quantities`` are non-negative integers.
- ``Order.product`` raises ``ProductNotFoundError`` rather than returning None.
- Money (``OrderDetails.estimated_value``) is ``Decimal``, serialized as a
  string so that the JSON round trip is exact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from iml_kernel.exceptions import ProductNotFoundError


class StageStatus(Enum):
    """Status of one stage within a cycle.  Only moves forward."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class CycleStage(Enum):
    """The stages tracked per cycle."""
    PRODUCTION = "production"
    INVENTORY = "inventory"
    BILLING = "billing"
    DISPATCH = "dispatch"


class ImlType(Enum):
    LID = "LID"
    TUB = "TUB"
    LID_TUB = "LID TUB"


class DesignStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    APPROVED = "approved"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"


class BillingStatus(Enum):
    """Derived display status of a billing record."""
    PENDING_PAYMENT = "Pending Payment"
    PAID = "Paid"
    DISPATCHED = "Dispatched"


class DispatchStatus(Enum):
    READY = "Ready for Dispatch"
    DISPATCHED = "Dispatched"


def history_key(order_id: str, product_id: str) -> str:
    """Composite key under which a product's stage histories are stored."""
    return f"{order_id}_{product_id}"


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return Decimal("0")


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Cycle
# ---------------------------------------------------------------------------


@dataclass
class CycleQuantities:
    planned: int = 0
    produced: int = 0
    stock: int = 0

    def __post_init__(self) -> None:
        for name in ("planned", "produced", "stock"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")


def _initial_workflow_status() -> dict[CycleStage, StageStatus]:
    return {stage: StageStatus.PENDING for stage in CycleStage}


@dataclass
class Cycle:
    """
    One production run of a product.

    ``editable`` is maintained by the cycle engine: only the most recent
    cycle of a product carries it.
    """
    cycle_no: int
    editable: bool = True
    quantities: CycleQuantities = field(default_factory=CycleQuantities)
    workflow_status: dict[CycleStage, StageStatus] = field(
        default_factory=_initial_workflow_status
    )
    labels_received: bool = False

    def status_of(self, stage: CycleStage) -> StageStatus:
        return self.workflow_status.get(stage, StageStatus.PENDING)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_no": self.cycle_no,
            "editable": self.editable,
            "quantities": {
                "planned": self.quantities.planned,
                "produced": self.quantities.produced,
                "stock": self.quantities.stock,
            },
            "workflow_status": {
                stage.value: self.status_of(stage).value for stage in CycleStage
            },
            "labels_received": self.labels_received,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cycle:
        quantities = data.get("quantities") or {}
        status = _initial_workflow_status()
        for stage_name, status_name in (data.get("workflow_status") or {}).items():
            status[CycleStage(stage_name)] = StageStatus(status_name)
        return cls(
            cycle_no=int(data["cycle_no"]),
            editable=bool(data.get("editable", False)),
            quantities=CycleQuantities(
                planned=int(quantities.get("planned", 0)),
                produced=int(quantities.get("produced", 0)),
                stock=int(quantities.get("stock", 0)),
            ),
            workflow_status=status,
            labels_received=bool(data.get("labels_received", False)),
        )


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------


@dataclass
class Colors:
    lid_color: str | None = None
    tub_color: str | None = None


@dataclass
class Product:
    """
    A product line on an order.

    ``product_name`` is the category (e.g. "Round") and ``size`` the
    capacity (e.g. "250ml"); together they form the stock aggregation key.
    """
    product_id: str
    product_name: str = ""
    size: str = ""
    iml_name: str = ""
    iml_type: ImlType = ImlType.LID
    colors: Colors = field(default_factory=Colors)
    ordered_qty: int = 0
    move_to_purchase: bool = False
    design_status: DesignStatus = DesignStatus.PENDING
    cycles: list[Cycle] = field(default_factory=list)
    label_type: str | None = None
    supplier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "size": self.size,
            "iml_name": self.iml_name,
            "iml_type": self.iml_type.value,
            "colors": {
                "lid_color": self.colors.lid_color,
                "tub_color": self.colors.tub_color,
            },
            "ordered_qty": self.ordered_qty,
            "move_to_purchase": self.move_to_purchase,
            "design_status": self.design_status.value,
            "cycles": [c.to_dict() for c in self.cycles],
            "label_type": self.label_type,
            "supplier": self.supplier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        colors = data.get("colors") or {}
        return cls(
            product_id=str(data["product_id"]),
            product_name=data.get("product_name") or "",
            size=data.get("size") or "",
            iml_name=data.get("iml_name") or "",
            iml_type=ImlType(data.get("iml_type") or ImlType.LID.value),
            colors=Colors(
                lid_color=colors.get("lid_color"),
                tub_color=colors.get("tub_color"),
            ),
            ordered_qty=int(data.get("ordered_qty") or 0),
            move_to_purchase=bool(data.get("move_to_purchase", False)),
            design_status=DesignStatus(
                data.get("design_status") or DesignStatus.PENDING.value
            ),
            cycles=[Cycle.from_dict(c) for c in data.get("cycles") or []],
            label_type=data.get("label_type"),
            supplier=data.get("supplier"),
        )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


@dataclass
class Contact:
    company: str = ""
    contact_name: str = ""
    phone: str = ""
    priority: str = ""


@dataclass
class OrderDetails:
    estimated_quantity: int = 0
    estimated_value: Decimal = Decimal("0")
    payment_status: str = ""
    remarks: str = ""

    def unit_rate(self) -> Decimal:
        """Estimated value per unit; zero when no quantity was estimated."""
        if not self.estimated_quantity:
            return Decimal("0")
        return self.estimated_value / Decimal(self.estimated_quantity)


@dataclass
class Order:
    order_id: str
    order_number: str = ""
    contact: Contact = field(default_factory=Contact)
    order_details: OrderDetails = field(default_factory=OrderDetails)
    created_at: datetime | None = None
    products: list[Product] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.order_number:
            self.order_number = self.order_id

    def product(self, product_id: str) -> Product:
        for p in self.products:
            if p.product_id == product_id:
                return p
        raise ProductNotFoundError(self.order_id, product_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "contact": {
                "company": self.contact.company,
                "contact_name": self.contact.contact_name,
                "phone": self.contact.phone,
                "priority": self.contact.priority,
            },
            "order_details": {
                "estimated_quantity": self.order_details.estimated_quantity,
                "estimated_value": str(self.order_details.estimated_value),
                "payment_status": self.order_details.payment_status,
                "remarks": self.order_details.remarks,
            },
            "created_at": format_datetime(self.created_at),
            "products": [p.to_dict() for p in self.products],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        contact = data.get("contact") or {}
        details = data.get("order_details") or {}
        return cls(
            order_id=str(data["order_id"]),
            order_number=data.get("order_number") or "",
            contact=Contact(
                company=contact.get("company") or "",
                contact_name=contact.get("contact_name") or "",
                phone=contact.get("phone") or "",
                priority=contact.get("priority") or "",
            ),
            order_details=OrderDetails(
                estimated_quantity=int(details.get("estimated_quantity") or 0),
                estimated_value=to_decimal(details.get("estimated_value")),
                payment_status=details.get("payment_status") or "",
                remarks=details.get("remarks") or "",
            ),
            created_at=parse_datetime(data.get("created_at")),
            products=[Product.from_dict(p) for p in data.get("products") or []],
        )
