"""
Billing and dispatch records (``iml_kernel.domain.records``).

Responsibility
--------------
Frozen snapshots written when an order is billed and when a bill is handed
to dispatch.  Both carry the order references by value (number, company,
contact) so they stay readable after the order is edited or deleted.

Invariants
----------
- ``BillingRecord.status`` is derived: Dispatched wins over Paid, which wins
  over Pending Payment.  Payment status and dispatch are independent.
- A billing record with ``dispatched_at`` set never dispatches again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from iml_kernel.domain.values import (
    BillingStatus,
    DispatchStatus,
    PaymentStatus,
    parse_datetime,
    format_datetime,
    to_decimal,
)


@dataclass(frozen=True)
class BilledProduct:
    """Snapshot of one product line at billing time."""
    product_id: str
    product_name: str = ""
    size: str = ""
    iml_name: str = ""
    iml_type: str = ""
    order_qty: int = 0
    final_qty: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "size": self.size,
            "iml_name": self.iml_name,
            "iml_type": self.iml_type,
            "order_qty": self.order_qty,
            "final_qty": self.final_qty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BilledProduct:
        return cls(
            product_id=str(data["product_id"]),
            product_name=data.get("product_name") or "",
            size=data.get("size") or "",
            iml_name=data.get("iml_name") or "",
            iml_type=data.get("iml_type") or "",
            order_qty=int(data.get("order_qty") or 0),
            final_qty=int(data.get("final_qty") or 0),
        )


@dataclass(frozen=True)
class OrderReference:
    """Order identity copied by value into downstream records."""
    order_id: str
    order_number: str = ""
    company: str = ""
    contact_name: str = ""
    phone: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "company": self.company,
            "contact_name": self.contact_name,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderReference:
        return cls(
            order_id=str(data["order_id"]),
            order_number=data.get("order_number") or "",
            company=data.get("company") or "",
            contact_name=data.get("contact_name") or "",
            phone=data.get("phone") or "",
        )


@dataclass(frozen=True)
class BillingRecord:
    billing_id: str
    order: OrderReference
    products: tuple[BilledProduct, ...] = ()
    total_final_qty: int = 0
    estimated_amount: Decimal = Decimal("0")
    payment_status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime | None = None
    dispatched_at: datetime | None = None
    dispatch_id: str | None = None

    @property
    def status(self) -> BillingStatus:
        if self.dispatched_at is not None:
            return BillingStatus.DISPATCHED
        if self.payment_status is PaymentStatus.PAID:
            return BillingStatus.PAID
        return BillingStatus.PENDING_PAYMENT

    @property
    def is_dispatched(self) -> bool:
        return self.dispatched_at is not None

    def billed_product_ids(self) -> set[str]:
        return {p.product_id for p in self.products}

    def to_dict(self) -> dict[str, Any]:
        return {
            "billing_id": self.billing_id,
            "order": self.order.to_dict(),
            "products": [p.to_dict() for p in self.products],
            "total_final_qty": self.total_final_qty,
            "estimated_amount": str(self.estimated_amount),
            "payment_status": self.payment_status.value,
            "status": self.status.value,
            "created_at": format_datetime(self.created_at),
            "dispatched_at": format_datetime(self.dispatched_at),
            "dispatch_id": self.dispatch_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BillingRecord:
        # "status" is derived and ignored on load
        return cls(
            billing_id=str(data["billing_id"]),
            order=OrderReference.from_dict(data["order"]),
            products=tuple(BilledProduct.from_dict(p) for p in data.get("products") or []),
            total_final_qty=int(data.get("total_final_qty") or 0),
            estimated_amount=to_decimal(data.get("estimated_amount")),
            payment_status=PaymentStatus(
                data.get("payment_status") or PaymentStatus.PENDING.value
            ),
            created_at=parse_datetime(data.get("created_at")),
            dispatched_at=parse_datetime(data.get("dispatched_at")),
            dispatch_id=data.get("dispatch_id"),
        )


@dataclass(frozen=True)
class DispatchRecord:
    dispatch_id: str
    billing_id: str
    order: OrderReference
    products: tuple[BilledProduct, ...] = ()
    total_final_qty: int = 0
    estimated_amount: Decimal = Decimal("0")
    dispatch_date: str = ""
    lr_number: str | None = None
    status: DispatchStatus = DispatchStatus.READY
    created_at: datetime | None = None
    cycle_refs: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispatch_id": self.dispatch_id,
            "billing_id": self.billing_id,
            "order": self.order.to_dict(),
            "products": [p.to_dict() for p in self.products],
            "total_final_qty": self.total_final_qty,
            "estimated_amount": str(self.estimated_amount),
            "dispatch_date": self.dispatch_date,
            "lr_number": self.lr_number,
            "status": self.status.value,
            "created_at": format_datetime(self.created_at),
            "cycle_refs": list(self.cycle_refs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DispatchRecord:
        return cls(
            dispatch_id=str(data["dispatch_id"]),
            billing_id=str(data["billing_id"]),
            order=OrderReference.from_dict(data["order"]),
            products=tuple(BilledProduct.from_dict(p) for p in data.get("products") or []),
            total_final_qty=int(data.get("total_final_qty") or 0),
            estimated_amount=to_decimal(data.get("estimated_amount")),
            dispatch_date=data.get("dispatch_date") or "",
            lr_number=data.get("lr_number"),
            status=DispatchStatus(data.get("status") or DispatchStatus.READY.value),
            created_at=parse_datetime(data.get("created_at")),
            cycle_refs=tuple(data.get("cycle_refs") or ()),
        )
