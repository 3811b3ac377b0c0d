"""
Record collections -- orders, billing records and dispatch records.

Responsibility:
    Array-shaped record families addressed by id.  ``OrderRepository`` holds
    the order aggregates; ``BillingStore`` and ``DispatchStore`` hold the
    snapshots written by billing and dispatch.

Architecture position:
    Kernel > Services.  Called by the reconciliation coordinator only.

Invariants enforced:
    - Ids are unique within a collection (``add`` rejects duplicates).
    - ``get`` raises a typed NotFoundError; it never returns None.
    - Insertion order is preserved.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

from iml_kernel.domain.records import BillingRecord, DispatchRecord
from iml_kernel.domain.values import Order
from iml_kernel.exceptions import (
    BillingRecordNotFoundError,
    DispatchRecordNotFoundError,
    NotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from iml_kernel.logging_config import get_logger
from iml_kernel.services.base import BaseStore

logger = get_logger("services.record_store")

RecordType = TypeVar("RecordType")


class RecordCollection(BaseStore, Generic[RecordType]):
    """Ordered list of records under one storage key."""

    id_field: ClassVar[str] = "id"

    @abstractmethod
    def _decode(self, raw: dict[str, Any]) -> RecordType:
        ...

    @abstractmethod
    def _not_found(self, record_id: str) -> NotFoundError:
        ...

    def _id_of(self, record: RecordType) -> str:
        return getattr(record, self.id_field)

    def _load(self) -> list[dict[str, Any]]:
        return self._read([])

    def all(self) -> list[RecordType]:
        return [self._decode(raw) for raw in self._load()]

    def find(self, record_id: str) -> RecordType | None:
        for raw in self._load():
            if raw.get(self.id_field) == record_id:
                return self._decode(raw)
        return None

    def get(self, record_id: str) -> RecordType:
        record = self.find(record_id)
        if record is None:
            raise self._not_found(record_id)
        return record

    def exists(self, record_id: str) -> bool:
        return self.find(record_id) is not None

    def add(self, record: RecordType) -> RecordType:
        rows = self._load()
        record_id = self._id_of(record)
        if any(raw.get(self.id_field) == record_id for raw in rows):
            raise ValidationError(
                type(record).__name__, reason=f"duplicate id {record_id}"
            )
        rows.append(record.to_dict())
        self._write(rows)
        logger.debug(
            "record_added",
            extra={"storage_key": self.storage_key, "record_id": record_id},
        )
        return record

    def save(self, record: RecordType) -> RecordType:
        """Replace the stored record with the same id."""
        rows = self._load()
        record_id = self._id_of(record)
        for index, raw in enumerate(rows):
            if raw.get(self.id_field) == record_id:
                rows[index] = record.to_dict()
                self._write(rows)
                return record
        raise self._not_found(record_id)

    def delete(self, record_id: str) -> RecordType:
        rows = self._load()
        for index, raw in enumerate(rows):
            if raw.get(self.id_field) == record_id:
                del rows[index]
                self._write(rows)
                return self._decode(raw)
        raise self._not_found(record_id)


class OrderRepository(RecordCollection[Order]):
    id_field = "order_id"

    def _decode(self, raw: dict[str, Any]) -> Order:
        return Order.from_dict(raw)

    def _not_found(self, record_id: str) -> NotFoundError:
        return OrderNotFoundError(record_id)


class BillingStore(RecordCollection[BillingRecord]):
    id_field = "billing_id"

    def _decode(self, raw: dict[str, Any]) -> BillingRecord:
        return BillingRecord.from_dict(raw)

    def _not_found(self, record_id: str) -> NotFoundError:
        return BillingRecordNotFoundError(record_id)

    def for_order(self, order_id: str) -> list[BillingRecord]:
        return [r for r in self.all() if r.order.order_id == order_id]


class DispatchStore(RecordCollection[DispatchRecord]):
    id_field = "dispatch_id"

    def _decode(self, raw: dict[str, Any]) -> DispatchRecord:
        return DispatchRecord.from_dict(raw)

    def _not_found(self, record_id: str) -> NotFoundError:
        return DispatchRecordNotFoundError(record_id)

    def for_billing(self, billing_id: str) -> list[DispatchRecord]:
        return [r for r in self.all() if r.billing_id == billing_id]

    def for_order(self, order_id: str) -> list[DispatchRecord]:
        return [r for r in self.all() if r.order.order_id == order_id]
