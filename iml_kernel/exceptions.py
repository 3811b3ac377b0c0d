"""
Typed Exception Hierarchy for the IML Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every stage of fulfillment reports failures to an operator who has to act on
them (fill a missing field, stop a duplicate dispatch, open a new cycle).
Callers must be able to tell those cases apart without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        coordinator.move_to_dispatch(billing_id)
    except Exception as e:
        if "dispatched" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way (what this module enables):
    try:
        coordinator.move_to_dispatch(billing_id)
    except AlreadyDispatchedError as e:
        notify_operator(f"Bill {e.billing_id} already dispatched")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ImlKernelError:

    ImlKernelError (base)
    |
    +-- ValidationError
    |   +-- NotEligibleError
    |   +-- CapacityExceededError
    |   +-- BillingPendingError
    |
    +-- InvalidTransitionError
    |
    +-- AlreadyDispatchedError
    |
    +-- ImmutableEntryError
    |   +-- CycleNotEditableError
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- ProductNotFoundError
    |   +-- BillingRecordNotFoundError
    |   +-- DispatchRecordNotFoundError
    |   +-- EntryNotFoundError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

CascadeWarning is a UserWarning, not an error: deleting an order never fails
because dependent stage records exist.

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Required field missing / bad value
                | NOT_ELIGIBLE                | Product not moved to purchase
                | CAPACITY_EXCEEDED           | Quantity exceeds what is left
                | BILLING_PENDING             | Product already on an undispatched bill
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION          | Stage status would move backwards
----------------|-----------------------------|-----------------------------------------
Dispatch        | ALREADY_DISPATCHED          | Billing record already dispatched
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABLE_ENTRY             | Finalized history entry mutated
                | CYCLE_NOT_EDITABLE          | Superseded cycle mutated
----------------|-----------------------------|-----------------------------------------
Lookup          | ORDER_NOT_FOUND             | Order id absent from the store
                | PRODUCT_NOT_FOUND           | Product id absent from the order
                | BILLING_RECORD_NOT_FOUND    | Billing id absent
                | DISPATCH_RECORD_NOT_FOUND   | Dispatch id absent
                | ENTRY_NOT_FOUND             | History entry id absent
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Stored revision moved under the writer

===============================================================================
"""

from __future__ import annotations

from collections.abc import Iterable


class ImlKernelError(Exception):
    """
    Base exception for all IML kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "IML_KERNEL_ERROR"


# Validation-related exceptions


class ValidationError(ImlKernelError):
    """
    Input rejected before anything was written.

    ``missing_fields`` names every required field that was absent so the
    operator can fix them all at once.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        entity_type: str,
        missing_fields: Iterable[str] = (),
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.missing_fields = tuple(missing_fields)
        self.reason = reason
        if self.missing_fields:
            message = (
                f"{entity_type} is missing required field(s): "
                f"{', '.join(self.missing_fields)}"
            )
        else:
            message = f"{entity_type} is invalid"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotEligibleError(ValidationError):
    """Product has not been moved to purchase and cannot receive labels."""

    code: str = "NOT_ELIGIBLE"

    def __init__(self, order_id: str, product_id: str, entity_type: str = "LabelReceipt"):
        self.order_id = order_id
        self.product_id = product_id
        super().__init__(
            entity_type,
            reason=(
                f"product {product_id} of order {order_id} "
                "has not been moved to purchase"
            ),
        )


class CapacityExceededError(ValidationError):
    """A quantity would exceed what is left to allocate."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, entity_type: str, field: str, requested: int, available: int):
        self.field = field
        self.requested = requested
        self.available = available
        super().__init__(
            entity_type,
            reason=f"{field}={requested} exceeds available quantity {available}",
        )


class BillingPendingError(ValidationError):
    """Selected products already sit on a bill that has not been dispatched."""

    code: str = "BILLING_PENDING"

    def __init__(self, order_id: str, billing_id: str, product_ids: Iterable[str]):
        self.order_id = order_id
        self.billing_id = billing_id
        self.product_ids = tuple(product_ids)
        super().__init__(
            "BillingRecord",
            reason=(
                f"{', '.join(self.product_ids)} of order {order_id} already "
                f"billed on {billing_id}, which is not dispatched yet"
            ),
        )


# Workflow-related exceptions


class InvalidTransitionError(ImlKernelError):
    """Stage status would move backwards (PENDING < IN_PROGRESS < DONE)."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, stage: str, from_status: str, to_status: str):
        self.stage = stage
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move {stage} from {from_status} back to {to_status}"
        )


# Dispatch-related exceptions


class AlreadyDispatchedError(ImlKernelError):
    """Billing record has already produced its dispatch record."""

    code: str = "ALREADY_DISPATCHED"

    def __init__(self, billing_id: str, dispatched_at: str | None = None):
        self.billing_id = billing_id
        self.dispatched_at = dispatched_at
        super().__init__(f"Billing record {billing_id} is already dispatched")


# Immutability-related exceptions


class ImmutableEntryError(ImlKernelError):
    """Attempted to modify or delete a finalized record."""

    code: str = "IMMUTABLE_ENTRY"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutable {entity_type} {entity_id}: {reason}"
        )


class CycleNotEditableError(ImmutableEntryError):
    """Only the most recent cycle of a product accepts changes."""

    code: str = "CYCLE_NOT_EDITABLE"

    def __init__(self, product_id: str, cycle_no: int, current_cycle_no: int):
        self.product_id = product_id
        self.cycle_no = cycle_no
        self.current_cycle_no = current_cycle_no
        super().__init__(
            "Cycle",
            f"{product_id}#{cycle_no}",
            f"superseded by cycle {current_cycle_no}",
        )


# Lookup-related exceptions


class NotFoundError(ImlKernelError):
    """Base exception for references to ids absent from the store."""

    code: str = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Order with given id was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ProductNotFoundError(NotFoundError):
    """Product id is not part of the order."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, order_id: str, product_id: str):
        self.order_id = order_id
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found in order {order_id}")


class BillingRecordNotFoundError(NotFoundError):
    """Billing record with given id was not found."""

    code: str = "BILLING_RECORD_NOT_FOUND"

    def __init__(self, billing_id: str):
        self.billing_id = billing_id
        super().__init__(f"Billing record not found: {billing_id}")


class DispatchRecordNotFoundError(NotFoundError):
    """Dispatch record with given id was not found."""

    code: str = "DISPATCH_RECORD_NOT_FOUND"

    def __init__(self, dispatch_id: str):
        self.dispatch_id = dispatch_id
        super().__init__(f"Dispatch record not found: {dispatch_id}")


class EntryNotFoundError(NotFoundError):
    """History entry id does not exist under the key."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, stage: str, key: str, entry_id: int):
        self.stage = stage
        self.key = key
        self.entry_id = entry_id
        super().__init__(f"No {stage} entry {entry_id} under {key}")


# Concurrency-related exceptions


class ConcurrencyError(ImlKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, key: str, expected_revision: int, actual_revision: int):
        self.key = key
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"Optimistic lock conflict on {key}: expected revision "
            f"{expected_revision}, found {actual_revision}"
        )


# Warnings


class CascadeWarning(UserWarning):
    """Order deleted while dependent stage records still reference it."""

    def __init__(self, order_id: str, orphaned: Iterable[str]):
        self.order_id = order_id
        self.orphaned = tuple(orphaned)
        super().__init__(
            f"Order {order_id} deleted; {len(self.orphaned)} dependent "
            f"record(s) left orphaned: {', '.join(self.orphaned)}"
        )
