"""
iml_services.reconciliation_coordinator -- order-cycle fulfillment orchestration.

Responsibility:
    The only entry point the presentation layer calls to change state.
    Each operation re-reads what it modifies, validates, appends to the
    relevant stage history, recomputes totals with the quantity ledger,
    moves cycle statuses forward with the cycle engine and writes back.

Architecture position:
    Services -- orchestration over ``iml_kernel`` stores and ``iml_engines``.
    Constructs every store exactly once and wires them to a single
    persistence adapter, clock and sequence service.

Invariants enforced:
    - Stale input: operations take ids and re-read persisted state
      immediately before writing.
    - Validation precedes writes: a rejected request leaves every record
      family untouched.
    - A product sits on at most one undispatched billing record of its order.
    - A billing record yields at most one dispatch record.
    - Stage statuses only move forward; payment status is independent of
      dispatch.
    - Remaining labels, submitted flags and stock are derived on read.

Failure modes:
    - ValidationError (and NotEligibleError, CapacityExceededError,
      BillingPendingError) for rejected input.
    - AlreadyDispatchedError on a second dispatch of the same bill.
    - ImmutableEntryError / CycleNotEditableError when finalized data or a
      superseded cycle would change.
    - NotFoundError subclasses for unknown ids.

Usage:
    coordinator = ReconciliationCoordinator(InMemoryAdapter())
    coordinator.create_order(order)
    coordinator.move_to_purchase(order.order_id, "p1")
    coordinator.receive_labels(order.order_id, "p1", 1000)
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from iml_config import ImlConfiguration, get_active_config
from iml_engines.projections import (
    BillingDetailLine,
    PurchaseLine,
    StockLine,
    billing_detail,
    filter_items,
    group_by_category,
    group_by_company,
    purchase_lines,
    remaining_to_track,
    stock_for,
    stock_lines,
)
from iml_engines.quantity_ledger import (
    available_stock,
    labels_consumed,
    remaining_labels,
    sum_field,
    to_quantity,
    total_produced,
    total_received,
)
from iml_kernel.db.adapter import PersistenceAdapter, SqlAlchemyAdapter
from iml_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from iml_kernel.domain import cycles
from iml_kernel.domain.clock import Clock, SystemClock
from iml_kernel.domain.entries import (
    InventoryEntry,
    LabelReceiptEntry,
    ProductionEntry,
    PurchaseTrackingEntry,
    StageEntry,
    is_blank,
)
from iml_kernel.domain.records import (
    BilledProduct,
    BillingRecord,
    DispatchRecord,
    OrderReference,
)
from iml_kernel.domain.values import (
    Cycle,
    CycleStage,
    DispatchStatus,
    Order,
    PaymentStatus,
    Product,
    StageStatus,
    history_key,
)
from iml_kernel.exceptions import (
    AlreadyDispatchedError,
    BillingPendingError,
    CapacityExceededError,
    CascadeWarning,
    CycleNotEditableError,
    ImmutableEntryError,
    NotEligibleError,
    ValidationError,
)
from iml_kernel.logging_config import LogContext, configure_logging, get_logger
from iml_kernel.services.record_store import BillingStore, DispatchStore, OrderRepository
from iml_kernel.services.sequence_service import SequenceService
from iml_kernel.services.stage_store import (
    HistoryStore,
    InventoryStore,
    LabelReceiptStore,
    ProductionStore,
    PurchaseTrackingStore,
)

logger = get_logger("services.reconciliation")

UNKNOWN_ORDER = "Unknown Order"


@dataclass(frozen=True)
class ProductionSummary:
    """Production progress of one order product, derived on read."""
    order_id: str
    product_id: str
    labels_received: int
    labels_consumed: int
    remaining_labels: int
    produced: int
    is_submitted: bool
    entries: tuple[StageEntry, ...]


@dataclass(frozen=True)
class InventoryResult:
    entry: InventoryEntry
    category: str
    size: str
    available_stock: int


@dataclass(frozen=True)
class DeletionResult:
    order_id: str
    cascaded: bool
    orphaned: tuple[str, ...] = ()
    purged: tuple[str, ...] = ()


def _quantity_or_none(value: Any) -> int | None:
    """Blank input stays missing; anything else becomes an int."""
    return None if is_blank(value) else to_quantity(value)


def _text_or_none(value: Any) -> str | None:
    return None if is_blank(value) else str(value).strip()


class ReconciliationCoordinator:
    """
    Orchestrates every fulfillment stage over one persistence adapter.

    All stores are available as attributes (``orders``, ``label_receipts``,
    ``purchase_tracking``, ``production``, ``inventory``, ``billing``,
    ``dispatch``) for read-only inspection; mutations go through the
    coordinator methods.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        config: ImlConfiguration | None = None,
        clock: Clock | None = None,
    ):
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        keys = self._config.storage

        self.sequences = SequenceService(adapter, keys.sequences)
        self.orders = OrderRepository(adapter, keys.orders, self._clock)
        self.label_receipts = LabelReceiptStore(
            adapter, keys.label_receipts, self._clock, self.sequences
        )
        self.purchase_tracking = PurchaseTrackingStore(
            adapter, keys.purchase_tracking, self._clock, self.sequences
        )
        self.production = ProductionStore(
            adapter, keys.production, self._clock, self.sequences
        )
        self.inventory = InventoryStore(
            adapter, keys.inventory, self._clock, self.sequences
        )
        self.billing = BillingStore(adapter, keys.billing, self._clock)
        self.dispatch = DispatchStore(adapter, keys.dispatch, self._clock)

    @classmethod
    def from_config(
        cls,
        config: ImlConfiguration | None = None,
        clock: Clock | None = None,
    ) -> ReconciliationCoordinator:
        """
        Build a coordinator over the configured database.

        Configures logging at the configured level, initializes the engine
        from ``database_url`` and creates missing tables.
        """
        config = config or get_active_config()
        configure_logging(level=logging.getLevelName(config.log_level))
        init_engine_from_url(config.database_url)
        create_tables()
        return cls(SqlAlchemyAdapter(get_session_factory()), config=config, clock=clock)

    @property
    def history_stores(self) -> tuple[HistoryStore, ...]:
        return (
            self.label_receipts,
            self.purchase_tracking,
            self.production,
            self.inventory,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, order_id: str, product_id: str) -> tuple[Order, Product]:
        order = self.orders.get(order_id)
        return order, order.product(product_id)

    def _validate(self, entry: StageEntry) -> None:
        try:
            entry.validate()
        except ValidationError as exc:
            logger.warning(
                "validation_failed",
                extra={
                    "entity_type": exc.entity_type,
                    "missing_fields": list(exc.missing_fields),
                    "reason": exc.reason,
                },
            )
            raise

    def _amount(self, value: Decimal) -> Decimal:
        quantum = Decimal(1).scaleb(-self._config.amount_decimal_places)
        return value.quantize(quantum, rounding=ROUND_HALF_UP)

    def _cycle_entries(self, store: HistoryStore, key: str, cycle: Cycle) -> list[StageEntry]:
        return [e for e in store.history_for(key) if e.cycle_no == cycle.cycle_no]

    # =========================================================================
    # Order intake
    # =========================================================================

    def create_order(self, order: Order) -> Order:
        missing = [name for name in ("order_id",) if is_blank(getattr(order, name))]
        if missing:
            raise ValidationError("Order", missing)
        product_ids = [p.product_id for p in order.products]
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("Order", reason="product ids must be unique")
        for product in order.products:
            cycles.check_cycle_sequence(product)
        if order.created_at is None:
            order = replace(order, created_at=self._clock.now())
        self.orders.add(order)
        logger.info(
            "order_created",
            extra={
                "order_id": order.order_id,
                "order_number": order.order_number,
                "product_count": len(order.products),
            },
        )
        return order

    def get_order(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def list_orders(self, search: str | None = None) -> list[Order]:
        return filter_items(self.orders.all(), search)

    def update_order(self, order: Order) -> Order:
        """
        Save edited order and product details.

        Workflow state (cycles, purchase gate, purchase metadata) is owned
        by the coordinator and is carried over from the stored order, so an
        edit made from an outdated screen cannot roll it back.
        """
        stored = self.orders.get(order.order_id)
        stored_products = {p.product_id: p for p in stored.products}
        product_ids = [p.product_id for p in order.products]
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("Order", reason="product ids must be unique")
        products = []
        for product in order.products:
            previous = stored_products.get(product.product_id)
            if previous is not None:
                product = replace(
                    product,
                    cycles=previous.cycles,
                    move_to_purchase=previous.move_to_purchase,
                    label_type=previous.label_type,
                    supplier=previous.supplier,
                )
            else:
                cycles.check_cycle_sequence(product)
            products.append(product)
        updated = replace(order, created_at=stored.created_at, products=products)
        self.orders.save(updated)
        logger.info("order_updated", extra={"order_id": order.order_id})
        return updated

    def _dependents(self, order: Order) -> list[tuple[str, Any]]:
        found: list[tuple[str, Any]] = []
        for product in order.products:
            key = history_key(order.order_id, product.product_id)
            for store in self.history_stores:
                if store.latest(key) is not None:
                    found.append((f"{store.stage}:{key}", (store, key)))
        for record in self.billing.for_order(order.order_id):
            found.append((f"billing:{record.billing_id}", (self.billing, record.billing_id)))
        for record in self.dispatch.for_order(order.order_id):
            found.append((f"dispatch:{record.dispatch_id}", (self.dispatch, record.dispatch_id)))
        return found

    def delete_order(self, order_id: str, cascade: bool | None = None) -> DeletionResult:
        """
        Remove an order.

        Without ``cascade`` dependent stage histories, billing and dispatch
        records are left in place and a ``CascadeWarning`` is issued; they
        no longer count towards stock.  With ``cascade`` they are removed.
        """
        if cascade is None:
            cascade = self._config.cascade_on_delete
        with LogContext.bind(order_id=order_id):
            order = self.orders.get(order_id)
            dependents = self._dependents(order)
            labels = tuple(label for label, _ in dependents)

            if cascade:
                for _, (store, target) in dependents:
                    if isinstance(store, HistoryStore):
                        store.purge(target)
                    else:
                        store.delete(target)
            self.orders.delete(order_id)

            if cascade:
                logger.info(
                    "order_deleted",
                    extra={"cascade": True, "purged_count": len(labels)},
                )
                return DeletionResult(order_id, cascaded=True, purged=labels)

            if labels:
                logger.warning(
                    "order_deleted_with_orphans",
                    extra={"orphaned": list(labels)},
                )
                warnings.warn(CascadeWarning(order_id, labels), stacklevel=2)
            else:
                logger.info("order_deleted", extra={"cascade": False})
            return DeletionResult(order_id, cascaded=False, orphaned=labels)

    def add_cycle(self, order_id: str, product_id: str, planned: Any) -> Cycle:
        """Open the next production cycle of a product."""
        planned = _quantity_or_none(planned)
        if planned is None:
            raise ValidationError("Cycle", ["planned"])
        if planned <= 0:
            raise ValidationError("Cycle", reason="planned quantity must be positive")
        with LogContext.bind(order_id=order_id, product_id=product_id):
            order, product = self._load(order_id, product_id)
            cycle = cycles.add_cycle(product, planned=planned)
            self.orders.save(order)
            logger.info(
                "cycle_added",
                extra={"cycle_no": cycle.cycle_no, "planned": cycle.quantities.planned},
            )
            return cycle

    # =========================================================================
    # Purchase
    # =========================================================================

    def move_to_purchase(self, order_id: str, product_id: str) -> Product:
        """Open the purchase gate of a product.  Idempotent."""
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="purchase"):
            order, product = self._load(order_id, product_id)
            if product.move_to_purchase and product.cycles:
                return product
            product.move_to_purchase = True
            cycles.ensure_cycle(product)
            self.orders.save(order)
            logger.info("product_moved_to_purchase")
            return product

    def move_order_to_purchase(self, order_id: str) -> list[Product]:
        order = self.orders.get(order_id)
        return [
            self.move_to_purchase(order_id, product.product_id)
            for product in order.products
        ]

    def record_purchase_details(
        self,
        order_id: str,
        product_id: str,
        label_type: str | None,
        supplier: str | None,
    ) -> Product:
        missing = [
            name
            for name, value in (("label_type", label_type), ("supplier", supplier))
            if is_blank(value)
        ]
        if missing:
            raise ValidationError("PurchaseDetails", missing)
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="purchase"):
            order, product = self._load(order_id, product_id)
            if not product.move_to_purchase:
                raise NotEligibleError(order_id, product_id, "PurchaseDetails")
            product.label_type = label_type.strip()
            product.supplier = supplier.strip()
            self.orders.save(order)
            logger.info(
                "purchase_details_recorded",
                extra={"label_type": product.label_type, "supplier": product.supplier},
            )
            return product

    def track_purchase(
        self,
        order_id: str,
        product_id: str,
        quantity: Any,
        comment: str = "",
    ) -> StageEntry:
        """Record labels ordered from the supplier, capped at what is left to order."""
        entry = PurchaseTrackingEntry(quantity=_quantity_or_none(quantity), comment=comment or "")
        self._validate(entry)
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="purchase"):
            order, product = self._load(order_id, product_id)
            if not product.move_to_purchase:
                raise NotEligibleError(order_id, product_id, "PurchaseTracking")
            key = history_key(order_id, product_id)
            left = remaining_to_track(product.ordered_qty, self.purchase_tracking.history_for(key))
            if entry.quantity > left:
                logger.warning(
                    "purchase_tracking_exceeds_order",
                    extra={"requested": entry.quantity, "available": left},
                )
                raise CapacityExceededError("PurchaseTracking", "quantity", entry.quantity, left)
            cycle = cycles.ensure_cycle(product)
            stored = self.purchase_tracking.append_entry(
                key, replace(entry, cycle_no=cycle.cycle_no)
            )
            self.orders.save(order)
            return stored

    def receive_labels(
        self,
        order_id: str,
        product_id: str,
        quantity: Any,
        all_received: bool = False,
        comment: str = "",
    ) -> StageEntry:
        """Record a label delivery for a product moved to purchase."""
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="label_receipt"):
            order, product = self._load(order_id, product_id)
            if not product.move_to_purchase:
                logger.warning("label_receipt_not_eligible")
                raise NotEligibleError(order_id, product_id)
            entry = LabelReceiptEntry(
                quantity=_quantity_or_none(quantity),
                all_received=bool(all_received),
                comment=comment or "",
            )
            self._validate(entry)
            cycle = cycles.ensure_cycle(product)
            stored = self.label_receipts.append_entry(
                history_key(order_id, product_id),
                replace(entry, cycle_no=cycle.cycle_no),
            )
            if all_received:
                cycles.mark_labels_received(cycle)
                logger.info("labels_fully_received", extra={"cycle_no": cycle.cycle_no})
            self.orders.save(order)
            return stored

    # =========================================================================
    # Production
    # =========================================================================

    def record_production(
        self,
        order_id: str,
        product_id: str,
        accepted_components: Any,
        rejected_components: Any,
        packing_incharge: str | None,
        approved_by: str | None,
        label_wastage: Any = 0,
        shift: str = "",
        machine_number: str = "",
    ) -> StageEntry:
        """Append a production followup against the current cycle."""
        entry = ProductionEntry(
            accepted_components=_quantity_or_none(accepted_components),
            rejected_components=_quantity_or_none(rejected_components),
            label_wastage=to_quantity(label_wastage),
            shift=shift or "",
            packing_incharge=_text_or_none(packing_incharge),
            approved_by=_text_or_none(approved_by),
            machine_number=machine_number or "",
        )
        self._validate(entry)
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="production"):
            order, product = self._load(order_id, product_id)
            key = history_key(order_id, product_id)
            cycle = cycles.ensure_cycle(product)
            cycles.require_editable(product, cycle)

            produced = total_produced(self._cycle_entries(self.production, key, cycle))
            cycles.set_quantities(
                cycle,
                produced=produced + entry.accepted_components,
                enforce_capacity=self._config.enforce_cycle_capacity,
            )
            stored = self.production.append_entry(key, replace(entry, cycle_no=cycle.cycle_no))
            before = cycle.status_of(CycleStage.PRODUCTION)
            after = cycles.sync_production_status(cycle)
            self.orders.save(order)
            if after is not before:
                logger.info(
                    "cycle_stage_advanced",
                    extra={
                        "cycle_no": cycle.cycle_no,
                        "from_status": before.value,
                        "to_status": after.value,
                    },
                )
            return stored

    def delete_production_entry(self, order_id: str, product_id: str, entry_id: int) -> StageEntry:
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="production"):
            order, product = self._load(order_id, product_id)
            key = history_key(order_id, product_id)
            target = next(
                (e for e in self.production.history_for(key) if e.entry_id == entry_id),
                None,
            )
            cycle = cycles.current_cycle(product)
            if target is not None and cycle is not None:
                if target.cycle_no is not None and target.cycle_no != cycle.cycle_no:
                    raise CycleNotEditableError(product_id, target.cycle_no, cycle.cycle_no)
                if cycle.status_of(CycleStage.PRODUCTION) is StageStatus.DONE:
                    raise ImmutableEntryError(
                        "ProductionEntry",
                        f"{key}#{entry_id}",
                        f"production of cycle {cycle.cycle_no} is complete",
                    )
            removed = self.production.delete_entry(key, entry_id)
            if cycle is not None:
                cycles.set_quantities(
                    cycle,
                    produced=total_produced(self._cycle_entries(self.production, key, cycle)),
                    enforce_capacity=False,
                )
                self.orders.save(order)
            return removed

    def submit_production(self, order_id: str, product_id: str) -> int:
        """Finalize the production history of a product."""
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="production"):
            self._load(order_id, product_id)
            return self.production.mark_final(history_key(order_id, product_id))

    def production_summary(self, order_id: str, product_id: str) -> ProductionSummary:
        self._load(order_id, product_id)
        key = history_key(order_id, product_id)
        entries = tuple(self.production.history_for(key))
        received = total_received(self.label_receipts.history_for(key))
        return ProductionSummary(
            order_id=order_id,
            product_id=product_id,
            labels_received=received,
            labels_consumed=labels_consumed(entries),
            remaining_labels=remaining_labels(received, entries),
            produced=total_produced(entries),
            is_submitted=self.production.is_final(key),
            entries=entries,
        )

    # =========================================================================
    # Inventory
    # =========================================================================

    def verify_inventory(
        self,
        order_id: str,
        product_id: str,
        final_qty: Any,
        remarks: str = "",
    ) -> InventoryResult:
        """Record a verified count and return the refreshed stock for its category/size."""
        entry = InventoryEntry(final_qty=_quantity_or_none(final_qty), remarks=remarks or "")
        self._validate(entry)
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="inventory"):
            order, product = self._load(order_id, product_id)
            key = history_key(order_id, product_id)
            cycle = cycles.ensure_cycle(product)
            stored = self.inventory.append_entry(key, replace(entry, cycle_no=cycle.cycle_no))

            cycles.promote(cycle, CycleStage.INVENTORY, StageStatus.IN_PROGRESS)
            verified = available_stock(self._cycle_entries(self.inventory, key, cycle))
            q = cycle.quantities
            if (
                cycle.status_of(CycleStage.PRODUCTION) is StageStatus.DONE
                and verified >= q.produced + q.stock
            ):
                cycles.promote(cycle, CycleStage.INVENTORY, StageStatus.DONE)
            self.orders.save(order)

            stock = self.available_stock(product.product_name, product.size)
            logger.info(
                "inventory_verified",
                extra={
                    "category": product.product_name,
                    "size": product.size,
                    "available_stock": stock,
                },
            )
            return InventoryResult(stored, product.product_name, product.size, stock)

    def available_stock(self, category: str, size: str) -> int:
        return stock_for(
            self.orders.all(), self.inventory.all_histories(), category, size
        )

    def stock_overview(self) -> list[StockLine]:
        return stock_lines(
            self.orders.all(),
            self.inventory.all_histories(),
            self._config.low_stock_threshold,
        )

    def stock_by_category(self) -> dict[str, dict[str, StockLine]]:
        return group_by_category(self.stock_overview())

    def allocated_stock(self, category: str, size: str) -> int:
        """Stock already drawn into cycles of live orders for a category/size."""
        return sum(
            cycle.quantities.stock
            for order in self.orders.all()
            for product in order.products
            if product.product_name == category and product.size == size
            for cycle in product.cycles
        )

    def allocate_stock(self, order_id: str, product_id: str, quantity: Any) -> Cycle:
        """
        Cover part of the current cycle from verified stock instead of production.

        The quantity is drawn against the available stock of the product's
        category and size, less what other cycles already hold.
        """
        quantity = _quantity_or_none(quantity)
        if quantity is None:
            raise ValidationError("StockAllocation", ["quantity"])
        if quantity <= 0:
            raise ValidationError("StockAllocation", reason="quantity must be positive")
        with LogContext.bind(order_id=order_id, product_id=product_id, stage="production"):
            order, product = self._load(order_id, product_id)
            cycle = cycles.ensure_cycle(product)
            cycles.require_editable(product, cycle)

            category, size = product.product_name, product.size
            left = max(
                0,
                self.available_stock(category, size) - self.allocated_stock(category, size),
            )
            if quantity > left:
                logger.warning(
                    "stock_allocation_exceeds_available",
                    extra={"requested": quantity, "available": left},
                )
                raise CapacityExceededError("StockAllocation", "quantity", quantity, left)

            cycles.set_quantities(
                cycle,
                stock=cycle.quantities.stock + quantity,
                enforce_capacity=self._config.enforce_cycle_capacity,
            )
            before = cycle.status_of(CycleStage.PRODUCTION)
            after = cycles.sync_production_status(cycle)
            self.orders.save(order)
            logger.info(
                "stock_allocated",
                extra={
                    "cycle_no": cycle.cycle_no,
                    "quantity": quantity,
                    "category": category,
                    "size": size,
                    "from_status": before.value,
                    "to_status": after.value,
                },
            )
            return cycle

    # =========================================================================
    # Billing
    # =========================================================================

    def send_to_billing(
        self,
        order_id: str,
        selected_products: Iterable[str] | Mapping[str, Any],
    ) -> BillingRecord:
        """
        Create one billing record for the selected products of an order.

        ``selected_products`` is either product ids (billed at their
        verified inventory total) or a mapping of product id to the final
        quantity to bill.
        """
        if isinstance(selected_products, Mapping):
            overrides = {pid: to_quantity(qty) for pid, qty in selected_products.items()}
        else:
            overrides = {pid: None for pid in selected_products}
        if not overrides:
            raise ValidationError("BillingRecord", ["selected_products"])
        negative = sorted(pid for pid, qty in overrides.items() if qty is not None and qty < 0)
        if negative:
            raise ValidationError(
                "BillingRecord",
                reason=f"final quantity must not be negative for {', '.join(negative)}",
            )

        with LogContext.bind(order_id=order_id, stage="billing"):
            order = self.orders.get(order_id)
            selected = [order.product(pid) for pid in overrides]
            for pending in self.billing.for_order(order_id):
                overlap = sorted(pending.billed_product_ids() & overrides.keys())
                if overlap and not pending.is_dispatched:
                    logger.warning(
                        "billing_rejected_pending_bill",
                        extra={"billing_id": pending.billing_id, "product_ids": overlap},
                    )
                    raise BillingPendingError(order_id, pending.billing_id, overlap)
            unit_rate = order.order_details.unit_rate()

            billed: list[BilledProduct] = []
            for product in selected:
                final_qty = overrides[product.product_id]
                if final_qty is None:
                    final_qty = available_stock(
                        self.inventory.history_for(history_key(order_id, product.product_id))
                    )
                billed.append(
                    BilledProduct(
                        product_id=product.product_id,
                        product_name=product.product_name,
                        size=product.size,
                        iml_name=product.iml_name,
                        iml_type=product.iml_type.value,
                        order_qty=product.ordered_qty,
                        final_qty=final_qty,
                    )
                )
            total_final = sum(p.final_qty for p in billed)

            billing_id = f"BILL-{self.sequences.next_value(SequenceService.BILLING):04d}"
            record = BillingRecord(
                billing_id=billing_id,
                order=OrderReference(
                    order_id=order.order_id,
                    order_number=order.order_number,
                    company=order.contact.company,
                    contact_name=order.contact.contact_name,
                    phone=order.contact.phone,
                ),
                products=tuple(billed),
                total_final_qty=total_final,
                estimated_amount=self._amount(Decimal(total_final) * unit_rate),
                payment_status=PaymentStatus.PENDING,
                created_at=self._clock.now(),
            )
            self.billing.add(record)

            for product in selected:
                cycle = cycles.current_cycle(product)
                if cycle is not None:
                    cycles.promote(cycle, CycleStage.BILLING, StageStatus.DONE)
            self.orders.save(order)

            logger.info(
                "order_billed",
                extra={
                    "billing_id": billing_id,
                    "product_count": len(billed),
                    "total_final_qty": total_final,
                    "estimated_amount": record.estimated_amount,
                },
            )
            return record

    def billing_details(self, billing_id: str) -> list[BillingDetailLine]:
        record = self.billing.get(billing_id)
        return billing_detail(record, self.orders.find(record.order.order_id))

    def set_payment_status(
        self,
        billing_id: str,
        status: PaymentStatus | str,
    ) -> BillingRecord:
        """Change payment status.  Does not affect dispatch."""
        if not isinstance(status, PaymentStatus):
            try:
                status = PaymentStatus(status)
            except ValueError:
                raise ValidationError(
                    "BillingRecord", reason=f"unknown payment status {status!r}"
                ) from None
        with LogContext.bind(billing_id=billing_id, stage="billing"):
            record = self.billing.get(billing_id)
            updated = replace(record, payment_status=status)
            self.billing.save(updated)
            logger.info("payment_status_changed", extra={"payment_status": status.value})
            return updated

    # =========================================================================
    # Dispatch
    # =========================================================================

    def move_to_dispatch(self, billing_id: str) -> DispatchRecord:
        """Create the dispatch record of a bill.  One-way and at most once."""
        with LogContext.bind(billing_id=billing_id, stage="dispatch"):
            record = self.billing.get(billing_id)
            if record.is_dispatched or self.dispatch.for_billing(billing_id):
                logger.warning("dispatch_rejected_already_dispatched")
                raise AlreadyDispatchedError(
                    billing_id,
                    record.dispatched_at.isoformat() if record.dispatched_at else None,
                )

            order = self.orders.find(record.order.order_id)
            cycle_refs: list[str] = []
            if order is not None:
                billed_ids = record.billed_product_ids()
                for product in order.products:
                    cycle = cycles.current_cycle(product)
                    if product.product_id in billed_ids and cycle is not None:
                        cycles.promote(cycle, CycleStage.DISPATCH, StageStatus.IN_PROGRESS)
                        cycle_refs.append(f"{product.product_id}#{cycle.cycle_no}")

            now = self._clock.now()
            seq = self.sequences.next_value(SequenceService.DISPATCH)
            dispatch = DispatchRecord(
                dispatch_id=f"DISPATCH_{billing_id}_{seq}",
                billing_id=billing_id,
                order=record.order,
                products=record.products,
                total_final_qty=record.total_final_qty,
                estimated_amount=record.estimated_amount,
                dispatch_date=self._clock.today_iso(),
                status=DispatchStatus.READY,
                created_at=now,
                cycle_refs=tuple(cycle_refs),
            )
            self.dispatch.add(dispatch)

            # re-read before flipping the bill
            current = self.billing.get(billing_id)
            self.billing.save(
                replace(current, dispatched_at=now, dispatch_id=dispatch.dispatch_id)
            )
            if order is not None:
                self.orders.save(order)

            logger.info("billing_dispatched", extra={"dispatch_id": dispatch.dispatch_id})
            return dispatch

    def save_lr_number(self, dispatch_id: str, lr_number: str | None) -> DispatchRecord:
        """Record the lorry receipt number; marks the shipment Dispatched."""
        if is_blank(lr_number):
            raise ValidationError("DispatchRecord", ["lr_number"])
        record = self.dispatch.get(dispatch_id)
        with LogContext.bind(billing_id=record.billing_id, stage="dispatch"):
            updated = replace(
                record,
                lr_number=lr_number.strip(),
                status=DispatchStatus.DISPATCHED,
            )
            self.dispatch.save(updated)

            order = self.orders.find(record.order.order_id)
            if order is not None and record.cycle_refs:
                cycle_index = {
                    f"{product.product_id}#{cycle.cycle_no}": cycle
                    for product in order.products
                    for cycle in product.cycles
                }
                for ref in record.cycle_refs:
                    cycle = cycle_index.get(ref)
                    if cycle is not None:
                        cycles.promote(cycle, CycleStage.DISPATCH, StageStatus.DONE)
                self.orders.save(order)

            logger.info(
                "lr_number_saved",
                extra={"dispatch_id": dispatch_id, "lr_number": updated.lr_number},
            )
            return updated

    # =========================================================================
    # Read projections
    # =========================================================================

    def orders_view(self, search: str | None = None) -> dict[str, dict[str, list[Order]]]:
        return group_by_company(self.list_orders(search))

    def purchase_view(self, search: str | None = None) -> dict[str, dict[str, list[PurchaseLine]]]:
        lines = purchase_lines(
            self.orders.all(),
            self.purchase_tracking.all_histories(),
            self.label_receipts.all_histories(),
        )
        return group_by_company(filter_items(lines, search))

    def billing_view(self, search: str | None = None) -> dict[str, dict[str, list[BillingRecord]]]:
        return group_by_company(
            filter_items(self.billing.all(), search), order_fallback=UNKNOWN_ORDER
        )

    def dispatch_view(self, search: str | None = None) -> dict[str, dict[str, list[DispatchRecord]]]:
        return group_by_company(
            filter_items(self.dispatch.all(), search), order_fallback=UNKNOWN_ORDER
        )

    def tracked_quantity(self, order_id: str, product_id: str) -> int:
        return sum_field(
            self.purchase_tracking.history_for(history_key(order_id, product_id)),
            "quantity",
        )
