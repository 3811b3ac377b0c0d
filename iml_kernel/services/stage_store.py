"""
Stage Stores -- append-only per-product stage histories.

Responsibility:
    Own the label receipt, purchase tracking, production and inventory
    histories.  Each store holds a map ``orderId_productId -> [entry, ...]``
    under its storage key and is the only code that reads or writes it.

Architecture position:
    Kernel > Services.  Called by the reconciliation coordinator; reads and
    writes through the ``PersistenceAdapter`` only.

Invariants enforced:
    - Validation happens before any read or write: a rejected entry leaves
      the store untouched.
    - Entries are append-only.  ``entry_id`` comes from the sequence
      service and ``recorded_at`` from the clock; callers never set them.
    - Finalized (submitted) entries cannot be deleted.
    - Derived values (remaining labels, submitted flag, stock) are NOT
      stored next to the history; they are computed on read.

Failure modes:
    - ValidationError naming all missing required fields.
    - ImmutableEntryError when deleting a finalized entry.
    - EntryNotFoundError when deleting an unknown entry id.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import replace
from typing import ClassVar, overload

from iml_kernel.db.adapter import PersistenceAdapter
from iml_kernel.domain.clock import Clock
from iml_kernel.domain.entries import (
    InventoryEntry,
    LabelReceiptEntry,
    ProductionEntry,
    PurchaseTrackingEntry,
    StageEntry,
)
from iml_kernel.exceptions import (
    EntryNotFoundError,
    ImmutableEntryError,
    ValidationError,
)
from iml_kernel.logging_config import get_logger
from iml_kernel.services.base import BaseStore
from iml_kernel.services.sequence_service import SequenceService

logger = get_logger("services.stage_store")


class HistoryView(Sequence):
    """
    Read-only snapshot of one key's history.

    Loading is deferred until the view is first read; after that the
    snapshot is fixed, so iterating twice yields the same entries even if
    the store has been appended to in between.
    """

    def __init__(self, loader: Callable[[], list[StageEntry]]):
        self._loader = loader
        self._entries: tuple[StageEntry, ...] | None = None

    def _snapshot(self) -> tuple[StageEntry, ...]:
        if self._entries is None:
            self._entries = tuple(self._loader())
        return self._entries

    @overload
    def __getitem__(self, index: int) -> StageEntry: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[StageEntry, ...]: ...

    def __getitem__(self, index):
        return self._snapshot()[index]

    def __len__(self) -> int:
        return len(self._snapshot())

    def __iter__(self) -> Iterator[StageEntry]:
        return iter(self._snapshot())

    def __repr__(self) -> str:
        state = "unloaded" if self._entries is None else f"{len(self._entries)} entries"
        return f"<HistoryView {state}>"


class HistoryStore(BaseStore):
    """Append-only history map for one stage."""

    entry_type: ClassVar[type[StageEntry]] = StageEntry
    stage: ClassVar[str] = "stage"

    def __init__(
        self,
        adapter: PersistenceAdapter,
        storage_key: str,
        clock: Clock | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(adapter, storage_key, clock)
        self.sequences = sequences or SequenceService(adapter)

    # -- internal -----------------------------------------------------------

    def _load_map(self) -> dict[str, list[dict]]:
        return self._read({})

    def _decode(self, raw: list[dict]) -> list[StageEntry]:
        return [self.entry_type.from_dict(item) for item in raw]

    # -- writes -------------------------------------------------------------

    def append_entry(self, key: str, entry: StageEntry) -> StageEntry:
        """
        Validate ``entry`` and append it to the history of ``key``.

        Returns the stored entry with ``entry_id`` and ``recorded_at`` set.
        """
        if not isinstance(entry, self.entry_type):
            raise TypeError(
                f"{type(self).__name__} accepts {self.entry_type.__name__}, "
                f"got {type(entry).__name__}"
            )
        try:
            entry.validate()
        except ValidationError as exc:
            logger.warning(
                "stage_entry_rejected",
                extra={
                    "stage": self.stage,
                    "history_key": key,
                    "missing_fields": list(exc.missing_fields),
                    "reason": exc.reason,
                },
            )
            raise

        stamped = replace(
            entry,
            entry_id=self.sequences.next_value(f"{self.stage}_entry"),
            recorded_at=self.clock.now(),
            submitted=False,
        )
        histories = self._load_map()
        histories.setdefault(key, []).append(stamped.to_dict())
        self._write(histories)
        logger.info(
            "stage_entry_appended",
            extra={
                "stage": self.stage,
                "history_key": key,
                "entry_id": stamped.entry_id,
                "cycle_no": stamped.cycle_no,
            },
        )
        return stamped

    def mark_final(self, key: str) -> int:
        """Set ``submitted`` on every entry of ``key``; returns the entry count."""
        histories = self._load_map()
        entries = self._decode(histories.get(key, []))
        if not entries:
            return 0
        histories[key] = [e.finalized().to_dict() for e in entries]
        self._write(histories)
        logger.info(
            "stage_history_finalized",
            extra={"stage": self.stage, "history_key": key, "entry_count": len(entries)},
        )
        return len(entries)

    def delete_entry(self, key: str, entry_id: int) -> StageEntry:
        histories = self._load_map()
        entries = self._decode(histories.get(key, []))
        for index, entry in enumerate(entries):
            if entry.entry_id == entry_id:
                break
        else:
            raise EntryNotFoundError(self.stage, key, entry_id)
        if entry.submitted:
            raise ImmutableEntryError(
                self.entry_type.ENTITY_NAME,
                f"{key}#{entry_id}",
                "entry has been submitted",
            )
        del entries[index]
        if entries:
            histories[key] = [e.to_dict() for e in entries]
        else:
            histories.pop(key, None)
        self._write(histories)
        logger.info(
            "stage_entry_deleted",
            extra={"stage": self.stage, "history_key": key, "entry_id": entry_id},
        )
        return entry

    def purge(self, key: str) -> int:
        """Remove the whole history of ``key``; returns the number of entries removed."""
        histories = self._load_map()
        removed = histories.pop(key, None)
        if removed is None:
            return 0
        self._write(histories)
        return len(removed)

    # -- reads --------------------------------------------------------------

    def latest(self, key: str) -> StageEntry | None:
        raw = self._load_map().get(key)
        if not raw:
            return None
        return self.entry_type.from_dict(raw[-1])

    def history_for(self, key: str) -> HistoryView:
        return HistoryView(lambda: self._decode(self._load_map().get(key, [])))

    def is_final(self, key: str) -> bool:
        entries = self._decode(self._load_map().get(key, []))
        return bool(entries) and all(e.submitted for e in entries)

    def keys(self) -> list[str]:
        return list(self._load_map())

    def all_histories(self) -> dict[str, tuple[StageEntry, ...]]:
        return {
            key: tuple(self._decode(raw))
            for key, raw in self._load_map().items()
        }


class LabelReceiptStore(HistoryStore):
    entry_type = LabelReceiptEntry
    stage = "label_receipt"


class PurchaseTrackingStore(HistoryStore):
    entry_type = PurchaseTrackingEntry
    stage = "purchase_tracking"


class ProductionStore(HistoryStore):
    entry_type = ProductionEntry
    stage = "production"


class InventoryStore(HistoryStore):
    entry_type = InventoryEntry
    stage = "inventory"
