"""
BaseStore -- abstract base for all kernel stores.

Responsibility:
    Provides the common constructor for every store in the kernel layer.
    A store owns exactly one record family, identified by its storage key,
    and reaches it only through the ``PersistenceAdapter``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Stores never cache documents between calls: every operation re-reads
      the family from the adapter, so a write from another store instance
      is visible to the next read.
"""

from abc import ABC
from typing import Any

from iml_kernel.db.adapter import PersistenceAdapter
from iml_kernel.domain.clock import Clock, SystemClock


class BaseStore(ABC):
    """
    Abstract base class for stores over one storage key.

    Non-goals:
        - Does NOT retry on OptimisticLockError; the caller decides.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        storage_key: str,
        clock: Clock | None = None,
    ):
        self.adapter = adapter
        self.storage_key = storage_key
        self.clock = clock or SystemClock()

    def _read(self, default: Any) -> Any:
        value = self.adapter.get(self.storage_key)
        return default if value is None else value

    def _write(self, value: Any, expected_revision: int | None = None) -> int:
        return self.adapter.set(self.storage_key, value, expected_revision=expected_revision)

    @property
    def revision(self) -> int:
        return self.adapter.revision(self.storage_key)
