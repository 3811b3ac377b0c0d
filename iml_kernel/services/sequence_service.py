"""
SequenceService -- monotonic sequence allocation.

Responsibility:
    Provides strictly increasing numbers for billing ids, dispatch ids and
    stage entry ids.  All counters live in one document (name -> last
    value) under the sequences storage key.

Architecture position:
    Kernel > Services.  Called by the stage stores (entry ids) and the
    reconciliation coordinator (billing and dispatch ids).

Invariants enforced:
    - Monotonicity: ``next_value`` always returns a value greater than any
      value previously returned for the same name, including after the
      entry that used it was deleted.  Values are never derived from the
      data (no max-plus-one over existing records).

Failure modes:
    - ValueError on an empty sequence name.
"""

from iml_kernel.db.adapter import PersistenceAdapter
from iml_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating sequence numbers.

    Usage:
        seq = sequence_service.next_value(SequenceService.BILLING)
    """

    # Well-known sequence names
    BILLING = "billing"
    DISPATCH = "dispatch"

    DEFAULT_STORAGE_KEY = "iml_sequences"

    def __init__(
        self,
        adapter: PersistenceAdapter,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ):
        self._adapter = adapter
        self._storage_key = storage_key

    def _counters(self) -> dict[str, int]:
        return dict(self._adapter.get(self._storage_key) or {})

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Returns:
            The next sequence value (always > 0).
        """
        if not sequence_name:
            raise ValueError("sequence_name must not be empty")
        counters = self._counters()
        value = int(counters.get(sequence_name, 0)) + 1
        counters[sequence_name] = value
        self._adapter.set(self._storage_key, counters)
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        value = self._counters().get(sequence_name)
        return int(value) if value is not None else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: only for tests and data migration.
        """
        counters = self._counters()
        counters[sequence_name] = value
        self._adapter.set(self._storage_key, counters)
