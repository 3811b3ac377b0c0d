"""
Persistence adapters (``iml_kernel.db.adapter``).

Responsibility:
    The one gateway through which stage stores read and write persisted
    record families.  Each family is a JSON document stored under a named
    key; every write bumps a per-key revision counter.

Architecture position:
    Kernel > DB.  Stores in ``iml_kernel.services`` depend on the
    ``PersistenceAdapter`` interface only.

Invariants enforced:
    - Values are JSON-serializable.  Both adapters round-trip through
      ``json`` on write, so a value that cannot be encoded fails the write
      instead of surfacing later on read.
    - ``get`` returns a fresh copy; mutating it never changes stored state.
    - When ``expected_revision`` is given, a write only succeeds if the key
      is still at that revision (revision 0 means "absent").

Failure modes:
    - OptimisticLockError when ``expected_revision`` does not match.
    - TypeError when the value is not JSON-serializable.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from iml_kernel.db.engine import session_scope
from iml_kernel.exceptions import OptimisticLockError
from iml_kernel.logging_config import get_logger
from iml_kernel.models.stored_record import StoredRecord

logger = get_logger("db.adapter")


class PersistenceAdapter(ABC):
    """Key -> JSON document store with per-key revisions."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, expected_revision: int | None = None) -> int:
        """Store ``value`` under ``key`` and return the new revision."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...

    @abstractmethod
    def revision(self, key: str) -> int:
        """Current revision of ``key``; 0 when absent."""
        ...

    def _check_revision(self, key: str, expected: int | None, actual: int) -> None:
        if expected is not None and expected != actual:
            logger.warning(
                "optimistic_lock_conflict",
                extra={
                    "key": key,
                    "expected_revision": expected,
                    "actual_revision": actual,
                },
            )
            raise OptimisticLockError(key, expected, actual)


class InMemoryAdapter(PersistenceAdapter):
    """Process-local adapter used by tests and single-session tools."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._revisions: dict[str, int] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any, expected_revision: int | None = None) -> int:
        actual = self._revisions.get(key, 0)
        self._check_revision(key, expected_revision, actual)
        self._data[key] = json.dumps(value)
        self._revisions[key] = actual + 1
        return actual + 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._revisions.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def revision(self, key: str) -> int:
        return self._revisions.get(key, 0)


class SqlAlchemyAdapter(PersistenceAdapter):
    """
    Adapter backed by the ``stored_records`` table.

    Each call runs in its own short transaction from ``session_factory``.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _row(self, session: Session, key: str) -> StoredRecord | None:
        return session.execute(
            select(StoredRecord).where(StoredRecord.key == key)
        ).scalar_one_or_none()

    def get(self, key: str, default: Any = None) -> Any:
        with session_scope(self._session_factory) as session:
            row = self._row(session, key)
            if row is None:
                return default
            return json.loads(row.payload)

    def set(self, key: str, value: Any, expected_revision: int | None = None) -> int:
        payload = json.dumps(value)
        with session_scope(self._session_factory) as session:
            row = self._row(session, key)
            actual = row.revision if row is not None else 0
            self._check_revision(key, expected_revision, actual)
            if row is None:
                row = StoredRecord(key=key, payload=payload, revision=1)
                session.add(row)
            else:
                row.payload = payload
                row.revision = actual + 1
            new_revision = row.revision
        logger.debug("record_written", extra={"key": key, "revision": new_revision})
        return new_revision

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            row = self._row(session, key)
            if row is not None:
                session.delete(row)

    def keys(self) -> list[str]:
        with session_scope(self._session_factory) as session:
            return list(
                session.execute(
                    select(StoredRecord.key).order_by(StoredRecord.key)
                ).scalars()
            )

    def revision(self, key: str) -> int:
        with session_scope(self._session_factory) as session:
            row = self._row(session, key)
            return row.revision if row is not None else 0
