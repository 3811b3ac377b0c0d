"""
StoredRecord -- one persisted record family per row.

Each row holds the JSON document stored under a named key (``iml_orders``,
``iml_production_followups`` ...) together with a revision counter that is
incremented on every write.  The revision backs the optional optimistic
check in ``SqlAlchemyAdapter.set``.
"""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from iml_kernel.db.base import TrackedBase


class StoredRecord(TrackedBase):
    __tablename__ = "stored_records"

    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    # JSON-encoded document
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    revision: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<StoredRecord {self.key} rev={self.revision}>"
