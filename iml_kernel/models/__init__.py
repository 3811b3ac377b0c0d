"""ORM models for the IML kernel."""

from iml_kernel.models.stored_record import StoredRecord

__all__ = [
    "StoredRecord",
]
