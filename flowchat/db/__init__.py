"""SQLite storage: connection wrapper, schema and migrations."""

from flowchat.db.connection import (
    ConstraintViolationError,
    Database,
    DatabaseHandle,
    StorageError,
    StorageUnavailableError,
)

__all__ = [
    "ConstraintViolationError",
    "Database",
    "DatabaseHandle",
    "StorageError",
    "StorageUnavailableError",
]
