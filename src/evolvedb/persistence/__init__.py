"""Persistence layer: the database file and its host-local lock."""

from evolvedb.persistence.database_file import DatabaseFile
from evolvedb.persistence.lock import (
    LockHandle,
    LockManager,
    LockReaper,
    LockRecord,
    LockState,
    LockStatus,
    process_is_alive,
)

__all__ = [
    "DatabaseFile",
    "LockHandle",
    "LockManager",
    "LockReaper",
    "LockRecord",
    "LockState",
    "LockStatus",
    "process_is_alive",
]
