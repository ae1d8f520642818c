"""
evolvedb — error taxonomy

File: src/evolvedb/errors.py
Last updated: 2026-10-12

Purpose
- Define the typed failures raised by persistence, locking, shape comparison and
  version bumps so the CLI boundary can route them to stable exit codes.

Functional requirements
- Every message carries enough context (paths, versions, pids, timestamps) for an
  operator to decide between retrying and manual intervention.
- Filesystem failures outside this taxonomy propagate as plain ``OSError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path


class EvolveDBError(RuntimeError):
    """Base class for evolvedb failures."""


class SchemaParseError(EvolveDBError, ValueError):
    """Raised when a version counter or stored record cannot be parsed."""

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        self.path = None if path is None else Path(path)
        super().__init__(message if path is None else f"{message} ({Path(path).as_posix()})")


class LockContentionError(EvolveDBError):
    """Raised when the database lock is held by another live, non-stale owner."""

    def __init__(
        self,
        *,
        lock_path: Path,
        owner_pid: int | None = None,
        created_at: datetime | None = None,
        age_seconds: float | None = None,
        reason: str | None = None,
    ) -> None:
        self.lock_path = lock_path
        self.owner_pid = owner_pid
        self.created_at = created_at
        self.age_seconds = age_seconds
        if owner_pid is None or created_at is None:
            detail = reason or "lock sentinel could not be reclaimed"
            message = (
                f"database is locked ({detail}); delete {lock_path.as_posix()} "
                "if you are sure it is stale"
            )
        else:
            age = 0.0 if age_seconds is None else max(age_seconds, 0.0)
            message = (
                f"database is locked by pid {owner_pid} since "
                f"{created_at.isoformat(timespec='seconds')} ({age:.0f}s ago); "
                f"delete {lock_path.as_posix()} only if that process is confirmed gone"
            )
        super().__init__(message)


class CompileError(EvolveDBError):
    """Raised by a shape oracle when a type definition fails to compile."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        diagnostics: str = "",
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.diagnostics = diagnostics
        full = message
        if diagnostics.strip():
            full = f"{message}: {diagnostics.strip()}"
        super().__init__(full)


__all__ = [
    "CompileError",
    "EvolveDBError",
    "LockContentionError",
    "SchemaParseError",
]
