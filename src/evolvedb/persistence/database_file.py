"""
evolvedb — database file access

File: src/evolvedb/persistence/database_file.py
Last updated: 2026-10-14

Purpose
- Read and atomically replace the application's single state file (``db.bin``).
- Understand the optional JSON envelope that records which type definition produced
  the stored document.

Functional requirements
- A missing file loads as ``None``; it is not an error.
- Every write goes through ``atomic_write``: readers see the old or the new content,
  never a mix.
- Envelope helpers never guess: raw byte blobs are reported as "no envelope".
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from evolvedb.constants import FINGERPRINT_FIELD
from evolvedb.errors import SchemaParseError
from evolvedb.utils.fs import atomic_write, read_bytes_if_exists

if TYPE_CHECKING:
    import os


class DatabaseFile:
    """Atomic persister for the database file plus JSON-envelope helpers."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        fingerprint_field: str = FINGERPRINT_FIELD,
        logger: Any | None = None,
    ) -> None:
        if not fingerprint_field.strip():
            raise ValueError("fingerprint_field must be a non-empty string")
        self._path = Path(path)
        self._fingerprint_field = fingerprint_field
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def fingerprint_field(self) -> str:
        return self._fingerprint_field

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> bytes | None:
        """Return the raw stored bytes, or ``None`` when no database exists yet."""

        return read_bytes_if_exists(self._path)

    def load_text(self, *, encoding: str = "utf-8") -> str | None:
        raw = self.load()
        if raw is None:
            return None
        return raw.decode(encoding)

    def save(self, content: bytes | str) -> None:
        """Replace the database atomically. Write failures propagate unchanged."""

        atomic_write(self._path, content)
        size = len(content) if isinstance(content, bytes) else len(content.encode("utf-8"))
        self._logger.info("database_saved", path=self._path.as_posix(), bytes=size)

    def read_envelope(self) -> dict[str, Any] | None:
        """
        Return the decoded JSON envelope, or ``None`` when the file is absent or
        is not a JSON object (a raw byte blob).
        """

        raw = self.load()
        if raw is None:
            return None
        try:
            decoded = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(decoded, dict):
            return None
        return decoded

    def stored_fingerprint(self) -> str:
        """Return the type-definition source recorded in the envelope."""

        envelope = self.read_envelope()
        if envelope is None:
            raise SchemaParseError(
                "database file is missing or is not a JSON envelope", path=self._path
            )
        fingerprint = envelope.get(self._fingerprint_field)
        if not isinstance(fingerprint, str):
            raise SchemaParseError(
                f"envelope field {self._fingerprint_field!r} is missing or not a string",
                path=self._path,
            )
        return fingerprint

    def write_fingerprint(self, types_source: str) -> bool:
        """
        Rewrite the envelope's fingerprint field to ``types_source``.

        Returns ``False`` without touching the file when there is no envelope.
        """

        envelope = self.read_envelope()
        if envelope is None:
            return False
        envelope[self._fingerprint_field] = types_source
        atomic_write(
            self._path,
            json.dumps(envelope, separators=(",", ":"), ensure_ascii=False),
        )
        return True


__all__ = ["DatabaseFile"]
