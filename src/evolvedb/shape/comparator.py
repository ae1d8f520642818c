"""
evolvedb — structural shape comparison

File: src/evolvedb/shape/comparator.py
Last updated: 2026-10-17

Purpose
- Decide whether two type-definition sources serialise identically, so a stored
  database can be reused without a schema bump.

Functional requirements
- Both sources are re-declared under the same probe module name before compiling,
  so the module name never influences the verdict.
- Equal SHA-256 digests of the oracle artifacts mean ``same``; unequal means
  ``different``; a compile failure is ``error`` and never ``different``.
- On ``same`` the database envelope's fingerprint is refreshed to the current source.
  This is best effort: a failure is logged and does not change the verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from evolvedb.constants import PROBE_TYPES_MODULE
from evolvedb.errors import CompileError
from evolvedb.utils.hashing import sha256_bytes
from evolvedb.versioning.emitter import rename_module_header

if TYPE_CHECKING:
    from evolvedb.persistence.database_file import DatabaseFile
    from evolvedb.shape.oracle import ShapeOracle


class ShapeVerdict(StrEnum):
    SAME = "same"
    DIFFERENT = "different"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ShapeComparison:
    verdict: ShapeVerdict
    message: str
    stored_digest: str | None = None
    current_digest: str | None = None
    fingerprint_updated: bool = False

    @property
    def is_same(self) -> bool:
        return self.verdict is ShapeVerdict.SAME

    def to_dict(self) -> dict[str, object]:
        return {
            "verdict": self.verdict.value,
            "message": self.message,
            "stored_digest": self.stored_digest,
            "current_digest": self.current_digest,
            "fingerprint_updated": self.fingerprint_updated,
        }


class ShapeComparator:
    """Compare stored and current type sources through a ``ShapeOracle``."""

    def __init__(
        self,
        oracle: ShapeOracle,
        *,
        database: DatabaseFile | None = None,
        probe_module: str = PROBE_TYPES_MODULE,
        logger: Any | None = None,
    ) -> None:
        self._oracle = oracle
        self._database = database
        self._probe_module = probe_module
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def compare(self, stored_source: str, current_source: str) -> ShapeComparison:
        try:
            stored_digest = self._digest(stored_source)
        except CompileError as exc:
            return self._error(f"Failed to compile stored types: {exc}")
        except OSError as exc:
            return self._error(f"Deep check failed: {exc}")

        try:
            current_digest = self._digest(current_source)
        except CompileError as exc:
            return self._error(f"Failed to compile current types: {exc}")
        except OSError as exc:
            return self._error(f"Deep check failed: {exc}")

        if stored_digest != current_digest:
            self._logger.info(
                "shape_compared",
                verdict=ShapeVerdict.DIFFERENT.value,
                stored_digest=stored_digest,
                current_digest=current_digest,
            )
            return ShapeComparison(
                verdict=ShapeVerdict.DIFFERENT,
                message="stored and current types serialise differently",
                stored_digest=stored_digest,
                current_digest=current_digest,
            )

        updated = self._refresh_fingerprint(current_source)
        self._logger.info(
            "shape_compared",
            verdict=ShapeVerdict.SAME.value,
            digest=current_digest,
            fingerprint_updated=updated,
        )
        return ShapeComparison(
            verdict=ShapeVerdict.SAME,
            message="stored and current types have the same shape",
            stored_digest=stored_digest,
            current_digest=current_digest,
            fingerprint_updated=updated,
        )

    def _digest(self, source: str) -> str:
        probe_source, _ = rename_module_header(source, old=None, new=self._probe_module)
        return sha256_bytes(self._oracle.compile_to_artifact(probe_source))

    def _error(self, message: str) -> ShapeComparison:
        self._logger.warning("shape_compared", verdict=ShapeVerdict.ERROR.value, error=message)
        return ShapeComparison(verdict=ShapeVerdict.ERROR, message=message)

    def _refresh_fingerprint(self, current_source: str) -> bool:
        if self._database is None:
            return False
        try:
            return self._database.write_fingerprint(current_source)
        except (OSError, ValueError) as exc:
            self._logger.warning(
                "fingerprint_refresh_failed",
                path=self._database.path.as_posix(),
                error=str(exc),
            )
            return False


__all__ = [
    "ShapeComparator",
    "ShapeComparison",
    "ShapeVerdict",
]
