"""
evolvedb — project workspace facade

File: src/evolvedb/workspace.py
Last updated: 2026-10-19

Purpose
- Bundle the database file, its lock, the schema versioner and the shape comparator
  for one managed project, wired from an effective config mapping.

Operation surface
- ``load_state`` / ``load_text`` / ``save_state``: read and atomically replace ``db.bin``.
- ``bump``: advance the schema version (see ``SchemaVersioner``).
- ``compare_shape`` / ``compare_with_database``: same/different/error verdicts.
- ``acquire_lock`` / ``release_lock`` / ``locked`` / ``reap_locks``: the host-local lock.
- ``status``: counter, snapshots, stubs, database and lock state in one report.

None of the operations take the lock implicitly; callers wrap read-then-write
sequences in ``locked()``.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from evolvedb.config.schema import ConfigValidationError, ConfigValidationIssue
from evolvedb.errors import SchemaParseError
from evolvedb.persistence.database_file import DatabaseFile
from evolvedb.persistence.lock import LockManager, LockReaper
from evolvedb.shape.comparator import ShapeComparator
from evolvedb.shape.oracle import CommandShapeOracle, StructuralShapeOracle
from evolvedb.versioning.emitter import ElmEmitter
from evolvedb.versioning.versioner import MIGRATE_SUBDIR, SchemaVersioner, VersionLayout

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from evolvedb.persistence.lock import LockHandle, LockStatus
    from evolvedb.shape.comparator import ShapeComparison
    from evolvedb.shape.oracle import ShapeOracle
    from evolvedb.versioning.versioner import BumpResult


@dataclass(frozen=True, slots=True)
class WorkspaceStatus:
    project_root: str
    schema_version: int | None
    schema_error: str | None
    snapshot_versions: tuple[int, ...]
    migration_versions: tuple[int, ...]
    database_exists: bool
    lock: LockStatus

    def to_dict(self) -> dict[str, object]:
        return {
            "project_root": self.project_root,
            "schema_version": self.schema_version,
            "schema_error": self.schema_error,
            "snapshot_versions": list(self.snapshot_versions),
            "migration_versions": list(self.migration_versions),
            "database_exists": self.database_exists,
            "lock": self.lock.to_dict(),
        }


class Workspace:
    """Operation surface for one managed project."""

    def __init__(
        self,
        *,
        project_root: Path,
        database: DatabaseFile,
        lock_manager: LockManager,
        versioner: SchemaVersioner,
        comparator: ShapeComparator,
        reap_interval_seconds: float,
    ) -> None:
        self._project_root = project_root
        self._database = database
        self._lock_manager = lock_manager
        self._versioner = versioner
        self._comparator = comparator
        self._reap_interval_seconds = reap_interval_seconds

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        oracle: ShapeOracle | None = None,
        lock_manager: LockManager | None = None,
    ) -> Workspace:
        paths = config["paths"]
        schema = config["schema"]
        lock = config["lock"]
        oracle_cfg = config["oracle"]

        project_root = Path(paths["project_root"])
        layout = VersionLayout(
            project_root=project_root,
            schema_version=Path(paths["schema_version"]),
            types=Path(paths["types"]),
            evergreen_dir=Path(paths["evergreen_dir"]),
            chain_program=Path(paths["chain_program"]),
        )
        try:
            namespace = layout.snapshot_namespace(schema["types_module"])
        except ValueError as exc:
            issue = ConfigValidationIssue("paths.evergreen_dir", str(exc))
            raise ConfigValidationError([issue]) from exc
        emitter = ElmEmitter(
            types_module=schema["types_module"],
            root_type=schema["root_type"],
            snapshot_namespace=namespace,
            migrate_namespace=f"{namespace}.{MIGRATE_SUBDIR}",
            db_name=Path(paths["db_file"]).name,
        )
        database = DatabaseFile(paths["db_file"], fingerprint_field=schema["fingerprint_field"])

        if oracle is None:
            if oracle_cfg["backend"] == "structural":
                oracle = StructuralShapeOracle(root_type=schema["root_type"])
            else:
                oracle = CommandShapeOracle(
                    project_root=project_root,
                    scratch_dir=paths["scratch_dir"],
                    command=oracle_cfg["command"],
                    timeout_seconds=oracle_cfg["timeout_seconds"],
                    emitter=emitter,
                )

        return cls(
            project_root=project_root,
            database=database,
            lock_manager=lock_manager
            if lock_manager is not None
            else LockManager(paths["lock_file"], stale_after_seconds=lock["stale_after_seconds"]),
            versioner=SchemaVersioner(layout, emitter=emitter),
            comparator=ShapeComparator(oracle, database=database),
            reap_interval_seconds=lock["reap_interval_seconds"],
        )

    @property
    def project_root(self) -> Path:
        return self._project_root

    @property
    def database(self) -> DatabaseFile:
        return self._database

    @property
    def lock_manager(self) -> LockManager:
        return self._lock_manager

    @property
    def versioner(self) -> SchemaVersioner:
        return self._versioner

    def load_state(self) -> bytes | None:
        return self._database.load()

    def load_text(self) -> str | None:
        return self._database.load_text()

    def save_state(self, content: bytes | str) -> None:
        self._database.save(content)

    def bump(self) -> BumpResult:
        return self._versioner.bump()

    def current_types(self) -> str:
        return self._versioner.layout.types.read_text(encoding="utf-8")

    def compare_shape(self, stored_source: str, current_source: str) -> ShapeComparison:
        return self._comparator.compare(stored_source, current_source)

    def compare_with_database(self, current_source: str | None = None) -> ShapeComparison:
        """Compare the fingerprint recorded in ``db.bin`` with the current types."""

        stored = self._database.stored_fingerprint()
        current = current_source if current_source is not None else self.current_types()
        return self._comparator.compare(stored, current)

    def acquire_lock(self) -> LockHandle:
        return self._lock_manager.acquire()

    def release_lock(self, handle: LockHandle) -> bool:
        return self._lock_manager.release(handle)

    @contextmanager
    def locked(self) -> Iterator[LockHandle]:
        with self._lock_manager.locked() as handle:
            yield handle

    def lock_status(self) -> LockStatus:
        return self._lock_manager.inspect()

    def reap_locks(self) -> LockStatus:
        return self._lock_manager.reap_stale()

    def reaper(self, *, interval_seconds: float | None = None) -> LockReaper:
        return LockReaper(
            self._lock_manager,
            interval_seconds=interval_seconds
            if interval_seconds is not None
            else self._reap_interval_seconds,
        )

    def status(self) -> WorkspaceStatus:
        version: int | None
        error: str | None = None
        try:
            version = self._versioner.current_version()
        except SchemaParseError as exc:
            version = None
            error = str(exc)
        return WorkspaceStatus(
            project_root=self._project_root.as_posix(),
            schema_version=version,
            schema_error=error,
            snapshot_versions=self._versioner.snapshot_versions(),
            migration_versions=self._versioner.migration_versions(),
            database_exists=self._database.exists(),
            lock=self._lock_manager.inspect(),
        )


__all__ = ["Workspace", "WorkspaceStatus"]
