"""
evolvedb — schema version bump

File: src/evolvedb/versioning/versioner.py
Last updated: 2026-10-19

Purpose
- Freeze the current type definition as snapshot ``N``, scaffold the ``N -> N+1``
  migration, regenerate the chain program, and advance the counter to ``N+1``.

Functional requirements
- Everything that can fail on bad input (counter parse, types header) is checked
  before the first write.
- The counter is written last: an interrupted bump leaves the old version in force and
  can simply be re-run.
- An existing migration stub is never overwritten; the only edit to an existing
  migration module is pinning its ``import Types`` to the snapshot it migrates from.
- Reported artifact paths are project-relative with POSIX separators.

Non-functional requirements
- Does not take the database lock; callers serialise bumps themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from evolvedb.constants import (
    CHAIN_PROGRAM_FILE,
    EVERGREEN_DIR,
    SCHEMA_VERSION_FILE,
    TYPES_FILE,
)
from evolvedb.errors import SchemaParseError
from evolvedb.utils.fs import atomic_write, create_exclusive
from evolvedb.versioning.chain import build_chain_program
from evolvedb.versioning.counter import parse_version, replace_version
from evolvedb.versioning.emitter import ElmEmitter

MIGRATE_SUBDIR = "Migrate"
_MODULE_WORD = re.compile(r"[A-Z][A-Za-z0-9_]*")


@dataclass(frozen=True, slots=True)
class VersionLayout:
    """Absolute locations of every artifact a bump reads or writes."""

    project_root: Path
    schema_version: Path
    types: Path
    evergreen_dir: Path
    chain_program: Path

    @classmethod
    def default(cls, project_root: Path | str) -> VersionLayout:
        root = Path(project_root)
        return cls(
            project_root=root,
            schema_version=root / SCHEMA_VERSION_FILE,
            types=root / TYPES_FILE,
            evergreen_dir=root / EVERGREEN_DIR,
            chain_program=root / CHAIN_PROGRAM_FILE,
        )

    def snapshot_path(self, version: int) -> Path:
        return self.evergreen_dir / f"V{version}" / self.types.name

    def migration_path(self, version: int) -> Path:
        return self.evergreen_dir / MIGRATE_SUBDIR / f"V{version}.elm"

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()

    def snapshot_namespace(self, types_module: str) -> str:
        """Module prefix that Elm expects for files under ``evergreen_dir``.

        The Elm source root is the directory that holds ``types`` as ``types_module``
        (``src/`` for ``src/Types.elm`` and ``Types``); ``evergreen_dir`` must sit
        below it, and every path segment must be a capitalised module word.
        """

        module_parts = tuple(types_module.split("."))
        if self.types.with_suffix("").parts[-len(module_parts) :] != module_parts:
            raise ValueError(
                f"{self.types.as_posix()} does not hold module {types_module!r}"
            )
        source_root = self.types.parents[len(module_parts) - 1]
        try:
            parts = self.evergreen_dir.relative_to(source_root).parts
        except ValueError:
            raise ValueError(
                f"{self.evergreen_dir.as_posix()} is not inside the Elm source directory "
                f"{source_root.as_posix()}"
            ) from None
        if not parts or not all(_MODULE_WORD.fullmatch(part) for part in parts):
            raise ValueError(
                f"{self.evergreen_dir.as_posix()} does not map to an Elm module name"
            )
        return ".".join(parts)


@dataclass(frozen=True, slots=True)
class BumpResult:
    previous_version: int
    new_version: int
    changed_artifacts: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "previous_version": self.previous_version,
            "new_version": self.new_version,
            "changed_artifacts": list(self.changed_artifacts),
        }


class SchemaVersioner:
    """Runs version bumps for one project layout."""

    def __init__(
        self,
        layout: VersionLayout,
        *,
        emitter: ElmEmitter | None = None,
        logger: Any | None = None,
    ) -> None:
        self._layout = layout
        self._emitter = emitter if emitter is not None else ElmEmitter()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def layout(self) -> VersionLayout:
        return self._layout

    def current_version(self) -> int:
        return parse_version(self._read_counter(), path=self._layout.schema_version)

    def bump(self) -> BumpResult:
        layout = self._layout
        emitter = self._emitter

        counter_text = self._read_counter()
        previous = parse_version(counter_text, path=layout.schema_version)
        target = previous + 1
        snapshot_text = emitter.snapshot(layout.types.read_text(encoding="utf-8"), version=previous)
        counter_update = replace_version(counter_text, target, path=layout.schema_version)
        program = build_chain_program(
            previous,
            module_name=layout.chain_program.stem,
            types_module=emitter.types_module,
            root_type=emitter.root_type,
            snapshot_namespace=emitter.snapshot_namespace,
            migrate_namespace=emitter.migrate_namespace,
            counter_module=layout.schema_version.stem,
        )
        chain_text = emitter.chain_program(program)

        changed: list[str] = []

        snapshot_path = layout.snapshot_path(previous)
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(snapshot_path, snapshot_text)
        changed.append(layout.relative(snapshot_path))
        self._logger.info("schema_snapshot_written", version=previous, path=changed[-1])

        migration_path = layout.migration_path(previous)
        if migration_path.is_file():
            original = migration_path.read_text(encoding="utf-8")
            pinned = emitter.pin_migration_imports(original, version=previous)
            if pinned != original:
                atomic_write(migration_path, pinned)
                changed.append(layout.relative(migration_path))
                self._logger.info("migration_imports_pinned", version=previous, path=changed[-1])

        stub_path = layout.migration_path(target)
        stub_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            create_exclusive(
                stub_path,
                emitter.migration_stub(source_version=previous, target_version=target),
            )
        except FileExistsError:
            self._logger.info(
                "migration_stub_kept", version=target, path=layout.relative(stub_path)
            )
        else:
            changed.append(layout.relative(stub_path))
            self._logger.info("migration_stub_created", version=target, path=changed[-1])

        layout.chain_program.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(layout.chain_program, chain_text)
        changed.append(layout.relative(layout.chain_program))

        atomic_write(layout.schema_version, counter_update)
        changed.append(layout.relative(layout.schema_version))

        result = BumpResult(
            previous_version=previous,
            new_version=target,
            changed_artifacts=tuple(changed),
        )
        self._logger.info(
            "schema_bumped",
            previous_version=previous,
            new_version=target,
            changed=len(result.changed_artifacts),
        )
        return result

    def snapshot_versions(self) -> tuple[int, ...]:
        return _versions_in(self._layout.evergreen_dir, directories=True)

    def migration_versions(self) -> tuple[int, ...]:
        return _versions_in(self._layout.evergreen_dir / MIGRATE_SUBDIR, directories=False)

    def _read_counter(self) -> str:
        try:
            return self._layout.schema_version.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SchemaParseError(
                "schema version file does not exist", path=self._layout.schema_version
            ) from exc


def _versions_in(directory: Path, *, directories: bool) -> tuple[int, ...]:
    if not directory.is_dir():
        return ()
    versions: list[int] = []
    for entry in directory.iterdir():
        if entry.is_dir() != directories:
            continue
        name = entry.name if directories else entry.stem
        if directories is False and entry.suffix != ".elm":
            continue
        if name.startswith("V") and name[1:].isdigit():
            versions.append(int(name[1:]))
    return tuple(sorted(versions))


__all__ = [
    "BumpResult",
    "SchemaVersioner",
    "VersionLayout",
]
