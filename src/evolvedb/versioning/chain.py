"""
evolvedb — migration chain program model

File: src/evolvedb/versioning/chain.py
Last updated: 2026-10-16

Purpose
- Describe the generated migration dispatcher as a typed tree so its structure can be
  checked independently of how it is rendered.

Functional requirements
- For a latest snapshot version ``N`` the program has one decode branch per stored
  version ``1..N``, imports the migration modules ``2..N+1``, and chains
  ``migrateFromV{i}`` through every step up to the current shape.
- The tree is a pure function of ``N`` and the module naming; rendering it twice gives
  byte-identical text.
"""

from __future__ import annotations

from dataclasses import dataclass

from evolvedb.constants import (
    CHAIN_MODULE,
    MIGRATE_NAMESPACE,
    ROOT_TYPE,
    SNAPSHOT_NAMESPACE,
    TYPES_MODULE,
)

COUNTER_MODULE = "SchemaVersion"


@dataclass(frozen=True, slots=True)
class ImportDecl:
    module: str
    alias: str | None = None
    exposing: tuple[str, ...] = ()

    def render(self) -> str:
        parts = [f"import {self.module}"]
        if self.alias is not None:
            parts.append(f"as {self.alias}")
        if self.exposing:
            parts.append(f"exposing ({', '.join(self.exposing)})")
        return " ".join(parts)


@dataclass(frozen=True, slots=True)
class DecodeBranch:
    """``case`` branch decoding stored bytes written at ``version``."""

    version: int
    types_module: str
    entry_function: str


@dataclass(frozen=True, slots=True)
class ChainStep:
    """``migrateFromV{version}``: apply one migration, then continue or save."""

    version: int
    function: str
    source_types_module: str
    migration_alias: str
    next_function: str | None

    @property
    def is_final(self) -> bool:
        return self.next_function is None


@dataclass(frozen=True, slots=True)
class ChainProgram:
    module_name: str
    latest_snapshot: int
    types_module: str
    root_type: str
    counter_module: str
    imports: tuple[ImportDecl, ...]
    branches: tuple[DecodeBranch, ...]
    steps: tuple[ChainStep, ...]

    @property
    def target_version(self) -> int:
        return self.latest_snapshot + 1


def snapshot_module_name(
    version: int, *, namespace: str = SNAPSHOT_NAMESPACE, types_module: str = TYPES_MODULE
) -> str:
    return f"{namespace}.V{version}.{types_module}"


def migration_module_name(version: int, *, namespace: str = MIGRATE_NAMESPACE) -> str:
    return f"{namespace}.V{version}"


def build_chain_program(
    latest_snapshot: int,
    *,
    module_name: str = CHAIN_MODULE,
    types_module: str = TYPES_MODULE,
    root_type: str = ROOT_TYPE,
    snapshot_namespace: str = SNAPSHOT_NAMESPACE,
    migrate_namespace: str = MIGRATE_NAMESPACE,
    counter_module: str = COUNTER_MODULE,
) -> ChainProgram:
    """Build the dispatcher for stored versions ``1..latest_snapshot``."""

    if latest_snapshot < 0:
        raise ValueError("latest_snapshot must be >= 0")
    target = latest_snapshot + 1

    def snapshot(version: int) -> str:
        return snapshot_module_name(
            version, namespace=snapshot_namespace, types_module=types_module
        )

    imports: list[ImportDecl] = [ImportDecl("BackendTask", exposing=("BackendTask",))]
    imports.extend(
        ImportDecl(
            migration_module_name(version, namespace=migrate_namespace),
            alias=f"MigrateV{version}",
        )
        for version in range(2, target + 1)
    )
    imports.extend(ImportDecl(snapshot(version)) for version in range(1, latest_snapshot + 1))
    imports.extend(
        [
            ImportDecl("FatalError", exposing=("FatalError",)),
            ImportDecl("LamderaDb.Migration"),
            ImportDecl("Lamdera.Wire3", alias="Wire"),
            ImportDecl("Pages.Script", alias="Script", exposing=("Script",)),
            ImportDecl(counter_module),
            ImportDecl(types_module),
        ]
    )

    branches = tuple(
        DecodeBranch(
            version=version,
            types_module=snapshot(version),
            entry_function=f"migrateFromV{version}",
        )
        for version in range(1, latest_snapshot + 1)
    )
    steps = tuple(
        ChainStep(
            version=version,
            function=f"migrateFromV{version}",
            source_types_module=snapshot(version),
            migration_alias=f"MigrateV{version + 1}",
            next_function=None if version == latest_snapshot else f"migrateFromV{version + 1}",
        )
        for version in range(1, latest_snapshot + 1)
    )

    return ChainProgram(
        module_name=module_name,
        latest_snapshot=latest_snapshot,
        types_module=types_module,
        root_type=root_type,
        counter_module=counter_module,
        imports=tuple(imports),
        branches=branches,
        steps=steps,
    )


__all__ = [
    "COUNTER_MODULE",
    "ChainProgram",
    "ChainStep",
    "DecodeBranch",
    "ImportDecl",
    "build_chain_program",
    "migration_module_name",
    "snapshot_module_name",
]
