"""Stable constants shared across evolvedb components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for evolvedb's own persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Default project layout (relative to the project root unless overridden by config).
DB_FILE: Final[PurePosixPath] = PurePosixPath("db.bin")
LOCK_FILE: Final[PurePosixPath] = PurePosixPath("db.bin.lock")
SCHEMA_VERSION_FILE: Final[PurePosixPath] = PurePosixPath("lib/SchemaVersion.elm")
TYPES_FILE: Final[PurePosixPath] = PurePosixPath("src/Types.elm")
EVERGREEN_DIR: Final[PurePosixPath] = PurePosixPath("src/Evergreen")
CHAIN_PROGRAM_FILE: Final[PurePosixPath] = PurePosixPath("script/Migrate.elm")
SCRATCH_DIR: Final[PurePosixPath] = PurePosixPath("script")

# Module naming in the managed application.
TYPES_MODULE: Final[str] = "Types"
ROOT_TYPE: Final[str] = "BackendModel"
SNAPSHOT_NAMESPACE: Final[str] = "Evergreen"
MIGRATE_NAMESPACE: Final[str] = "Evergreen.Migrate"
CHAIN_MODULE: Final[str] = "Migrate"
PROBE_TYPES_MODULE: Final[str] = "EvolveDbProbeTypes"
PROBE_WITNESS_MODULE: Final[str] = "EvolveDbProbeWitness"

# JSON envelope field carrying the type fingerprint of the stored document.
FINGERPRINT_FIELD: Final[str] = "t"

# Lock staleness and reaper cadence.
LOCK_STALE_AFTER_SECONDS: Final[float] = 300.0
LOCK_REAP_INTERVAL_SECONDS: Final[float] = 60.0

# Compile oracle defaults.
ORACLE_BACKENDS: Final[tuple[str, ...]] = ("command", "structural")
DEFAULT_ORACLE_COMMAND: Final[tuple[str, ...]] = (
    "lamdera",
    "make",
    "{entry}",
    "--output={output}",
)
ORACLE_TIMEOUT_SECONDS: Final[float] = 300.0

__all__ = [
    "CHAIN_MODULE",
    "CHAIN_PROGRAM_FILE",
    "CONFIG_SCHEMA_VERSION",
    "DB_FILE",
    "DEFAULT_ORACLE_COMMAND",
    "EVERGREEN_DIR",
    "FINGERPRINT_FIELD",
    "LOCK_FILE",
    "LOCK_REAP_INTERVAL_SECONDS",
    "LOCK_STALE_AFTER_SECONDS",
    "MIGRATE_NAMESPACE",
    "ORACLE_BACKENDS",
    "ORACLE_TIMEOUT_SECONDS",
    "PROBE_TYPES_MODULE",
    "PROBE_WITNESS_MODULE",
    "ROOT_TYPE",
    "SCHEMA_VERSION_FILE",
    "SCRATCH_DIR",
    "SNAPSHOT_NAMESPACE",
    "TYPES_FILE",
    "TYPES_MODULE",
]
