"""Schema versioning: counter, chain program model, Elm emitter and the bump itself."""

from evolvedb.versioning.chain import (
    ChainProgram,
    ChainStep,
    DecodeBranch,
    ImportDecl,
    build_chain_program,
)
from evolvedb.versioning.counter import parse_version, replace_version
from evolvedb.versioning.emitter import ElmEmitter
from evolvedb.versioning.versioner import BumpResult, SchemaVersioner, VersionLayout

__all__ = [
    "BumpResult",
    "ChainProgram",
    "ChainStep",
    "DecodeBranch",
    "ElmEmitter",
    "ImportDecl",
    "SchemaVersioner",
    "VersionLayout",
    "build_chain_program",
    "parse_version",
    "replace_version",
]
