"""Utility exports for filesystem and hashing helpers."""

from evolvedb.utils.fs import (
    atomic_write,
    create_exclusive,
    read_bytes_if_exists,
    remove_if_exists,
    temp_directory,
)
from evolvedb.utils.hashing import sha256_bytes

__all__ = [
    "atomic_write",
    "create_exclusive",
    "read_bytes_if_exists",
    "remove_if_exists",
    "sha256_bytes",
    "temp_directory",
]
