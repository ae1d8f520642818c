"""
evolvedb — hashing helpers

File: src/evolvedb/utils/hashing.py
Last updated: 2026-10-19

Purpose
- Deterministic SHA-256 digests for compiled shape artifacts.
"""

from __future__ import annotations

import hashlib

__all__ = [
    "sha256_bytes",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()

