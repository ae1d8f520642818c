"""
evolvedb — filesystem primitives

File: src/evolvedb/utils/fs.py
Last updated: 2026-10-12

Purpose
- Atomic replacement of files so readers only ever observe complete content.
- Exclusive creation of small record files whose content is visible in full the
  moment the path exists.

Functional requirements
- Temp files live in the destination directory so rename/link stay on one filesystem.
- A failed write removes its temp file and leaves the destination untouched.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "create_exclusive",
    "read_bytes_if_exists",
    "remove_if_exists",
    "temp_directory",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``path`` with ``data``.

    1. write ``data`` to ``.<name>.<random>.tmp`` beside the target,
    2. flush + fsync the temp file,
    3. ``os.replace`` it onto the target and fsync the directory.
    """

    target = Path(path)
    target_parent = _existing_parent(target)
    temp_path = _write_temp(target, target_parent, data, encoding=encoding)

    try:
        os.replace(temp_path, target)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    _fsync_directory(target_parent)


def create_exclusive(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Create ``path`` with ``data`` only if it does not exist yet.

    The content is staged in a temp file and hard-linked into place, so the
    creation is atomic and the file is never visible empty or half-written.
    Raises ``FileExistsError`` when ``path`` already exists.
    """

    target = Path(path)
    target_parent = _existing_parent(target)
    temp_path = _write_temp(target, target_parent, data, encoding=encoding)

    try:
        os.link(temp_path, target)
    finally:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
    _fsync_directory(target_parent)


def read_bytes_if_exists(path: PathLike) -> bytes | None:
    """Return file bytes, or ``None`` when the file does not exist."""

    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        return None


def remove_if_exists(path: PathLike) -> bool:
    """Unlink ``path``; return ``False`` if it was already gone."""

    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True


@contextmanager
def temp_directory(prefix: str = "evolvedb-") -> Iterator[Path]:
    """Yield a temporary directory path and clean it up on exit."""

    with tempfile.TemporaryDirectory(prefix=prefix) as tmp:
        yield Path(tmp)


def _existing_parent(target: Path) -> Path:
    parent = target.parent.resolve(strict=True)
    if not parent.is_dir():
        raise NotADirectoryError(f"{parent!s} is not a directory")
    return parent


def _write_temp(target: Path, directory: Path, data: bytes | str, *, encoding: str) -> Path:
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(directory),
    )
    temp_path = Path(temp_name)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    return temp_path


def _fsync_directory(path: Path) -> None:
    """Best-effort directory fsync so the rename itself survives a crash."""

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
