"""
evolvedb — unit tests for filesystem primitives

File: tests/unit/utils/test_fs.py
Last updated: 2026-10-19

Purpose
- Validate atomic replacement and exclusive creation semantics.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from evolvedb.utils.fs import (
    atomic_write,
    create_exclusive,
    read_bytes_if_exists,
    remove_if_exists,
    temp_directory,
)


def _leftover_temp_files(directory: Path) -> list[str]:
    return sorted(name for name in os.listdir(directory) if name.endswith(".tmp"))


def test_atomic_write_replaces_content_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "db.bin"
    atomic_write(target, b"first")
    atomic_write(target, "second")

    assert target.read_bytes() == b"second"
    assert _leftover_temp_files(tmp_path) == []


def test_atomic_write_failure_keeps_previous_content(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "db.bin"
    target.write_bytes(b"original")

    def _boom(src: object, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _boom)

    with pytest.raises(OSError, match="disk full"):
        atomic_write(target, b"replacement")

    assert target.read_bytes() == b"original"
    assert _leftover_temp_files(tmp_path) == []


@pytest.mark.parametrize("write", [atomic_write, create_exclusive])
def test_failed_temp_write_leaves_target_untouched(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, write: Callable[..., None]
) -> None:
    target = tmp_path / "db.bin"
    if write is atomic_write:
        target.write_bytes(b"original")

    def _fsync_fails(fd: int) -> None:
        raise OSError("I/O error")

    monkeypatch.setattr(os, "fsync", _fsync_fails)

    with pytest.raises(OSError, match="I/O error"):
        write(target, b"replacement")

    if write is atomic_write:
        assert target.read_bytes() == b"original"
    else:
        assert not target.exists()
    assert _leftover_temp_files(tmp_path) == []


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "db.bin", b"x")


def test_create_exclusive_refuses_to_overwrite(tmp_path: Path) -> None:
    target = tmp_path / "record.json"
    create_exclusive(target, '{"pid":1}')

    with pytest.raises(FileExistsError):
        create_exclusive(target, '{"pid":2}')

    assert target.read_text(encoding="utf-8") == '{"pid":1}'
    assert _leftover_temp_files(tmp_path) == []


def test_read_and_remove_helpers_tolerate_missing_files(tmp_path: Path) -> None:
    target = tmp_path / "absent"
    assert read_bytes_if_exists(target) is None
    assert remove_if_exists(target) is False

    target.write_bytes(b"x")
    assert read_bytes_if_exists(target) == b"x"
    assert remove_if_exists(target) is True
    assert not target.exists()


def test_temp_directory_is_removed_on_exit() -> None:
    with temp_directory() as directory:
        (directory / "probe.js").write_text("ok", encoding="utf-8")
        assert directory.is_dir()
    assert not directory.exists()
