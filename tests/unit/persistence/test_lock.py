"""
evolvedb — unit tests for the database lock

File: tests/unit/persistence/test_lock.py
Last updated: 2026-10-19

Purpose
- Validate exclusive acquisition, token-checked release and stale reclamation.

What this test file should cover
- Live young owners block; dead or old owners are reclaimed.
- Corrupt sentinels are reclaimed on acquire and by the reaper.
- PID reuse: a live pid that started after the record counts as dead.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from structlog.testing import capture_logs

from evolvedb.errors import LockContentionError, SchemaParseError
from evolvedb.persistence.lock import (
    LockManager,
    LockReaper,
    LockRecord,
    LockState,
    process_is_alive,
)

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def _always_alive(pid: int, since: datetime) -> bool:
    return True


def _always_dead(pid: int, since: datetime) -> bool:
    return False


def _write_record(path: Path, *, pid: int, created_at: datetime) -> LockRecord:
    record = LockRecord(pid=pid, created_at=created_at, token=str(uuid.uuid4()))
    path.write_text(record.to_json(), encoding="utf-8")
    return record


def _manager(path: Path, **kwargs: object) -> LockManager:
    kwargs.setdefault("clock", _Clock())
    kwargs.setdefault("is_alive", _always_alive)
    kwargs.setdefault("pid", 4242)
    return LockManager(path, **kwargs)  # type: ignore[arg-type]


def test_acquire_writes_single_parseable_record(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    handle = _manager(lock_path).acquire()

    payload = json.loads(lock_path.read_text(encoding="utf-8"))
    assert set(payload) == {"pid", "createdAt", "token"}
    assert payload["pid"] == 4242
    assert payload["token"] == handle.token
    assert payload["createdAt"].endswith("Z")
    assert LockRecord.parse(lock_path.read_bytes()).created_at == NOW


def test_second_acquire_without_release_is_contention(tmp_path: Path) -> None:
    manager = _manager(tmp_path / "db.bin.lock")
    manager.acquire()

    with pytest.raises(LockContentionError) as excinfo:
        manager.acquire()

    assert excinfo.value.owner_pid == 4242
    assert "4242" in str(excinfo.value)


def test_release_then_reacquire(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    manager = _manager(lock_path)
    handle = manager.acquire()

    assert manager.release(handle) is True
    assert not lock_path.exists()
    assert manager.release(handle) is False

    second = manager.acquire()
    assert second.token != handle.token


def test_release_with_foreign_token_leaves_sentinel(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    first = _manager(lock_path, pid=1).acquire()
    assert first.pid == 1

    lock_path.unlink()
    other = _manager(lock_path, pid=2).acquire()

    assert _manager(lock_path).release(first) is False
    assert LockRecord.parse(lock_path.read_bytes()).token == other.token


def test_locked_context_releases_on_error(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    manager = _manager(lock_path)

    with pytest.raises(RuntimeError, match="boom"):
        with manager.locked():
            assert lock_path.exists()
            raise RuntimeError("boom")

    assert not lock_path.exists()


@settings(max_examples=25, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(age=st.floats(min_value=0.0, max_value=299.0), pid=st.integers(min_value=1, max_value=2**22))
def test_live_young_owner_always_blocks(tmp_path: Path, age: float, pid: int) -> None:
    lock_path = tmp_path / "db.bin.lock"
    record = _write_record(lock_path, pid=pid, created_at=NOW - timedelta(seconds=age))
    manager = _manager(lock_path)

    with pytest.raises(LockContentionError):
        manager.acquire()

    assert LockRecord.parse(lock_path.read_bytes()) == record


@settings(max_examples=25, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(age=st.floats(min_value=0.0, max_value=10_000.0))
def test_dead_owner_is_reclaimed_at_any_age(tmp_path: Path, age: float) -> None:
    lock_path = tmp_path / "db.bin.lock"
    stale = _write_record(lock_path, pid=99, created_at=NOW - timedelta(seconds=age))
    manager = _manager(lock_path, is_alive=_always_dead)

    handle = manager.acquire()

    assert handle.token != stale.token
    assert LockRecord.parse(lock_path.read_bytes()).pid == 4242
    lock_path.unlink()


def test_old_live_owner_is_reclaimed(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    _write_record(lock_path, pid=99, created_at=NOW - timedelta(seconds=301))
    manager = _manager(lock_path, is_alive=_always_alive)

    handle = manager.acquire()

    assert LockRecord.parse(lock_path.read_bytes()).token == handle.token


def test_threshold_is_configurable(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    _write_record(lock_path, pid=99, created_at=NOW - timedelta(seconds=11))
    manager = _manager(lock_path, stale_after_seconds=10)

    assert manager.inspect().state is LockState.STALE
    manager.acquire()


@pytest.mark.parametrize(
    "content",
    [b"", b"{", b"[]", b'{"pid":"1","createdAt":"2026-10-18T12:00:00Z","token":"x"}'],
)
def test_corrupt_sentinel_is_reclaimed_on_acquire(tmp_path: Path, content: bytes) -> None:
    lock_path = tmp_path / "db.bin.lock"
    lock_path.write_bytes(content)
    manager = _manager(lock_path)

    assert manager.inspect().state is LockState.CORRUPT
    handle = manager.acquire()

    assert LockRecord.parse(lock_path.read_bytes()).token == handle.token


def test_reclaimed_lock_rejects_previous_owner_release(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    clock = _Clock()
    stalled = _manager(lock_path, clock=clock, pid=1)
    old_handle = stalled.acquire()

    clock.advance(600)
    newcomer = _manager(lock_path, clock=clock, pid=2)
    new_handle = newcomer.acquire()

    assert stalled.release(old_handle) is False
    assert LockRecord.parse(lock_path.read_bytes()).token == new_handle.token


def test_concurrent_reclaim_keeps_the_winners_sentinel(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    _write_record(lock_path, pid=77, created_at=NOW)
    winner = _manager(lock_path, is_alive=_always_dead, pid=1001)
    winner_handles = []

    def _winner_reclaims_first(pid: int, since: datetime) -> bool:
        # Another process reclaims between this judgment and the removal.
        winner_handles.append(winner.acquire())
        return False

    loser = _manager(lock_path, is_alive=_winner_reclaims_first, pid=1002)

    with pytest.raises(LockContentionError) as excinfo:
        loser.acquire()

    assert excinfo.value.owner_pid == 1001
    assert LockRecord.parse(lock_path.read_bytes()).token == winner_handles[0].token
    assert winner.release(winner_handles[0]) is True
    assert not lock_path.exists()


def test_pid_reuse_counts_as_dead() -> None:
    # A record older than this process cannot have been written by it.
    long_ago = datetime.now(UTC) - timedelta(days=3650)
    assert process_is_alive(os.getpid(), datetime.now(UTC)) is True
    assert process_is_alive(os.getpid(), long_ago) is False
    assert process_is_alive(0, datetime.now(UTC)) is False
    assert process_is_alive(-5, datetime.now(UTC)) is False


def test_inspect_reports_states(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    manager = _manager(lock_path)
    assert manager.inspect().to_dict() == {
        "state": "unlocked",
        "pid": None,
        "created_at": None,
        "age_seconds": None,
    }

    _write_record(lock_path, pid=7, created_at=NOW - timedelta(seconds=30))
    status = manager.inspect()
    assert status.state is LockState.HELD
    assert status.to_dict()["pid"] == 7
    assert status.age_seconds == pytest.approx(30.0)


def test_reaper_removes_only_stale_or_corrupt(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    alive = _manager(lock_path)
    reaper = LockReaper(alive, interval_seconds=0.01)

    _write_record(lock_path, pid=7, created_at=NOW)
    assert reaper.run_once().state is LockState.HELD
    assert lock_path.exists()

    lock_path.write_bytes(b"garbage")
    assert reaper.run_once().state is LockState.CORRUPT
    assert not lock_path.exists()

    _write_record(lock_path, pid=7, created_at=NOW - timedelta(seconds=900))
    assert reaper.run_once().state is LockState.STALE
    assert not lock_path.exists()

    assert reaper.run_once().state is LockState.UNLOCKED


def test_reaper_run_forever_counts_reclaims(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    _write_record(lock_path, pid=7, created_at=NOW)
    reaper = LockReaper(_manager(lock_path, is_alive=_always_dead), interval_seconds=0.001)

    assert reaper.run_forever(max_cycles=3) == 1
    assert not lock_path.exists()


def test_reaper_stops_on_event(tmp_path: Path) -> None:
    stop = threading.Event()
    stop.set()
    reaper = LockReaper(_manager(tmp_path / "db.bin.lock"), interval_seconds=60)

    assert reaper.run_forever(stop) == 0


def test_record_parse_rejects_bad_fields() -> None:
    good = {"pid": 1, "createdAt": "2026-10-18T12:00:00Z", "token": str(uuid.uuid4())}
    assert LockRecord.parse(json.dumps(good)).pid == 1

    for field, value in (("pid", True), ("createdAt", "yesterday"), ("token", "not-a-uuid")):
        broken = dict(good)
        broken[field] = value
        with pytest.raises(SchemaParseError):
            LockRecord.parse(json.dumps(broken))


def test_invalid_thresholds_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        LockManager(tmp_path / "db.bin.lock", stale_after_seconds=0)
    with pytest.raises(ValueError):
        LockReaper(_manager(tmp_path / "db.bin.lock"), interval_seconds=0)


def test_contention_and_reclaim_are_logged(tmp_path: Path) -> None:
    lock_path = tmp_path / "db.bin.lock"
    clock = _Clock()
    _write_record(lock_path, pid=77, created_at=NOW - timedelta(seconds=30))
    manager = _manager(lock_path, clock=clock)

    with capture_logs() as events:
        with pytest.raises(LockContentionError):
            manager.acquire()
        clock.advance(600)
        manager.release(manager.acquire())

    names = [event["event"] for event in events]
    assert names == ["lock_contention", "lock_stale_reclaimed", "lock_acquired", "lock_released"]
    contention = events[0]
    assert contention["log_level"] == "warning"
    assert contention["owner_pid"] == 77
    assert contention["age_seconds"] == 30.0
    assert events[1]["age_seconds"] == 630.0
