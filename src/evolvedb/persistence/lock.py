"""
evolvedb — host-local database lock

File: src/evolvedb/persistence/lock.py
Last updated: 2026-10-19

Purpose
- Mutual exclusion for read-then-write sequences on the database file across
  process invocations on one host.
- Reclaim sentinels left behind by dead or long-stalled owners.

Protocol
- The sentinel (``db.bin.lock``) holds exactly one JSON record
  ``{"pid": int, "createdAt": ISO-8601, "token": UUID}``.
- Creation is exclusive: the record is staged in a temp file and hard-linked into
  place, so the sentinel is never visible empty or partially written.
- A sentinel is stale when its owner process is gone or it is older than
  ``stale_after_seconds`` (5 minutes by default). Either condition is sufficient.
- ``acquire`` retries creation exactly once after discarding a corrupt or stale
  sentinel. There is no exemption for the calling process: acquiring twice
  without a release fails with ``LockContentionError``.
- ``release`` deletes the sentinel only while it still carries the handle's token.
- Removal is compare-and-delete under an exclusive ``flock`` on ``.db.bin.lock.guard``:
  the sentinel is re-read and unlinked only if it still holds the record that was judged.
  The kernel drops the guard when its holder dies, so the guard never goes stale.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
import threading
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import psutil
import structlog

from evolvedb.constants import LOCK_REAP_INTERVAL_SECONDS, LOCK_STALE_AFTER_SECONDS
from evolvedb.errors import LockContentionError, SchemaParseError
from evolvedb.utils.fs import create_exclusive, read_bytes_if_exists

if TYPE_CHECKING:
    from collections.abc import Iterator

LivenessProbe = Callable[[int, datetime], bool]
Clock = Callable[[], datetime]

# psutil derives process start times from boot time + clock ticks.
_PID_REUSE_TOLERANCE_SECONDS: Final[float] = 2.0


class LockState(StrEnum):
    """Observed state of the lock sentinel."""

    UNLOCKED = "unlocked"
    HELD = "held"
    STALE = "stale"
    CORRUPT = "corrupt"


@dataclass(frozen=True, slots=True)
class LockRecord:
    """The sole content of the lock sentinel."""

    pid: int
    created_at: datetime
    token: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "pid": self.pid,
                "createdAt": _iso8601z(self.created_at),
                "token": self.token,
            },
            separators=(",", ":"),
        )

    @classmethod
    def parse(cls, raw: bytes | str) -> LockRecord:
        """Decode a sentinel payload; any deviation raises ``SchemaParseError``."""

        try:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            payload = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SchemaParseError(f"lock record is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SchemaParseError("lock record must be a JSON object")

        pid = payload.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int):
            raise SchemaParseError("lock record field 'pid' must be an integer")

        created_raw = payload.get("createdAt")
        if not isinstance(created_raw, str):
            raise SchemaParseError("lock record field 'createdAt' must be a string")
        try:
            created_at = datetime.fromisoformat(created_raw)
        except ValueError as exc:
            raise SchemaParseError(
                f"lock record field 'createdAt' is not ISO-8601: {created_raw!r}"
            ) from exc
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)

        token = payload.get("token")
        if not isinstance(token, str):
            raise SchemaParseError("lock record field 'token' must be a string")
        try:
            uuid.UUID(token)
        except ValueError as exc:
            raise SchemaParseError(f"lock record token is not a UUID: {token!r}") from exc

        return cls(pid=pid, created_at=created_at, token=token)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Proof of ownership returned by ``acquire`` and required by ``release``."""

    path: Path
    token: str
    pid: int
    created_at: datetime


@dataclass(frozen=True, slots=True)
class LockStatus:
    """Snapshot of the sentinel for status reporting and the reaper."""

    state: LockState
    record: LockRecord | None = None
    age_seconds: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "pid": None if self.record is None else self.record.pid,
            "created_at": None if self.record is None else _iso8601z(self.record.created_at),
            "age_seconds": self.age_seconds,
        }


def process_is_alive(pid: int, since: datetime) -> bool:
    """
    Probe whether ``pid`` still names the process that wrote a record at ``since``.

    ``psutil.pid_exists`` sends the zero-effect signal. A live pid whose process
    started after the record was written has been reused and counts as dead.
    """

    if pid <= 0:
        return False
    if not psutil.pid_exists(pid):
        return False
    try:
        started_at = psutil.Process(pid).create_time()
    except psutil.NoSuchProcess:
        return False
    except psutil.Error:
        return True
    return started_at <= since.timestamp() + _PID_REUSE_TOLERANCE_SECONDS


def _utcnow() -> datetime:
    return datetime.now(UTC)


@contextmanager
def _sentinel_guard(sentinel: Path) -> Iterator[None]:
    """Serialise sentinel removal between processes with ``flock`` on a side file."""

    guard_path = sentinel.with_name(f".{sentinel.name}.guard")
    guard_fd = os.open(guard_path, os.O_CREAT | os.O_WRONLY, 0o600)
    try:
        fcntl.flock(guard_fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(guard_fd, fcntl.LOCK_UN)
        os.close(guard_fd)


class LockManager:
    """Acquire, release and reclaim the database lock sentinel."""

    def __init__(
        self,
        lock_path: str | os.PathLike[str],
        *,
        stale_after_seconds: float = LOCK_STALE_AFTER_SECONDS,
        is_alive: LivenessProbe = process_is_alive,
        clock: Clock = _utcnow,
        pid: int | None = None,
        logger: Any | None = None,
    ) -> None:
        if stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be > 0")
        self._path = Path(lock_path)
        self._stale_after_seconds = float(stale_after_seconds)
        self._is_alive = is_alive
        self._clock = clock
        self._pid = os.getpid() if pid is None else pid
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stale_after_seconds(self) -> float:
        return self._stale_after_seconds

    def acquire(self) -> LockHandle:
        """Create the sentinel or raise ``LockContentionError``."""

        handle = self._try_create()
        if handle is not None:
            return handle

        raw = read_bytes_if_exists(self._path)
        if raw is None:
            handle = self._try_create()
            if handle is not None:
                return handle
            raise LockContentionError(
                lock_path=self._path, reason="another process created the sentinel concurrently"
            )

        try:
            record = LockRecord.parse(raw)
        except SchemaParseError as exc:
            self._logger.warning(
                "lock_corrupt_reclaimed", path=self._path.as_posix(), error=str(exc)
            )
            self._discard_if_unchanged(raw)
            handle = self._try_create()
            if handle is not None:
                return handle
            raise LockContentionError(
                lock_path=self._path, reason="sentinel was unreadable and could not be replaced"
            ) from exc

        now = self._clock()
        if not self.is_stale(record, now=now):
            age = record.age_seconds(now)
            self._logger.warning(
                "lock_contention",
                path=self._path.as_posix(),
                owner_pid=record.pid,
                age_seconds=round(age, 3),
            )
            raise LockContentionError(
                lock_path=self._path,
                owner_pid=record.pid,
                created_at=record.created_at,
                age_seconds=age,
            )

        self._logger.info(
            "lock_stale_reclaimed",
            path=self._path.as_posix(),
            owner_pid=record.pid,
            age_seconds=round(record.age_seconds(now), 3),
        )
        self._discard_if_unchanged(raw)
        handle = self._try_create()
        if handle is not None:
            return handle
        raise self._contention_for_current_holder()

    def release(self, handle: LockHandle) -> bool:
        """Delete the sentinel if it still carries ``handle.token``."""

        raw = read_bytes_if_exists(handle.path)
        if raw is None:
            self._logger.info("lock_release_missing", path=handle.path.as_posix())
            return False
        try:
            record = LockRecord.parse(raw)
        except SchemaParseError:
            self._logger.warning(
                "lock_release_skipped", path=handle.path.as_posix(), reason="corrupt"
            )
            return False
        if record.token != handle.token:
            self._logger.warning(
                "lock_release_skipped",
                path=handle.path.as_posix(),
                reason="token_mismatch",
                owner_pid=record.pid,
            )
            return False

        released = self._discard_if_unchanged(raw, path=handle.path)
        if released:
            self._logger.info("lock_released", path=handle.path.as_posix(), pid=handle.pid)
        return released

    @contextmanager
    def locked(self) -> Iterator[LockHandle]:
        """Hold the lock for the duration of the ``with`` block."""

        handle = self.acquire()
        try:
            yield handle
        finally:
            try:
                self.release(handle)
            except OSError as exc:
                self._logger.warning(
                    "lock_release_failed", path=handle.path.as_posix(), error=str(exc)
                )

    def is_stale(self, record: LockRecord, *, now: datetime | None = None) -> bool:
        current = self._clock() if now is None else now
        if record.age_seconds(current) > self._stale_after_seconds:
            return True
        return not self._is_alive(record.pid, record.created_at)

    def inspect(self) -> LockStatus:
        raw = read_bytes_if_exists(self._path)
        if raw is None:
            return LockStatus(state=LockState.UNLOCKED)
        return self._status_from_raw(raw)

    def reap_stale(self) -> LockStatus:
        """
        Remove the sentinel if it is stale or corrupt.

        Returns the status observed before any removal; a held or absent lock is
        left untouched.
        """

        raw = read_bytes_if_exists(self._path)
        if raw is None:
            return LockStatus(state=LockState.UNLOCKED)
        status = self._status_from_raw(raw)
        if status.state in (LockState.STALE, LockState.CORRUPT):
            removed = self._discard_if_unchanged(raw)
            self._logger.info(
                "lock_reaped",
                path=self._path.as_posix(),
                state=status.state.value,
                removed=removed,
                owner_pid=None if status.record is None else status.record.pid,
            )
        return status

    def _status_from_raw(self, raw: bytes) -> LockStatus:
        try:
            record = LockRecord.parse(raw)
        except SchemaParseError:
            return LockStatus(state=LockState.CORRUPT)
        now = self._clock()
        state = LockState.STALE if self.is_stale(record, now=now) else LockState.HELD
        return LockStatus(state=state, record=record, age_seconds=record.age_seconds(now))

    def _try_create(self) -> LockHandle | None:
        record = LockRecord(pid=self._pid, created_at=self._clock(), token=str(uuid.uuid4()))
        try:
            create_exclusive(self._path, record.to_json())
        except FileExistsError:
            return None
        self._logger.info("lock_acquired", path=self._path.as_posix(), pid=record.pid)
        return LockHandle(
            path=self._path,
            token=record.token,
            pid=record.pid,
            created_at=record.created_at,
        )

    def _discard_if_unchanged(self, expected: bytes, *, path: Path | None = None) -> bool:
        target = self._path if path is None else path
        with _sentinel_guard(target):
            # Creators never replace an existing sentinel; every remover holds the guard.
            current = read_bytes_if_exists(target)
            if current != expected:
                self._logger.info(
                    "lock_discard_skipped",
                    path=target.as_posix(),
                    reason="missing" if current is None else "replaced",
                )
                return False
            target.unlink()
        return True

    def _contention_for_current_holder(self) -> LockContentionError:
        raw = read_bytes_if_exists(self._path)
        if raw is not None:
            with contextlib.suppress(SchemaParseError):
                record = LockRecord.parse(raw)
                return LockContentionError(
                    lock_path=self._path,
                    owner_pid=record.pid,
                    created_at=record.created_at,
                    age_seconds=record.age_seconds(self._clock()),
                )
        return LockContentionError(
            lock_path=self._path, reason="sentinel was reclaimed by another process first"
        )


class LockReaper:
    """Periodically reclaim stale or corrupt sentinels."""

    def __init__(
        self,
        manager: LockManager,
        *,
        interval_seconds: float = LOCK_REAP_INTERVAL_SECONDS,
        logger: Any | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._manager = manager
        self._interval_seconds = float(interval_seconds)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def run_once(self) -> LockStatus:
        return self._manager.reap_stale()

    def run_forever(
        self,
        stop_event: threading.Event | None = None,
        *,
        max_cycles: int | None = None,
    ) -> int:
        """Reap until ``stop_event`` is set or ``max_cycles`` passes; return reclaim count."""

        stop = stop_event if stop_event is not None else threading.Event()
        cycles = 0
        reclaimed = 0
        self._logger.info(
            "lock_reaper_started",
            path=self._manager.path.as_posix(),
            interval_seconds=self._interval_seconds,
        )
        while not stop.is_set():
            status = self.run_once()
            if status.state in (LockState.STALE, LockState.CORRUPT):
                reclaimed += 1
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            stop.wait(self._interval_seconds)
        self._logger.info("lock_reaper_stopped", cycles=cycles, reclaimed=reclaimed)
        return reclaimed


def _iso8601z(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "LockHandle",
    "LockManager",
    "LockReaper",
    "LockRecord",
    "LockState",
    "LockStatus",
    "process_is_alive",
]
