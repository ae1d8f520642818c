"""
evolvedb — structured run logging

File: src/evolvedb/observability/logging.py
Last updated: 2026-10-19

Purpose
- Route ``structlog`` events from library modules into one JSON-lines file per CLI run,
  ``<log_dir>/<run_id>/evolvedb.jsonl``, optionally mirrored to stderr.
- Plain ``logging`` records under the ``evolvedb`` logger land in the same sinks
  with the same shape.

Library modules only call ``structlog.get_logger(__name__)``. Nothing reaches the run
log until ``setup_logging`` (or ``start_run_log``) installs the sinks, and
``shutdown_logging`` restores structlog's defaults.

Each line is one JSON object with ``event``, ``level``, ``logger``, ``timestamp``
(UTC, ``Z`` suffix) and ``run_id`` plus the keyword fields of the call.
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

LOG_FILENAME: Final[str] = "evolvedb.jsonl"
ROOT_LOGGER: Final[str] = "evolvedb"
DEFAULT_LOG_DIR: Final[Path] = Path(".evolvedb/logs")

_active_lock = threading.Lock()
_active: RunLog | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    run_id: str
    log_dir: Path | str = DEFAULT_LOG_DIR
    level: int | str = "INFO"
    log_to_stderr: bool = False
    log_filename: str = LOG_FILENAME
    logger_name: str = ROOT_LOGGER
    retain_runs: int | None = None


class RunLog:
    """Sinks installed for one run; ``close`` is idempotent."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        handlers: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._handlers = handlers
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def run_log_dir(self) -> Path:
        return self.log_path.parent

    @property
    def closed(self) -> bool:
        return self._closed

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        for handler in self._handlers:
            handler.flush()
            self.logger.removeHandler(handler)
            handler.close()


def setup_logging(
    observability: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> RunLog:
    """Start the run log described by an ``[observability]`` config section."""

    section = observability or {}
    configured_dir = section.get("log_dir")
    if log_dir is None:
        log_dir = configured_dir if isinstance(configured_dir, (str, Path)) else DEFAULT_LOG_DIR
    level = section.get("log_level", "INFO")
    retain = section.get("retain_runs")
    if isinstance(retain, bool) or not isinstance(retain, int):
        retain = None
    return start_run_log(
        LoggingConfig(
            run_id=run_id,
            log_dir=log_dir,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stderr=section.get("log_to_stderr") is True,
            retain_runs=retain,
        )
    )


def start_run_log(config: LoggingConfig) -> RunLog:
    run_id = _require_text(config.run_id, "run_id")
    filename = _require_text(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must be a bare file name")
    level = _level_number(config.level)
    if config.retain_runs is not None and config.retain_runs < 1:
        raise ValueError("retain_runs must be >= 1")

    shutdown_logging()

    log_path = Path(config.log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _json_formatter(run_id)
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stderr:
        handlers.append(logging.StreamHandler())

    logger = logging.getLogger(_require_text(config.logger_name, "logger_name"))
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    run_log = RunLog(logger=logger, run_id=run_id, log_path=log_path, handlers=tuple(handlers))
    if config.retain_runs is not None:
        pruned = prune_run_logs(
            Path(config.log_dir), keep=config.retain_runs, current=run_id, filename=filename
        )
        if pruned:
            structlog.get_logger(__name__).debug("run_logs_pruned", count=len(pruned))
    global _active
    with _active_lock:
        _active = run_log
    return run_log


def shutdown_logging(run_log: RunLog | None = None) -> None:
    """Close ``run_log`` (default: the active one) and restore structlog defaults."""

    global _active
    with _active_lock:
        target = run_log if run_log is not None else _active
        if target is None:
            return
        if target is _active:
            _active = None
    target.close()
    structlog.reset_defaults()


def active_run_log() -> RunLog | None:
    with _active_lock:
        return _active


def new_run_id(now: datetime | None = None) -> str:
    moment = now if now is not None else datetime.now(UTC)
    return moment.astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")


def prune_run_logs(
    log_dir: Path, *, keep: int, current: str | None = None, filename: str = LOG_FILENAME
) -> list[Path]:
    """
    Delete all but the ``keep`` newest run directories under ``log_dir``.

    Only directories holding ``filename`` count as runs, and ``current`` always
    survives. Run ids from ``new_run_id`` sort chronologically, so the newest are
    the last by name.
    """

    if keep < 1:
        raise ValueError("keep must be >= 1")
    if not log_dir.is_dir():
        return []
    runs = sorted(
        entry
        for entry in log_dir.iterdir()
        if entry.name != current and entry.is_dir() and (entry / filename).is_file()
    )
    survivors = keep - 1 if current is not None else keep
    doomed = runs[: max(0, len(runs) - survivors)]
    for run_dir in doomed:
        shutil.rmtree(run_dir, ignore_errors=True)
    return doomed



def _shared_processors() -> list[Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _json_formatter(run_id: str) -> structlog.stdlib.ProcessorFormatter:
    def add_run_id(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict["run_id"] = run_id
        return event_dict

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            add_run_id,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(
                sort_keys=True, ensure_ascii=False, default=_json_default
            ),
        ],
    )


def _json_default(value: object) -> Any:
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (set, frozenset)):
        return sorted(str(item) for item in value)
    return repr(value)


def _require_text(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(str(level).strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return number


__all__ = [
    "LOG_FILENAME",
    "LoggingConfig",
    "RunLog",
    "active_run_log",
    "new_run_id",
    "prune_run_logs",
    "setup_logging",
    "shutdown_logging",
    "start_run_log",
]
