"""Observability: structured JSON-lines run logging."""

from evolvedb.observability.logging import (
    LoggingConfig,
    RunLog,
    active_run_log,
    new_run_id,
    prune_run_logs,
    setup_logging,
    shutdown_logging,
    start_run_log,
)

__all__ = [
    "LoggingConfig",
    "RunLog",
    "active_run_log",
    "new_run_id",
    "prune_run_logs",
    "setup_logging",
    "shutdown_logging",
    "start_run_log",
]
