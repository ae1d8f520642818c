"""Command-line interface router for evolvedb."""

from __future__ import annotations

import argparse
import contextlib
import json
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from evolvedb.config import ConfigLoadError, ConfigValidationError, LoadedConfig, load_config_layers
from evolvedb.observability.logging import new_run_id, setup_logging, shutdown_logging
from evolvedb.persistence.lock import LockHandle, LockManager, LockState
from evolvedb.shape.comparator import ShapeVerdict
from evolvedb.ui.render import CLIRenderer, create_renderer
from evolvedb.workspace import Workspace


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="evolvedb",
        description=(
            "evolvedb — schema evolution and safe persistence for a single-file database.\n\n"
            "Common workflows:\n"
            "  evolvedb status              Show schema version, snapshots and lock state\n"
            "  evolvedb compare --from-db   Check whether db.bin still matches src/Types.elm\n"
            "  evolvedb bump                Snapshot the types and scaffold the next migration\n"
            "  evolvedb reap --watch        Reclaim stale locks on a schedule\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to evolvedb TOML config (default: nearest evolvedb.toml upwards).",
    )
    common.add_argument(
        "--project-root",
        default=None,
        help="Override paths.project_root.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit deterministic JSON instead of text.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show schema version, snapshots, stubs and lock state",
    )
    status_parser.set_defaults(handler=_cmd_status)

    bump_parser = subparsers.add_parser(
        "bump",
        parents=[common],
        help="Snapshot the current types and advance the schema version",
        description=(
            "Freeze src/Types.elm as snapshot N, scaffold the N -> N+1 migration,\n"
            "regenerate the migration chain program and set the counter to N+1.\n\n"
            "Examples:\n"
            "  evolvedb bump\n"
            "  evolvedb bump --locked\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    bump_parser.add_argument(
        "--locked",
        action="store_true",
        default=False,
        help="Hold the database lock while bumping.",
    )
    bump_parser.set_defaults(handler=_cmd_bump)

    compare_parser = subparsers.add_parser(
        "compare",
        parents=[common],
        help="Decide whether stored and current types have the same shape",
        description=(
            "Exit status: 0 same shape, 1 different shape, 4 comparison error.\n\n"
            "Examples:\n"
            "  evolvedb compare --from-db\n"
            "  evolvedb compare --from-db --locked\n"
            "  evolvedb compare --stored src/Evergreen/V3/Types.elm\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    stored_group = compare_parser.add_mutually_exclusive_group(required=True)
    stored_group.add_argument("--stored", default=None, help="Stored types source file.")
    stored_group.add_argument(
        "--from-db",
        action="store_true",
        default=False,
        help="Use the types fingerprint recorded in the database envelope.",
    )
    compare_parser.add_argument(
        "--current",
        default=None,
        help="Current types source file (default: paths.types).",
    )
    compare_parser.add_argument(
        "--locked",
        action="store_true",
        default=False,
        help="Hold the database lock while comparing and refreshing the fingerprint.",
    )
    compare_parser.set_defaults(handler=_cmd_compare)

    lock_parser = subparsers.add_parser("lock", help="Acquire, release or inspect the lock")
    lock_sub = lock_parser.add_subparsers(dest="lock_command", required=True)

    acquire_parser = lock_sub.add_parser(
        "acquire",
        parents=[common],
        help="Create the lock sentinel and print its token",
    )
    acquire_parser.add_argument(
        "--owner-pid",
        type=int,
        default=None,
        help="Process that owns the lock (default: the invoking shell).",
    )
    acquire_parser.set_defaults(handler=_cmd_lock_acquire)

    release_parser = lock_sub.add_parser(
        "release",
        parents=[common],
        help="Delete the lock sentinel if it carries the given token",
    )
    release_parser.add_argument("--token", required=True, help="Token printed by 'lock acquire'.")
    release_parser.set_defaults(handler=_cmd_lock_release)

    lock_status_parser = lock_sub.add_parser(
        "status",
        parents=[common],
        help="Show the lock state",
    )
    lock_status_parser.set_defaults(handler=_cmd_lock_status)

    reap_parser = subparsers.add_parser(
        "reap",
        parents=[common],
        help="Reclaim a stale or corrupt lock sentinel",
    )
    reap_parser.add_argument(
        "--watch",
        action="store_true",
        default=False,
        help="Keep reaping on a schedule until interrupted.",
    )
    reap_parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between reap cycles (default: lock.reap_interval_seconds).",
    )
    reap_parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop watching after this many cycles.",
    )
    reap_parser.set_defaults(handler=_cmd_reap)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_status(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    status = workspace.status()
    payload = {"command": "status", **status.to_dict()}

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.heading(f"evolvedb project: {status.project_root}")
    if status.schema_version is None:
        renderer.kv("Schema version", "unreadable")
        renderer.warning(status.schema_error or "schema version file could not be parsed")
    else:
        renderer.kv("Schema version", status.schema_version)
    renderer.versions("Snapshots", status.snapshot_versions)
    renderer.versions("Migrations", status.migration_versions)
    renderer.kv("Database", "present" if status.database_exists else "absent")
    _render_lock(renderer, payload["lock"])
    return 0


def _cmd_bump(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    if _flag(args, "locked"):
        with workspace.locked():
            result = workspace.bump()
    else:
        result = workspace.bump()

    if _flag(args, "json"):
        _emit_json({"command": "bump", **result.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.heading(f"Schema version {result.previous_version} -> {result.new_version}")
    renderer.section("Changed artifacts:")
    renderer.items(list(result.changed_artifacts))
    return 0


def _cmd_compare(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    current_arg = getattr(args, "current", None)
    current = (
        _read_source(current_arg, workspace.project_root)
        if current_arg is not None
        else workspace.current_types()
    )

    stored = None if _flag(args, "from_db") else _read_source(args.stored, workspace.project_root)
    guard = workspace.locked() if _flag(args, "locked") else contextlib.nullcontext()
    with guard:
        if stored is None:
            comparison = workspace.compare_with_database(current)
        else:
            comparison = workspace.compare_shape(stored, current)

    exit_code = {
        ShapeVerdict.SAME: 0,
        ShapeVerdict.DIFFERENT: 1,
        ShapeVerdict.ERROR: 4,
    }[comparison.verdict]

    if _flag(args, "json"):
        _emit_json({"command": "compare", **comparison.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Verdict", comparison.verdict.value)
    renderer.text(comparison.message)
    if renderer.verbose and comparison.current_digest is not None:
        renderer.kv("Stored digest", comparison.stored_digest)
        renderer.kv("Current digest", comparison.current_digest)
    if comparison.fingerprint_updated:
        renderer.text("Database fingerprint refreshed to the current types.")
    return exit_code


def _cmd_lock_acquire(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _start_logging(config)
    owner_pid = args.owner_pid if args.owner_pid is not None else os.getppid()
    manager = LockManager(
        config["paths"]["lock_file"],
        stale_after_seconds=config["lock"]["stale_after_seconds"],
        pid=owner_pid,
    )
    handle = Workspace.from_config(config, lock_manager=manager).acquire_lock()
    payload = {
        "command": "lock acquire",
        "path": handle.path.as_posix(),
        "pid": handle.pid,
        "token": handle.token,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Lock", handle.path.as_posix())
    renderer.kv("Owner pid", handle.pid)
    renderer.kv("Token", handle.token)
    return 0


def _cmd_lock_release(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    handle = LockHandle(
        path=workspace.lock_manager.path,
        token=args.token,
        pid=os.getpid(),
        created_at=datetime.now(UTC),
    )
    released = workspace.release_lock(handle)

    if _flag(args, "json"):
        _emit_json({"command": "lock release", "released": released})
    else:
        renderer = _get_renderer(args)
        if released:
            renderer.ok("lock released")
        else:
            renderer.fail("lock not released: sentinel missing or token does not match")
    return 0 if released else 1


def _cmd_lock_status(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    lock = workspace.lock_status().to_dict()

    if _flag(args, "json"):
        _emit_json({"command": "lock status", "lock": lock})
        return 0

    _render_lock(_get_renderer(args), lock)
    return 0


def _cmd_reap(args: argparse.Namespace) -> int:
    workspace = _open_workspace(args)
    interval = getattr(args, "interval", None)
    if interval is not None and interval <= 0:
        raise CLIError("--interval must be > 0", exit_code=2)
    reaper = workspace.reaper(interval_seconds=interval)

    if _flag(args, "watch"):
        try:
            reclaimed = reaper.run_forever(max_cycles=args.max_cycles)
        except KeyboardInterrupt:
            reclaimed = None
        payload: dict[str, object] = {"command": "reap", "mode": "watch", "reclaimed": reclaimed}
    else:
        status = reaper.run_once()
        payload = {
            "command": "reap",
            "mode": "once",
            "reclaimed": status.state in (LockState.STALE, LockState.CORRUPT),
            "observed": status.to_dict(),
        }

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    if payload["mode"] == "watch":
        renderer.kv("Reclaimed", "interrupted" if reclaimed is None else reclaimed)
    elif payload["reclaimed"]:
        renderer.ok("stale lock reclaimed")
    else:
        renderer.text("Nothing to reclaim.")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    loaded = _load_layers(args)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": loaded.config, "sources": loaded.sources()})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Config file", loaded.config_file or "(defaults only)")
    if loaded.env_overrides:
        renderer.kv("Env overrides", ", ".join(loaded.env_overrides))
    renderer.text(json.dumps(loaded.config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _render_lock(renderer: CLIRenderer, lock: object) -> None:
    if not isinstance(lock, Mapping):
        return
    renderer.section("Lock:")
    renderer.kv("State", lock.get("state"), indent=2)
    if lock.get("pid") is not None:
        renderer.kv("Owner pid", lock.get("pid"), indent=2)
        renderer.kv("Since", lock.get("created_at"), indent=2)
        age = lock.get("age_seconds")
        if isinstance(age, (int, float)):
            renderer.kv("Age", f"{age:.0f}s", indent=2)


def _load_layers(args: argparse.Namespace) -> LoadedConfig:
    config_path = getattr(args, "config_path", None)
    overrides: dict[str, object] = {}
    search_from: Path | None = None
    project_root = getattr(args, "project_root", None)
    if project_root is not None:
        search_from = Path(project_root).expanduser().resolve()
        overrides["paths.project_root"] = str(search_from)

    try:
        return load_config_layers(config_path, search_from=search_from, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    return _load_layers(args).config


def _start_logging(config: Mapping[str, object]) -> None:
    observability = config.get("observability")
    setup_logging(
        observability if isinstance(observability, Mapping) else None,
        run_id=new_run_id(),
    )


def _open_workspace(args: argparse.Namespace) -> Workspace:
    config = _load_effective_config(args)
    project_root = Path(config["paths"]["project_root"])
    if not project_root.is_dir():
        raise CLIError(f"project root is not a directory: {project_root}", exit_code=2)
    _start_logging(config)
    return Workspace.from_config(config)


def _read_source(path_arg: str, project_root: Path) -> str:
    candidate = Path(path_arg).expanduser()
    resolved = candidate if candidate.is_absolute() else project_root / candidate
    try:
        return resolved.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CLIError(f"types source not found: {resolved}", exit_code=2) from exc


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
