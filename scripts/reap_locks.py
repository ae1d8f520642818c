"""
evolvedb — stale lock reaper.

Purpose
- Reclaim a stale or corrupt ``db.bin.lock`` sentinel for one project, once or on a schedule.
- Never touch a lock whose owner is alive and younger than the staleness threshold.

Exit status is 0 when the pass (or watch loop) completed, 1 on any error.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reclaim stale database lock sentinels for an evolvedb project.",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project directory containing db.bin and db.bin.lock (default: cwd).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="evolvedb TOML config (default: nearest evolvedb.toml above --project-root).",
    )
    parser.add_argument("--watch", action="store_true", help="Keep reaping until interrupted.")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between watch cycles (default: lock.reap_interval_seconds).",
    )
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles.")
    parser.add_argument("--json", action="store_true", help="Emit one JSON object on stdout.")
    return parser.parse_args(argv)


def _report(payload: Mapping[str, object], *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
        return
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            print(f"{key}:")
            for inner in sorted(value):
                print(f"  {inner}: {value[inner]}")
        else:
            print(f"{key}: {value}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    project_root = args.project_root.expanduser().resolve()
    mode = "watch" if args.watch else "once"

    _ensure_src_path()
    from evolvedb.config import load_config
    from evolvedb.observability import new_run_id, setup_logging, shutdown_logging
    from evolvedb.persistence.lock import LockState
    from evolvedb.workspace import Workspace

    payload: dict[str, object] = {"project_root": project_root.as_posix(), "mode": mode}
    try:
        config = load_config(
            args.config,
            search_from=project_root,
            cli_overrides={"paths.project_root": project_root.as_posix()},
        )
        setup_logging(config["observability"], run_id=new_run_id())
        workspace = Workspace.from_config(config)
        reaper = workspace.reaper(interval_seconds=args.interval)
        payload["lock_file"] = workspace.lock_manager.path.as_posix()

        if args.watch:
            try:
                payload["reclaimed"] = reaper.run_forever(max_cycles=args.max_cycles)
            except KeyboardInterrupt:
                payload["reclaimed"] = "interrupted"
        else:
            observed = reaper.run_once()
            payload["reclaimed"] = observed.state in (LockState.STALE, LockState.CORRUPT)
            payload["observed"] = observed.to_dict()
    except Exception as exc:  # noqa: BLE001 - script boundary.
        if args.json:
            _report({**payload, "error": str(exc)}, as_json=True)
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        shutdown_logging()

    _report(payload, as_json=args.json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
