"""
evolvedb — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py
Last updated: 2026-10-19

Purpose
- Exercise `python -m evolvedb` against a temporary project: status, bump, compare,
  lock acquire/release/status, reap and config.
- Verify exit codes, JSON payloads and on-disk side effects.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from evolvedb.main import cli_entrypoint

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

TYPES = """module Types exposing (..)


type alias BackendModel =
    { counter : Int
    , names : List String
    }
"""

pytestmark = pytest.mark.integration


def _run_cli(project: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("EVOLVEDB_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "-m", "evolvedb", *args],
        cwd=project,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _json(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    return json.loads(completed.stdout.strip().splitlines()[-1])


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "lib").mkdir()
    (root / "src" / "Types.elm").write_text(TYPES, encoding="utf-8")
    (root / "lib" / "SchemaVersion.elm").write_text(
        "module SchemaVersion exposing (current)\n\n\ncurrent : Int\ncurrent =\n    3\n",
        encoding="utf-8",
    )
    (root / "db.bin").write_text(json.dumps({"t": TYPES, "d": "AAAA"}), encoding="utf-8")
    (root / "evolvedb.toml").write_text('[oracle]\nbackend = "structural"\n', encoding="utf-8")
    return root


def test_status_bump_and_compare_round_trip(project: Path) -> None:
    status = _run_cli(project, "status", "--json")
    assert status.returncode == 0, status.stderr
    payload = _json(status)
    assert payload["schema_version"] == 3
    assert payload["database_exists"] is True
    assert payload["lock"] == {
        "state": "unlocked",
        "pid": None,
        "created_at": None,
        "age_seconds": None,
    }

    bump = _run_cli(project, "bump", "--json")
    assert bump.returncode == 0, bump.stderr
    assert _json(bump) == {
        "command": "bump",
        "previous_version": 3,
        "new_version": 4,
        "changed_artifacts": [
            "src/Evergreen/V3/Types.elm",
            "src/Evergreen/Migrate/V4.elm",
            "script/Migrate.elm",
            "lib/SchemaVersion.elm",
        ],
    }
    assert "current = 4" in (project / "lib" / "SchemaVersion.elm").read_text(encoding="utf-8")

    same = _run_cli(project, "compare", "--stored", "src/Evergreen/V3/Types.elm", "--json")
    assert same.returncode == 0, same.stderr
    assert _json(same)["verdict"] == "same"

    (project / "src" / "Types.elm").write_text(
        TYPES.replace("names", "labels"), encoding="utf-8"
    )
    different = _run_cli(project, "compare", "--stored", "src/Evergreen/V3/Types.elm")
    assert different.returncode == 1
    assert "different" in different.stdout

    (project / "src" / "Types.elm").write_text("not valid source", encoding="utf-8")
    error = _run_cli(project, "compare", "--from-db", "--json")
    assert error.returncode == 4
    assert _json(error)["message"].startswith("Failed to compile current types:")


def test_compare_from_db_refreshes_fingerprint(project: Path) -> None:
    reformatted = TYPES.replace(
        "    { counter : Int\n    , names : List String\n    }",
        "    { names : List String, counter : Int }",
    )
    (project / "src" / "Types.elm").write_text(reformatted, encoding="utf-8")

    completed = _run_cli(project, "compare", "--from-db", "--json")

    assert completed.returncode == 0, completed.stderr
    assert _json(completed)["fingerprint_updated"] is True
    envelope = json.loads((project / "db.bin").read_text(encoding="utf-8"))
    assert envelope == {"t": reformatted, "d": "AAAA"}


def test_locked_compare_respects_a_held_lock(project: Path) -> None:
    reformatted = TYPES.replace(
        "    { counter : Int\n    , names : List String\n    }",
        "    { names : List String, counter : Int }",
    )
    (project / "src" / "Types.elm").write_text(reformatted, encoding="utf-8")
    original = (project / "db.bin").read_bytes()

    held = _run_cli(project, "lock", "acquire", "--json")
    assert held.returncode == 0, held.stderr
    contended = _run_cli(project, "compare", "--from-db", "--locked")
    assert contended.returncode == 3
    assert (project / "db.bin").read_bytes() == original

    _run_cli(project, "lock", "release", "--token", str(_json(held)["token"]))
    completed = _run_cli(project, "compare", "--from-db", "--locked", "--json")

    assert completed.returncode == 0, completed.stderr
    assert _json(completed)["fingerprint_updated"] is True
    assert not (project / "db.bin.lock").exists()


def test_lock_acquire_contention_release(project: Path) -> None:
    acquired = _run_cli(project, "lock", "acquire", "--json")
    assert acquired.returncode == 0, acquired.stderr
    token = _json(acquired)["token"]
    # The default owner is the invoking process, which is this test process.
    assert _json(acquired)["pid"] == os.getpid()

    contended = _run_cli(project, "lock", "acquire")
    assert contended.returncode == 3
    assert f"pid {os.getpid()}" in contended.stderr

    status = _run_cli(project, "lock", "status", "--json")
    assert _json(status)["lock"]["state"] == "held"

    foreign = _run_cli(project, "lock", "release", "--token", str(uuid.uuid4()))
    assert foreign.returncode == 1
    assert (project / "db.bin.lock").exists()

    released = _run_cli(project, "lock", "release", "--token", str(token), "--json")
    assert released.returncode == 0, released.stderr
    assert _json(released) == {"command": "lock release", "released": True}
    assert not (project / "db.bin.lock").exists()


def test_reap_reclaims_stale_lock(project: Path) -> None:
    created = datetime.now(UTC) - timedelta(minutes=10)
    (project / "db.bin.lock").write_text(
        json.dumps(
            {
                "pid": os.getpid(),
                "createdAt": created.isoformat().replace("+00:00", "Z"),
                "token": str(uuid.uuid4()),
            }
        ),
        encoding="utf-8",
    )

    completed = _run_cli(project, "reap", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = _json(completed)
    assert payload["reclaimed"] is True
    assert payload["observed"]["state"] == "stale"
    assert not (project / "db.bin.lock").exists()


def test_config_errors_exit_with_code_two(project: Path) -> None:
    (project / "evolvedb.toml").write_text("[lock]\nstale_after_seconds = -1\n", encoding="utf-8")

    completed = _run_cli(project, "status")

    assert completed.returncode == 2
    assert "lock.stale_after_seconds" in completed.stderr


def test_in_process_entrypoint_routes_parse_errors(
    project: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (project / "lib" / "SchemaVersion.elm").write_text("module SchemaVersion\n", encoding="utf-8")

    exit_code = cli_entrypoint(["bump", "--config", str(project / "evolvedb.toml")])

    assert exit_code == 2
    assert "current = <N>" in capsys.readouterr().err
    assert not (project / "src" / "Evergreen").exists()


def test_in_process_config_command(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["config", "--config", str(project / "evolvedb.toml"), "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["config"]["oracle"]["backend"] == "structural"
    assert payload["config"]["paths"]["project_root"] == project.resolve().as_posix()
