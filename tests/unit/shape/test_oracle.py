from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from evolvedb.errors import CompileError
from evolvedb.shape.comparator import ShapeComparator, ShapeVerdict
from evolvedb.shape.oracle import (
    CommandExecutionResult,
    CommandShapeOracle,
    StructuralShapeOracle,
    SubprocessCommandRunner,
)

TYPES = "module Types exposing (..)\n\ntype alias BackendModel = { counter : Int }\n"

# Stand-in compiler: whitespace-normalised probe source becomes the artifact.
_FAKE_COMPILER = """
import pathlib, sys
entry = pathlib.Path(sys.argv[1])
source = (entry.parent / "EvolveDbProbeTypes.elm").read_text(encoding="utf-8")
if "type alias" not in source:
    sys.stderr.write("-- PARSE ERROR -- no declarations")
    sys.exit(1)
if "main" not in entry.read_text(encoding="utf-8"):
    sys.exit(2)
pathlib.Path(sys.argv[2]).write_text(" ".join(source.split()), encoding="utf-8")
"""


class _ScriptedRunner:
    def __init__(
        self, *, returncode: int = 0, stderr: str = "", write: bytes | None = None
    ) -> None:
        self.calls: list[tuple[tuple[str, ...], Path]] = []
        self._returncode = returncode
        self._stderr = stderr
        self._write = write

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
    ) -> CommandExecutionResult:
        self.calls.append((tuple(command), cwd))
        output = next(part for part in command if part.endswith("probe.js"))
        if self._write is not None:
            Path(output).write_bytes(self._write)
        return CommandExecutionResult(
            command=tuple(command),
            cwd=cwd,
            returncode=self._returncode,
            stdout="",
            stderr=self._stderr,
            duration_ms=1,
        )


def _oracle(
    tmp_path: Path, runner: object, command: Sequence[str] | None = None
) -> CommandShapeOracle:
    return CommandShapeOracle(
        project_root=tmp_path,
        scratch_dir="script",
        command=command or ("compiler", "{entry}", "--output={output}"),
        runner=runner,  # type: ignore[arg-type]
    )


def test_command_oracle_expands_placeholders_and_cleans_up(tmp_path: Path) -> None:
    runner = _ScriptedRunner(write=b"compiled")

    artifact = _oracle(tmp_path, runner).compile_to_artifact(TYPES)

    assert artifact == b"compiled"
    [(argv, cwd)] = runner.calls
    assert cwd == tmp_path
    assert argv[0] == "compiler"
    assert argv[1] == "script/EvolveDbProbeWitness.elm"
    assert argv[2].startswith("--output=") and argv[2].endswith("/probe.js")
    assert list((tmp_path / "script").iterdir()) == []
    assert not Path(argv[2].removeprefix("--output=")).exists()


def test_command_oracle_failure_raises_with_diagnostics(tmp_path: Path) -> None:
    runner = _ScriptedRunner(returncode=1, stderr="-- NAMING ERROR --")

    with pytest.raises(CompileError, match="NAMING ERROR") as excinfo:
        _oracle(tmp_path, runner).compile_to_artifact(TYPES)

    assert excinfo.value.returncode == 1
    assert list((tmp_path / "script").iterdir()) == []


def test_command_oracle_requires_an_artifact(tmp_path: Path) -> None:
    with pytest.raises(CompileError, match="no artifact"):
        _oracle(tmp_path, _ScriptedRunner()).compile_to_artifact(TYPES)


def test_missing_compiler_is_a_compile_error(tmp_path: Path) -> None:
    runner = SubprocessCommandRunner()
    with pytest.raises(CompileError, match="not found"):
        runner.run(["evolvedb-no-such-compiler-binary"], cwd=tmp_path, timeout_seconds=5)


def test_comparator_over_real_subprocess(tmp_path: Path) -> None:
    oracle = CommandShapeOracle(
        project_root=tmp_path,
        command=(sys.executable, "-c", _FAKE_COMPILER, "{entry}", "{output}"),
        timeout_seconds=60,
    )
    comparator = ShapeComparator(oracle)

    reformatted = TYPES.replace("{ counter : Int }", "{ counter :   Int\n    }")
    renamed = TYPES.replace("counter", "visits")

    assert comparator.compare(TYPES, reformatted).verdict is ShapeVerdict.SAME
    assert comparator.compare(TYPES, renamed).verdict is ShapeVerdict.DIFFERENT
    error = comparator.compare(TYPES, "module Types exposing (..)\n")
    assert error.verdict is ShapeVerdict.ERROR
    assert "PARSE ERROR" in error.message
    assert list((tmp_path / "script").iterdir()) == []


def test_structural_oracle_honours_root_type() -> None:
    source = "module Types exposing (..)\n\ntype alias FrontendModel = { page : String }\n"

    assert StructuralShapeOracle(root_type="FrontendModel").compile_to_artifact(source)
    with pytest.raises(CompileError):
        StructuralShapeOracle().compile_to_artifact(source)


def test_command_oracle_validates_arguments(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        CommandShapeOracle(project_root=tmp_path, command=())
    with pytest.raises(ValueError):
        CommandShapeOracle(project_root=tmp_path, timeout_seconds=0)
