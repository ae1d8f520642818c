"""
evolvedb — compile oracles for shape comparison

File: src/evolvedb/shape/oracle.py
Last updated: 2026-10-17

Purpose
- Turn a type-definition source (already declared as the probe module) into
  deterministic artifact bytes whose equality means "same serialised shape".

Functional requirements
- ``CommandShapeOracle`` writes the probe module and a witness program that forces a
  wire encoder for the root type, runs the configured compiler command in the project
  root, and returns the produced artifact.
- ``StructuralShapeOracle`` computes the artifact in-process from the parsed type
  declarations; it needs no toolchain.
- Failures raise ``CompileError`` carrying the compiler diagnostics.
- Scratch files and the output directory are removed on every exit path.
"""

from __future__ import annotations

import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from evolvedb.constants import (
    DEFAULT_ORACLE_COMMAND,
    ORACLE_TIMEOUT_SECONDS,
    PROBE_TYPES_MODULE,
    PROBE_WITNESS_MODULE,
    ROOT_TYPE,
    SCRATCH_DIR,
)
from evolvedb.errors import CompileError
from evolvedb.shape.declarations import canonical_shape, parse_module
from evolvedb.utils.fs import remove_if_exists, temp_directory
from evolvedb.versioning.emitter import ElmEmitter

_ARTIFACT_NAME = "probe.js"


@runtime_checkable
class ShapeOracle(Protocol):
    """Compiles one probe-module source to comparable artifact bytes."""

    def compile_to_artifact(self, source: str) -> bytes: ...


@dataclass(frozen=True, slots=True)
class CommandExecutionResult:
    """Normalized subprocess execution result."""

    command: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str
    duration_ms: int


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
    ) -> CommandExecutionResult: ...


class SubprocessCommandRunner:
    """Default command runner backed by ``subprocess.run``."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
    ) -> CommandExecutionResult:
        started = time.monotonic()
        try:
            completed = subprocess.run(
                list(command),
                cwd=cwd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise CompileError(
                f"compile command timed out after {timeout_seconds} seconds",
                command=command,
            ) from exc
        except FileNotFoundError as exc:
            raise CompileError(
                f"compile command not found: {command[0] if command else '<empty>'}",
                command=command,
            ) from exc

        return CommandExecutionResult(
            command=tuple(command),
            cwd=cwd,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


class StructuralShapeOracle:
    """In-process oracle: canonical JSON of the declarations reachable from the root."""

    def __init__(self, *, root_type: str = ROOT_TYPE) -> None:
        self._root_type = root_type

    def compile_to_artifact(self, source: str) -> bytes:
        return canonical_shape(parse_module(source), root=self._root_type)


class CommandShapeOracle:
    """Oracle backed by an external compiler invoked through an argv template."""

    def __init__(
        self,
        *,
        project_root: Path | str,
        scratch_dir: Path | str = SCRATCH_DIR,
        command: Sequence[str] = DEFAULT_ORACLE_COMMAND,
        timeout_seconds: float = ORACLE_TIMEOUT_SECONDS,
        emitter: ElmEmitter | None = None,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._project_root = Path(project_root)
        scratch = Path(scratch_dir)
        self._scratch_dir = scratch if scratch.is_absolute() else self._project_root / scratch
        self._command = tuple(command)
        self._timeout_seconds = float(timeout_seconds)
        self._emitter = emitter if emitter is not None else ElmEmitter()
        self._runner = runner if runner is not None else SubprocessCommandRunner()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def compile_to_artifact(self, source: str) -> bytes:
        self._scratch_dir.mkdir(parents=True, exist_ok=True)
        types_path = self._scratch_dir / f"{PROBE_TYPES_MODULE}.elm"
        witness_path = self._scratch_dir / f"{PROBE_WITNESS_MODULE}.elm"
        try:
            types_path.write_text(source, encoding="utf-8")
            witness_path.write_text(self._emitter.shape_witness(), encoding="utf-8")
            with temp_directory(prefix="evolvedb-oracle-") as output_dir:
                output_path = output_dir / _ARTIFACT_NAME
                argv = self._expand(entry=self._entry(witness_path), output=output_path)
                result = self._runner.run(
                    argv, cwd=self._project_root, timeout_seconds=self._timeout_seconds
                )
                self._logger.debug(
                    "oracle_command_finished",
                    command=list(result.command),
                    returncode=result.returncode,
                    duration_ms=result.duration_ms,
                )
                if result.returncode != 0:
                    raise CompileError(
                        f"compile command exited with status {result.returncode}",
                        command=result.command,
                        returncode=result.returncode,
                        diagnostics=result.stderr or result.stdout,
                    )
                if not output_path.is_file():
                    raise CompileError(
                        "compile command succeeded but produced no artifact",
                        command=result.command,
                        returncode=result.returncode,
                    )
                return output_path.read_bytes()
        finally:
            remove_if_exists(types_path)
            remove_if_exists(witness_path)

    def _entry(self, witness_path: Path) -> str:
        try:
            return witness_path.relative_to(self._project_root).as_posix()
        except ValueError:
            return witness_path.as_posix()

    def _expand(self, *, entry: str, output: Path) -> tuple[str, ...]:
        return tuple(
            part.replace("{entry}", entry).replace("{output}", output.as_posix())
            for part in self._command
        )


__all__ = [
    "CommandExecutionResult",
    "CommandRunner",
    "CommandShapeOracle",
    "ShapeOracle",
    "StructuralShapeOracle",
    "SubprocessCommandRunner",
]
