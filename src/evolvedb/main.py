"""Process entrypoint for ``evolvedb``: run the CLI and map failures to exit codes."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Final

from evolvedb.config.loader import ConfigLoadError
from evolvedb.config.schema import ConfigValidationError
from evolvedb.errors import LockContentionError, SchemaParseError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    OPERATION_FAILED = 1
    CONFIG_ERROR = 2
    LOCK_CONTENTION = 3
    INTERNAL_ERROR = 4


# First match wins, so the more specific types come first.
_EXIT_ROUTES: Final[tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]] = (
    ((LockContentionError,), ExitCode.LOCK_CONTENTION),
    ((ConfigLoadError, ConfigValidationError, SchemaParseError), ExitCode.CONFIG_ERROR),
    ((FileNotFoundError, NotADirectoryError, PermissionError, ValueError), ExitCode.CONFIG_ERROR),
)

_KNOWN_CODES: Final[frozenset[int]] = frozenset(int(code) for code in ExitCode)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run ``evolvedb`` and return the process exit code (see ``ExitCode``)."""

    try:
        from evolvedb.ui.cli import run_cli

        return _coerce_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _coerce_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - process boundary.
        code = exit_code_for(exc)
        _report(exc, code)
        return int(code)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Classify ``exc`` or anything in its cause/context chain."""

    for item in _causes(exc):
        for types, code in _EXIT_ROUTES:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _coerce_exit_code(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw, int) and raw in _KNOWN_CODES:
        return raw
    if isinstance(raw, str) and raw.strip():
        print(raw.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def _report(exc: BaseException, code: ExitCode) -> None:
    if code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(exc, file=sys.stderr)
        return
    message = str(exc).strip() or type(exc).__name__
    print(f"error: {message}", file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
