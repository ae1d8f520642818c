"""Human-readable output for the evolvedb CLI.

File: src/evolvedb/ui/render.py
Last updated: 2026-10-19

Purpose
- Render status reports, bump results and lock details as aligned plain text.
- Write to an injectable stream so command output can be captured without patching stdout.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_LABEL_WIDTH = 16


class CLIRenderer:
    """Plain-text renderer; ``verbose`` enables digests and other detail lines."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream

    def _write(self, line: str = "") -> None:
        print(line, file=self._stream if self._stream is not None else sys.stdout)

    def heading(self, text: str) -> None:
        self._write(text)
        self._write("=" * min(len(text), 72))

    def kv(self, key: str, value: object, *, indent: int = 0) -> None:
        label = f"{' ' * indent}{key}:"
        self._write(f"{label:<{_LABEL_WIDTH}} {'-' if value is None else value}")

    def versions(self, key: str, versions: Sequence[int]) -> None:
        rendered = ", ".join(f"V{version}" for version in versions) if versions else "(none)"
        self.kv(key, rendered)

    def text(self, line: str) -> None:
        self._write(line)

    def section(self, title: str) -> None:
        self._write()
        self._write(title)

    def warning(self, text: str) -> None:
        self._write(f"  warning: {text}")

    def items(self, entries: Iterable[str]) -> None:
        for entry in entries:
            self._write(f"  - {entry}")

    def ok(self, label: str) -> None:
        self._write(f"ok: {label}")

    def fail(self, label: str) -> None:
        self._write(f"failed: {label}")


def create_renderer(*, verbose: bool = False, stream: TextIO | None = None) -> CLIRenderer:
    return CLIRenderer(verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
