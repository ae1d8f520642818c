"""Read and rewrite the ``current = <N>`` schema version counter."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

from evolvedb.errors import SchemaParseError

if TYPE_CHECKING:
    from pathlib import Path

CURRENT_VERSION_RE: Final[re.Pattern[str]] = re.compile(r"current\s*=\s*(\d+)")


def parse_version(text: str, *, path: Path | str | None = None) -> int:
    match = CURRENT_VERSION_RE.search(text)
    if match is None:
        raise SchemaParseError("could not find 'current = <N>' in schema version file", path=path)
    return int(match.group(1))


def replace_version(text: str, new_version: int, *, path: Path | str | None = None) -> str:
    """Rewrite the first ``current = <N>`` to ``current = new_version``; other text is kept."""

    if new_version < 0:
        raise ValueError("schema version must be >= 0")
    rewritten, count = CURRENT_VERSION_RE.subn(f"current = {new_version}", text, count=1)
    if count == 0:
        raise SchemaParseError("could not find 'current = <N>' in schema version file", path=path)
    return rewritten


__all__ = [
    "CURRENT_VERSION_RE",
    "parse_version",
    "replace_version",
]
