"""Module entrypoint for ``python -m evolvedb``."""

from __future__ import annotations

from evolvedb.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
