"""Command-line surface for evolvedb."""

from evolvedb.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
