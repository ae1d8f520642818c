"""
evolvedb — schema evolution and safe persistence for a single-file application database

File: src/evolvedb/__init__.py
Last updated: 2026-10-12

Purpose
- Package root. Keeps the import-time surface small: no config loading and no logging
  initialisation happen on import.

Public surface
- ``Workspace`` bundles the operations consumed by the command line: load/save state,
  version bumps, shape comparison, and lock acquisition/release.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
