"""
evolvedb — runtime config loader.

File: src/evolvedb/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective config for one project from four layers, highest first:
  CLI overrides, ``EVOLVEDB_*`` environment variables, ``evolvedb.toml``, built-in defaults.
- Locate ``evolvedb.toml`` by walking up from the project directory when no path is given.
- Resolve ``paths.project_root`` against the config file's directory and every other
  project path against the resolved root.

Environment variables are derived from the default config table: ``lock.stale_after_seconds``
is read from ``EVOLVEDB_LOCK_STALE_AFTER_SECONDS``. List-valued settings such as
``oracle.command`` are split with shell quoting rules.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from evolvedb.config.schema import (
    DEFAULT_CONFIG,
    PROJECT_PATH_FIELDS,
    ROOT_PATH_FIELD,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "evolvedb.toml"
ENV_PREFIX: Final[str] = "EVOLVEDB_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when a config file cannot be read or an override cannot be coerced."""


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    """Effective config plus the layers that produced it."""

    config: dict[str, Any]
    config_file: Path | None
    env_overrides: tuple[str, ...]

    def sources(self) -> dict[str, object]:
        return {
            "config_file": None if self.config_file is None else self.config_file.as_posix(),
            "env_overrides": list(self.env_overrides),
        }


def find_config_file(start: str | Path) -> Path | None:
    """Return the nearest ``evolvedb.toml`` in ``start`` or one of its parents."""

    directory = Path(start).expanduser().resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / DEFAULT_CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def load_config_layers(
    config_path: str | Path | None = None,
    *,
    search_from: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoadedConfig:
    """Load the effective config and report which file and env vars contributed."""

    start = Path(search_from) if search_from is not None else Path.cwd()
    if config_path is not None:
        config_file: Path | None = Path(config_path).expanduser().resolve()
        file_payload = _read_toml(config_file)
    else:
        config_file = find_config_file(start)
        file_payload = _read_toml(config_file) if config_file is not None else {}

    merged = assert_valid_config(merge_config(default_config(), file_payload))

    env_payload, env_names = _env_overrides(os.environ if environ is None else environ)
    merged = merge_config(merged, env_payload)
    merged = merge_config(merged, _dotted_overrides(cli_overrides or {}))
    merged = assert_valid_config(merged)

    base_dir = config_file.parent if config_file is not None else start.expanduser().resolve()
    return LoadedConfig(
        config=assert_valid_config(normalize_paths(merged, base_dir=base_dir)),
        config_file=config_file,
        env_overrides=env_names,
    )


def load_config(
    config_path: str | Path | None = None,
    *,
    search_from: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config mapping (see ``load_config_layers``)."""

    return load_config_layers(
        config_path,
        search_from=search_from,
        cli_overrides=cli_overrides,
        environ=environ,
    ).config


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every path in a validated config absolute and POSIX-formatted."""

    normalized = merge_config({}, config)
    root_section, root_key = ROOT_PATH_FIELD
    project_root = _absolute(normalized[root_section][root_key], base_dir)
    normalized[root_section][root_key] = project_root.as_posix()
    for section, key in PROJECT_PATH_FIELDS:
        normalized[section][key] = _absolute(normalized[section][key], project_root).as_posix()
    return normalized


def env_var_name(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a compact, key-sorted JSON rendering of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigLoadError(f"config file not found: {path}")
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _default_leaves(
    payload: Mapping[str, Any], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _default_leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _env_overrides(environ: Mapping[str, str]) -> tuple[dict[str, Any], tuple[str, ...]]:
    payload: dict[str, Any] = {}
    used: list[str] = []
    for path, default in _default_leaves(DEFAULT_CONFIG):
        name = env_var_name(path)
        raw = environ.get(name)
        if raw is None:
            continue
        _set_path(payload, path, _coerce(name, path, raw, default))
        used.append(name)
    return payload, tuple(used)


def _coerce(name: str, path: tuple[str, ...], raw: str, default: object) -> object:
    text = raw.strip()
    target = ".".join(path)
    if isinstance(default, bool):
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(f"{name} ({target}) must be a boolean (1/0/true/false/yes/no/on/off)")
    if isinstance(default, int):
        try:
            return int(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} ({target}) must be an integer, got {raw!r}") from exc
    if isinstance(default, float):
        try:
            return float(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} ({target}) must be a number, got {raw!r}") from exc
    if isinstance(default, list):
        try:
            return shlex.split(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} ({target}) is not a valid command line: {exc}") from exc
    return text


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted in sorted(overrides):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        _set_path(payload, path, overrides[dotted])
    return payload


def _set_path(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    node = target
    for part in path[:-1]:
        node = node.setdefault(part, {})
    node[path[-1]] = value


def _absolute(raw: str, base_dir: Path) -> Path:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate))


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LoadedConfig",
    "dump_effective_config",
    "env_var_name",
    "find_config_file",
    "load_config",
    "load_config_layers",
    "normalize_paths",
]
