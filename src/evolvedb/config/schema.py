"""
evolvedb — configuration schema and validation.

File: src/evolvedb/config/schema.py
Last updated: 2026-10-19

Purpose
- Define the built-in defaults for ``evolvedb.toml`` and the rule for every field.
- Validate a merged payload into a normalized config or a list of issues, each
  addressed by its dotted field path (``lock.stale_after_seconds``).

Every section and every field is required after merging onto the defaults, and
unknown names are rejected so that a typo never silently falls back to a default.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from evolvedb.constants import (
    CHAIN_PROGRAM_FILE,
    CONFIG_SCHEMA_VERSION,
    DB_FILE,
    DEFAULT_ORACLE_COMMAND,
    EVERGREEN_DIR,
    FINGERPRINT_FIELD,
    LOCK_FILE,
    LOCK_REAP_INTERVAL_SECONDS,
    LOCK_STALE_AFTER_SECONDS,
    ORACLE_BACKENDS,
    ORACLE_TIMEOUT_SECONDS,
    ROOT_TYPE,
    SCHEMA_VERSION_FILE,
    SCRATCH_DIR,
    TYPES_FILE,
    TYPES_MODULE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Resolved against the config file's directory.
ROOT_PATH_FIELD: Final[tuple[str, str]] = ("paths", "project_root")

# Resolved against ``paths.project_root``.
PROJECT_PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("paths", "db_file"),
    ("paths", "lock_file"),
    ("paths", "schema_version"),
    ("paths", "types"),
    ("paths", "evergreen_dir"),
    ("paths", "chain_program"),
    ("paths", "scratch_dir"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    project_root: str
    db_file: str
    lock_file: str
    schema_version: str
    types: str
    evergreen_dir: str
    chain_program: str
    scratch_dir: str


class SchemaConfig(TypedDict):
    types_module: str
    root_type: str
    fingerprint_field: str


class LockConfig(TypedDict):
    stale_after_seconds: float
    reap_interval_seconds: float


class OracleConfig(TypedDict):
    backend: Literal["command", "structural"]
    command: list[str]
    timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    log_to_stderr: bool
    retain_runs: int


class EvolveDBConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    schema: SchemaConfig
    lock: LockConfig
    oracle: OracleConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[EvolveDBConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "project_root": ".",
        "db_file": str(DB_FILE),
        "lock_file": str(LOCK_FILE),
        "schema_version": str(SCHEMA_VERSION_FILE),
        "types": str(TYPES_FILE),
        "evergreen_dir": str(EVERGREEN_DIR),
        "chain_program": str(CHAIN_PROGRAM_FILE),
        "scratch_dir": str(SCRATCH_DIR),
    },
    "schema": {
        "types_module": TYPES_MODULE,
        "root_type": ROOT_TYPE,
        "fingerprint_field": FINGERPRINT_FIELD,
    },
    "lock": {
        "stale_after_seconds": LOCK_STALE_AFTER_SECONDS,
        "reap_interval_seconds": LOCK_REAP_INTERVAL_SECONDS,
    },
    "oracle": {
        "backend": "command",
        "command": list(DEFAULT_ORACLE_COMMAND),
        "timeout_seconds": ORACLE_TIMEOUT_SECONDS,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": ".evolvedb/logs",
        "log_to_stderr": False,
        "retain_runs": 20,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config when valid, otherwise ``config`` is ``None``."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` lists every failing field."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: invalid"))


class _Invalid(Exception):
    pass


_FieldRule = Callable[[object], object]


def _type_name(value: object) -> str:
    return type(value).__name__


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {_type_name(value)}")
    if not value.strip():
        raise _Invalid("must not be empty")
    return value.strip()


def _path_text(value: object) -> str:
    text = _text(value)
    if "\x00" in text:
        raise _Invalid("must not contain NUL bytes")
    return text


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {_type_name(value)}")
    return value


def _positive_seconds(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Invalid(f"expected number, got {_type_name(value)}")
    seconds = float(value)
    if not math.isfinite(seconds):
        raise _Invalid("must be finite")
    if seconds <= 0:
        raise _Invalid("must be > 0")
    return seconds


def _choice(options: tuple[str, ...]) -> _FieldRule:
    def rule(value: object) -> str:
        text = _text(value)
        if text not in options:
            raise _Invalid(f"invalid value {text!r}; expected one of: {', '.join(sorted(options))}")
        return text

    return rule


def _elm_name(*, dotted: bool) -> _FieldRule:
    def rule(value: object) -> str:
        text = _text(value)
        parts = text.split(".") if dotted else [text]
        if not all(part[:1].isupper() and part.replace("_", "").isalnum() for part in parts):
            raise _Invalid("must be a capitalised Elm name")
        return text

    return rule


def _positive_int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {_type_name(value)}")
    if value < 1:
        raise _Invalid("must be >= 1")
    return value


def _compile_command(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        raise _Invalid("expected a non-empty array of strings")
    words = [_text(word) for word in value]
    for placeholder in ("{entry}", "{output}"):
        if not any(placeholder in word for word in words):
            raise _Invalid(f"must contain an '{placeholder}' placeholder")
    return words


def _schema_version(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {_type_name(value)}")
    if value != ConfigSchemaVersion:
        raise _Invalid(migration_guidance(value))
    return value


_RULES: Final[dict[str, dict[str, _FieldRule]]] = {
    "meta": {"schema_version": _schema_version},
    "paths": {key: _path_text for key in DEFAULT_CONFIG["paths"]},
    "schema": {
        "types_module": _elm_name(dotted=True),
        "root_type": _elm_name(dotted=False),
        "fingerprint_field": _text,
    },
    "lock": {
        "stale_after_seconds": _positive_seconds,
        "reap_interval_seconds": _positive_seconds,
    },
    "oracle": {
        "backend": _choice(ORACLE_BACKENDS),
        "command": _compile_command,
        "timeout_seconds": _positive_seconds,
    },
    "observability": {
        "log_level": _choice(LOG_LEVELS),
        "log_dir": _path_text,
        "log_to_stderr": _flag,
        "retain_runs": _positive_int,
    },
}


def default_config() -> EvolveDBConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Explain how to reconcile a ``meta.schema_version`` that is not the supported one."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade evolvedb.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade evolvedb"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; neither input is modified."""

    merged: dict[str, Any] = {
        key: merge_config(value, {}) if isinstance(value, Mapping) else copy.deepcopy(value)
        for key, value in base.items()
    }
    for key, value in overlay.items():
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {_type_name(config)}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = [
        ConfigValidationIssue(str(name), "unknown field")
        for name in sorted(map(str, config))
        if name not in _RULES
    ]
    normalized: dict[str, Any] = {}
    for section in sorted(_RULES):
        payload = config.get(section)
        if payload is None:
            issues.append(ConfigValidationIssue(section, "missing required field"))
        elif not isinstance(payload, Mapping):
            message = f"expected object, got {_type_name(payload)}"
            issues.append(ConfigValidationIssue(section, message))
        else:
            normalized[section] = _validate_section(section, payload, issues)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_section(
    section: str, payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    rules = _RULES[section]
    for name in sorted(map(str, payload)):
        if name not in rules:
            issues.append(ConfigValidationIssue(f"{section}.{name}", "unknown field"))

    out: dict[str, Any] = {}
    for name in sorted(rules):
        field_path = f"{section}.{name}"
        if name not in payload:
            issues.append(ConfigValidationIssue(field_path, "missing required field"))
            continue
        try:
            out[name] = rules[name](payload[name])
        except _Invalid as exc:
            issues.append(ConfigValidationIssue(field_path, str(exc)))
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "EvolveDBConfig",
    "LOG_LEVELS",
    "PROJECT_PATH_FIELDS",
    "ROOT_PATH_FIELD",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
