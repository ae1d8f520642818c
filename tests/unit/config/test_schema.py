"""
evolvedb — unit tests for config schema validation

File: tests/unit/config/test_schema.py
Last updated: 2026-10-19

Purpose
- Validate strict config schema behavior, structured issue paths and schema-version guidance.
"""

from __future__ import annotations

import pytest

from evolvedb.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)


def test_defaults_validate_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert result.config["paths"]["db_file"] == "db.bin"
    assert result.config["schema"]["fingerprint_field"] == "t"


def test_default_config_is_a_fresh_copy() -> None:
    first = default_config()
    first["oracle"]["command"].append("--debug")

    assert "--debug" not in default_config()["oracle"]["command"]


def test_unknown_keys_are_rejected_with_paths() -> None:
    config = merge_config(default_config(), {"lock": {"ttl": 5}, "extra": {}})

    result = validate_config(config)

    assert not result.is_valid
    paths = {issue.path for issue in result.issues}
    assert {"lock.ttl", "extra"} <= paths


def test_type_and_range_issues_are_reported() -> None:
    config = merge_config(
        default_config(),
        {
            "lock": {"stale_after_seconds": 0, "reap_interval_seconds": True},
            "observability": {"log_level": "TRACE", "log_to_stderr": "yes", "retain_runs": 0},
            "schema": {"root_type": "backendModel"},
        },
    )

    result = validate_config(config)

    messages = {issue.path: issue.message for issue in result.issues}
    assert messages["lock.stale_after_seconds"] == "must be > 0"
    assert messages["lock.reap_interval_seconds"] == "expected number, got bool"
    assert "expected one of" in messages["observability.log_level"]
    assert messages["observability.log_to_stderr"] == "expected boolean, got str"
    assert messages["observability.retain_runs"] == "must be >= 1"
    assert messages["schema.root_type"] == "must be a capitalised Elm name"


@pytest.mark.parametrize(
    ("command", "missing"),
    [
        (["lamdera", "make", "--output={output}"], "{entry}"),
        (["lamdera", "make", "{entry}"], "{output}"),
    ],
)
def test_oracle_command_requires_placeholders(command: list[str], missing: str) -> None:
    config = merge_config(default_config(), {"oracle": {"command": command}})

    result = validate_config(config)

    assert [issue.path for issue in result.issues] == ["oracle.command"]
    assert missing in result.issues[0].message


def test_schema_version_mismatch_carries_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError) as exc_info:
        assert_valid_config(config)

    assert "upgrade evolvedb" in str(exc_info.value)
    assert exc_info.value.issues[0].path == "meta.schema_version"


def test_missing_sections_are_reported() -> None:
    config = default_config()
    del config["oracle"]  # type: ignore[misc]

    result = validate_config(config)

    assert [(issue.path, issue.message) for issue in result.issues] == [
        ("oracle", "missing required field")
    ]


def test_merge_config_is_deep_and_non_destructive() -> None:
    base = default_config()
    merged = merge_config(base, {"paths": {"db_file": "data/db.bin"}})

    assert merged["paths"]["db_file"] == "data/db.bin"
    assert merged["paths"]["lock_file"] == "db.bin.lock"
    assert base["paths"]["db_file"] == "db.bin"
