"""
evolvedb — unit tests for the migration chain model

File: tests/unit/versioning/test_chain.py
Last updated: 2026-10-18

Purpose
- Validate branch/step counts and the rendered dispatcher for arbitrary versions.
"""

from __future__ import annotations

import re

import pytest
from hypothesis import given
from hypothesis import strategies as st

from evolvedb.versioning.chain import build_chain_program
from evolvedb.versioning.emitter import ElmEmitter


@given(latest=st.integers(min_value=0, max_value=40))
def test_chain_has_one_branch_and_one_step_per_stored_version(latest: int) -> None:
    program = build_chain_program(latest)

    assert program.target_version == latest + 1
    assert [branch.version for branch in program.branches] == list(range(1, latest + 1))
    assert [step.version for step in program.steps] == list(range(1, latest + 1))
    assert [step.is_final for step in program.steps] == [False] * max(latest - 1, 0) + (
        [True] if latest else []
    )
    migrate_imports = [
        decl.alias for decl in program.imports if decl.module.startswith("Evergreen.Migrate.")
    ]
    assert migrate_imports == [f"MigrateV{version}" for version in range(2, latest + 2)]


@given(latest=st.integers(min_value=0, max_value=25))
def test_rendered_chain_counts_match_the_model(latest: int) -> None:
    text = ElmEmitter().chain_program(build_chain_program(latest))

    decode_branches = re.findall(r"^ {24}(\d+) ->$", text, re.MULTILINE)
    assert [int(value) for value in decode_branches] == list(range(1, latest + 1))
    migration_calls = re.findall(r"MigrateV\d+\.backendModel model", text)
    assert len(migration_calls) == latest
    definitions = re.findall(r"^migrateFromV(\d+) model =$", text, re.MULTILINE)
    assert [int(value) for value in definitions] == list(range(1, latest + 1))


def test_chain_for_version_three_links_every_step() -> None:
    program = build_chain_program(3)
    steps = {step.function: step for step in program.steps}

    assert steps["migrateFromV1"].next_function == "migrateFromV2"
    assert steps["migrateFromV2"].next_function == "migrateFromV3"
    assert steps["migrateFromV3"].is_final
    assert steps["migrateFromV2"].source_types_module == "Evergreen.V2.Types"
    assert steps["migrateFromV2"].migration_alias == "MigrateV3"
    assert [decl.render() for decl in program.imports] == [
        "import BackendTask exposing (BackendTask)",
        "import Evergreen.Migrate.V2 as MigrateV2",
        "import Evergreen.Migrate.V3 as MigrateV3",
        "import Evergreen.Migrate.V4 as MigrateV4",
        "import Evergreen.V1.Types",
        "import Evergreen.V2.Types",
        "import Evergreen.V3.Types",
        "import FatalError exposing (FatalError)",
        "import LamderaDb.Migration",
        "import Lamdera.Wire3 as Wire",
        "import Pages.Script as Script exposing (Script)",
        "import SchemaVersion",
        "import Types",
    ]


def test_rendered_chain_is_deterministic_and_handles_current_and_unknown() -> None:
    emitter = ElmEmitter()
    first = emitter.chain_program(build_chain_program(2))
    second = emitter.chain_program(build_chain_program(2))

    assert first == second
    assert first.startswith("module Migrate exposing (run)\n")
    assert "if version == SchemaVersion.current then" in first
    assert "no migration path is defined" in first
    assert '"V2 decode failed"' in first
    assert "migrateFromV2 : Evergreen.V2.Types.BackendModel -> BackendTask FatalError ()" in first
    assert "            MigrateV3.backendModel model\n    in\n    saveAndLog currentModel" in first
    assert "    migrateFromV2 (MigrateV2.backendModel model)" in first


def test_negative_version_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_chain_program(-1)
