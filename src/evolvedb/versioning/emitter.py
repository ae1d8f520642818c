"""
evolvedb — Elm source emitter

File: src/evolvedb/versioning/emitter.py
Last updated: 2026-10-17

Purpose
- Render every generated Elm artifact: the migration chain program, migration stubs,
  the shape witness, and the header/import rewrites applied to snapshots.

Functional requirements
- Rendering is deterministic: same inputs, byte-identical text.
- Templates are strict; a missing variable is a programming error, not empty output.
- Rewrites only touch line-leading ``module``/``import`` declarations.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined

from evolvedb.constants import (
    DB_FILE,
    MIGRATE_NAMESPACE,
    PROBE_TYPES_MODULE,
    PROBE_WITNESS_MODULE,
    ROOT_TYPE,
    SNAPSHOT_NAMESPACE,
    TYPES_MODULE,
)
from evolvedb.errors import SchemaParseError
from evolvedb.versioning.chain import migration_module_name, snapshot_module_name

if TYPE_CHECKING:
    from evolvedb.versioning.chain import ChainProgram

CHAIN_TEMPLATE: Final[str] = r"""module {{ program.module_name }} exposing (run)

{-| Migrates {{ db_name }} from any stored schema version to version {{ program.target_version }}.

Generated by evolvedb. This module is rewritten on every schema bump.

-}

{% for decl in program.imports %}
{{ decl.render() }}
{% endfor %}


run : Script
run =
    Script.withoutCliOptions
        (LamderaDb.Migration.readVersioned
            |> BackendTask.andThen
                (\{ version, bytes } ->
                    case version of
{% for branch in program.branches %}
                        {{ branch.version }} ->
                            case Wire.bytesDecode {{ branch.types_module }}.w3_decode_{{ program.root_type }} bytes of
                                Just v{{ branch.version }}Model ->
                                    {{ branch.entry_function }} v{{ branch.version }}Model

                                Nothing ->
                                    BackendTask.fail
                                        (FatalError.build
                                            { title = "V{{ branch.version }} decode failed"
                                            , body = "Could not decode {{ db_name }} as V{{ branch.version }} {{ program.root_type }}."
                                            }
                                        )

{% endfor %}
                        _ ->
                            if version == {{ program.counter_module }}.current then
                                Script.log ("{{ db_name }} is already at version " ++ String.fromInt version ++ ". No migration needed.")

                            else
                                BackendTask.fail
                                    (FatalError.build
                                        { title = "Unknown version"
                                        , body = "{{ db_name }} is at version " ++ String.fromInt version ++ " but no migration path is defined."
                                        }
                                    )
                )
        )
{% for step in program.steps %}


{{ step.function }} : {{ step.source_types_module }}.{{ program.root_type }} -> BackendTask FatalError ()
{{ step.function }} model =
{% if step.is_final %}
    let
        currentModel =
            {{ step.migration_alias }}.{{ migration_function }} model
    in
    saveAndLog currentModel
{% else %}
    {{ step.next_function }} ({{ step.migration_alias }}.{{ migration_function }} model)
{% endif %}
{% endfor %}


saveAndLog : {{ program.types_module }}.{{ program.root_type }} -> BackendTask FatalError ()
saveAndLog currentModel =
    let
        bytes =
            Wire.bytesEncode ({{ program.types_module }}.w3_encode_{{ program.root_type }} currentModel)
    in
    LamderaDb.Migration.writeVersioned {{ program.counter_module }}.current bytes
        |> BackendTask.andThen
            (\_ -> Script.log ("Migrated {{ db_name }} to version " ++ String.fromInt {{ program.counter_module }}.current))
"""

STUB_TEMPLATE: Final[str] = r"""module {{ module_name }} exposing ({{ function }})

import {{ source_module }}
import {{ types_module }}


{{ function }} : {{ source_module }}.{{ root_type }} -> {{ types_module }}.{{ root_type }}
{{ function }} old =
    -- TODO: implement migration
    Debug.todo "Implement V{{ source_version }} -> V{{ target_version }} migration"
"""

WITNESS_TEMPLATE: Final[str] = r"""module {{ witness_module }} exposing (main)

import Bytes exposing (Bytes)
import {{ probe_module }}
import Lamdera.Wire3 as Wire


main : Program () ({{ probe_module }}.{{ root_type }} -> Bytes) Never
main =
    Platform.worker
        { init = \_ -> ( \model -> Wire.bytesEncode ({{ probe_module }}.w3_encode_{{ root_type }} model), Cmd.none )
        , update = \_ model -> ( model, Cmd.none )
        , subscriptions = \_ -> Sub.none
        }
"""


def migration_function_name(root_type: str) -> str:
    """``BackendModel`` -> ``backendModel``."""

    return root_type[:1].lower() + root_type[1:]


def rename_module_header(source: str, *, old: str | None, new: str) -> tuple[str, bool]:
    """Rewrite a line-leading ``module`` declaration; ``old=None`` matches any name."""

    name = r"[A-Z][\w.]*" if old is None else re.escape(old)
    pattern = re.compile(rf"^module\s+{name}(?![\w.])", re.MULTILINE)
    rewritten, count = pattern.subn(f"module {new}", source, count=1)
    return rewritten, count > 0


def pin_types_imports(source: str, *, types_module: str, pinned_module: str) -> str:
    """
    Point every line-leading ``import <types_module>`` at ``pinned_module``.

    Unaliased imports keep their old name via ``as <types_module>``; an explicit alias
    is preserved as written.
    """

    pattern = re.compile(
        rf"^import[ \t]+{re.escape(types_module)}(?![\w.])(?P<rest>[^\n]*)$", re.MULTILINE
    )

    def _replace(match: re.Match[str]) -> str:
        rest = match.group("rest")
        if re.match(r"\s+as\b", rest):
            return f"import {pinned_module}{rest}"
        return f"import {pinned_module} as {types_module}{rest}"

    return pattern.sub(_replace, source)


class ElmEmitter:
    """Renders generated Elm modules for one project's naming scheme."""

    def __init__(
        self,
        *,
        types_module: str = TYPES_MODULE,
        root_type: str = ROOT_TYPE,
        snapshot_namespace: str = SNAPSHOT_NAMESPACE,
        migrate_namespace: str = MIGRATE_NAMESPACE,
        db_name: str = DB_FILE.name,
    ) -> None:
        self._types_module = types_module
        self._root_type = root_type
        self._snapshot_namespace = snapshot_namespace
        self._migrate_namespace = migrate_namespace
        self._db_name = db_name
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._chain_template = self._environment.from_string(CHAIN_TEMPLATE)
        self._stub_template = self._environment.from_string(STUB_TEMPLATE)
        self._witness_template = self._environment.from_string(WITNESS_TEMPLATE)

    @property
    def types_module(self) -> str:
        return self._types_module

    @property
    def root_type(self) -> str:
        return self._root_type

    @property
    def snapshot_namespace(self) -> str:
        return self._snapshot_namespace

    @property
    def migrate_namespace(self) -> str:
        return self._migrate_namespace

    def snapshot_module(self, version: int) -> str:
        return snapshot_module_name(
            version, namespace=self._snapshot_namespace, types_module=self._types_module
        )

    def migration_module(self, version: int) -> str:
        return migration_module_name(version, namespace=self._migrate_namespace)

    def chain_program(self, program: ChainProgram) -> str:
        return self._chain_template.render(
            program=program,
            db_name=self._db_name,
            migration_function=migration_function_name(program.root_type),
        )

    def migration_stub(self, *, source_version: int, target_version: int) -> str:
        return self._stub_template.render(
            module_name=self.migration_module(target_version),
            function=migration_function_name(self._root_type),
            source_module=self.snapshot_module(source_version),
            types_module=self._types_module,
            root_type=self._root_type,
            source_version=source_version,
            target_version=target_version,
        )

    def shape_witness(
        self,
        *,
        probe_module: str = PROBE_TYPES_MODULE,
        witness_module: str = PROBE_WITNESS_MODULE,
    ) -> str:
        return self._witness_template.render(
            probe_module=probe_module,
            witness_module=witness_module,
            root_type=self._root_type,
        )

    def snapshot(self, types_source: str, *, version: int) -> str:
        """Return ``types_source`` re-declared as the frozen module for ``version``."""

        rewritten, found = rename_module_header(
            types_source, old=self._types_module, new=self.snapshot_module(version)
        )
        if not found:
            raise SchemaParseError(
                f"types source does not declare 'module {self._types_module}'"
            )
        return rewritten

    def pin_migration_imports(self, migration_source: str, *, version: int) -> str:
        return pin_types_imports(
            migration_source,
            types_module=self._types_module,
            pinned_module=self.snapshot_module(version),
        )


__all__ = [
    "CHAIN_TEMPLATE",
    "STUB_TEMPLATE",
    "WITNESS_TEMPLATE",
    "ElmEmitter",
    "migration_function_name",
    "pin_types_imports",
    "rename_module_header",
]
