"""
evolvedb — in-process reader for Elm type declarations

File: src/evolvedb/shape/declarations.py
Last updated: 2026-10-16

Purpose
- Parse the type-level subset of an Elm module (header, imports, ``type`` and
  ``type alias`` declarations) without an Elm toolchain.
- Produce a canonical, formatting-independent description of every declaration
  reachable from a root type. Two sources with equal descriptions generate the
  same wire codec.

Functional requirements
- Comments, whitespace and layout never influence the description.
- Record fields are canonicalised by name; custom-type variant order is significant.
- Type variables are identified by parameter position, not by spelling.
- Declarations unreachable from the root do not contribute.
- Unknown names, wrong arities, malformed declarations and function types reachable
  from the root raise ``CompileError``, as the real compiler would refuse them.

Non-functional requirements
- Standard library only; values and annotations are skipped, not checked.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Final, Literal

from evolvedb.errors import CompileError

_UPPER: Final[str] = r"[A-Z][A-Za-z0-9_]*"
_QUALIFIED: Final[str] = rf"{_UPPER}(?:\.{_UPPER})*"

_HEADER_RE: Final[re.Pattern[str]] = re.compile(
    rf"^(?:port\s+|effect\s+)?module\s+({_QUALIFIED})\s+(?:where\s+\{{.*?\}}\s+)?exposing\s*\(",
    re.DOTALL,
)
_IMPORT_RE: Final[re.Pattern[str]] = re.compile(
    rf"^import\s+({_QUALIFIED})(?:\s+as\s+({_UPPER}))?(?:\s+exposing\s*\((.*)\))?\s*$",
    re.DOTALL,
)
_ALIAS_RE: Final[re.Pattern[str]] = re.compile(
    rf"^type\s+alias\s+({_UPPER})((?:\s+[a-z][A-Za-z0-9_]*)*)\s*=(.*)$",
    re.DOTALL,
)
_UNION_RE: Final[re.Pattern[str]] = re.compile(
    rf"^type\s+({_UPPER})((?:\s+[a-z][A-Za-z0-9_]*)*)\s*=(.*)$",
    re.DOTALL,
)
_LITERAL_RE: Final[re.Pattern[str]] = re.compile(
    r'"""(?:.|\n)*?"""|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'',
)
_TOKEN_RE: Final[re.Pattern[str]] = re.compile(
    rf"""
    (?P<space>\s+)
    |(?P<arrow>->)
    |(?P<upper>{_QUALIFIED})
    |(?P<lower>[a-z][A-Za-z0-9_]*)
    |(?P<punct>[(){{}},:|])
    """,
    re.VERBOSE,
)
_EXPOSED_TYPE_RE: Final[re.Pattern[str]] = re.compile(rf"(?<![\w.])({_UPPER})")

# Types every Elm module sees without an import, with their arity.
_IMPLICIT_TYPES: Final[dict[str, int]] = {
    "Int": 0,
    "Float": 0,
    "Bool": 0,
    "Char": 0,
    "String": 0,
    "Never": 0,
    "Order": 0,
    "List": 1,
    "Maybe": 1,
    "Result": 2,
    "Cmd": 1,
    "Sub": 1,
    "Program": 3,
}
_IMPLICIT_MODULES: Final[dict[str, str]] = {
    "Basics": "Basics",
    "Char": "Char",
    "Debug": "Debug",
    "List": "List",
    "Maybe": "Maybe",
    "Platform": "Platform",
    "Result": "Result",
    "String": "String",
    "Tuple": "Tuple",
    "Cmd": "Platform.Cmd",
    "Sub": "Platform.Sub",
}


# --------------------------------------------------------------------------- AST


@dataclass(frozen=True, slots=True)
class TypeVariable:
    name: str


@dataclass(frozen=True, slots=True)
class TypeReference:
    name: str
    args: tuple[TypeExpr, ...] = ()


@dataclass(frozen=True, slots=True)
class FunctionType:
    argument: TypeExpr
    result: TypeExpr


@dataclass(frozen=True, slots=True)
class TupleType:
    items: tuple[TypeExpr, ...]


@dataclass(frozen=True, slots=True)
class RecordType:
    fields: tuple[tuple[str, TypeExpr], ...]
    extends: str | None = None


TypeExpr = TypeVariable | TypeReference | FunctionType | TupleType | RecordType


@dataclass(frozen=True, slots=True)
class ImportedModule:
    name: str
    alias: str | None
    exposed_types: frozenset[str]
    exposes_all: bool


@dataclass(frozen=True, slots=True)
class TypeDeclaration:
    """One ``type`` or ``type alias`` declaration."""

    name: str
    kind: Literal["alias", "union"]
    params: tuple[str, ...]
    line: int
    aliased: TypeExpr | None = None
    variants: tuple[tuple[str, tuple[TypeExpr, ...]], ...] = ()


@dataclass(frozen=True, slots=True)
class ElmModule:
    name: str
    imports: tuple[ImportedModule, ...]
    declarations: dict[str, TypeDeclaration] = field(default_factory=dict)


# ----------------------------------------------------------------------- parsing


def strip_comments(source: str) -> str:
    """Blank out ``--`` and nested ``{- -}`` comments, keeping line structure."""

    out: list[str] = []
    index = 0
    length = len(source)
    depth = 0
    while index < length:
        if depth:
            if source.startswith("{-", index):
                depth += 1
                out.append("  ")
                index += 2
            elif source.startswith("-}", index):
                depth -= 1
                out.append("  ")
                index += 2
            else:
                out.append("\n" if source[index] == "\n" else " ")
                index += 1
            continue

        if source.startswith("{-", index):
            depth = 1
            out.append("  ")
            index += 2
        elif source.startswith("--", index):
            end = source.find("\n", index)
            end = length if end == -1 else end
            out.append(" " * (end - index))
            index = end
        elif source[index] in "\"'":
            match = _LITERAL_RE.match(source, index)
            if match is None:
                raise CompileError(f"line {_line_of(source, index)}: unterminated literal")
            out.append(match.group(0))
            index = match.end()
        else:
            out.append(source[index])
            index += 1

    if depth:
        raise CompileError("unterminated block comment")
    return "".join(out)


def parse_module(source: str) -> ElmModule:
    """Parse the header, imports and type declarations of an Elm module."""

    chunks = _split_top_level(strip_comments(source))
    if not chunks:
        raise CompileError("source is empty")

    first_line, first_text = chunks[0]
    header = _HEADER_RE.match(first_text)
    if header is None:
        raise CompileError(f"line {first_line}: source must start with a module declaration")

    imports: list[ImportedModule] = []
    declarations: dict[str, TypeDeclaration] = {}
    constructors: set[str] = set()
    for line, text in chunks[1:]:
        if text.startswith("import") and _is_keyword(text, "import"):
            imports.append(_parse_import(text, line))
        elif text.startswith("type") and _is_keyword(text, "type"):
            declaration = _parse_type_declaration(text, line)
            if declaration.name in declarations:
                raise CompileError(f"line {line}: type {declaration.name!r} is declared twice")
            for ctor, _ in declaration.variants:
                if ctor in constructors:
                    raise CompileError(f"line {line}: constructor {ctor!r} is declared twice")
                constructors.add(ctor)
            declarations[declaration.name] = declaration
        elif text[0].islower() or text[0] == "(":
            continue
        else:
            raise CompileError(f"line {line}: unexpected top-level text {text.split()[0]!r}")

    return ElmModule(name=header.group(1), imports=tuple(imports), declarations=declarations)


def _is_keyword(text: str, keyword: str) -> bool:
    if len(text) == len(keyword):
        return True
    follower = text[len(keyword)]
    return not (follower.isalnum() or follower == "_")


def _split_top_level(text: str) -> list[tuple[int, str]]:
    chunks: list[tuple[int, list[str]]] = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            if chunks:
                chunks[-1][1].append(line)
            continue
        if not line[0].isspace():
            chunks.append((number, [line]))
        elif chunks:
            chunks[-1][1].append(line)
        else:
            raise CompileError(f"line {number}: indented text before the module declaration")
    return [(number, "\n".join(lines).strip()) for number, lines in chunks]


def _parse_import(text: str, line: int) -> ImportedModule:
    match = _IMPORT_RE.match(text)
    if match is None:
        raise CompileError(f"line {line}: malformed import")
    exposing = match.group(3)
    exposes_all = exposing is not None and exposing.strip() == ".."
    exposed = frozenset() if exposing is None or exposes_all else frozenset(
        _EXPOSED_TYPE_RE.findall(exposing)
    )
    return ImportedModule(
        name=match.group(1),
        alias=match.group(2),
        exposed_types=exposed,
        exposes_all=exposes_all,
    )


def _parse_type_declaration(text: str, line: int) -> TypeDeclaration:
    alias = _ALIAS_RE.match(text)
    if alias is not None:
        name, params, body = alias.group(1), _params(alias.group(2), line), alias.group(3)
        tokens = _TokenStream(body, line=line)
        aliased = _parse_type(tokens)
        tokens.expect_end()
        return TypeDeclaration(name=name, kind="alias", params=params, line=line, aliased=aliased)

    union = _UNION_RE.match(text)
    if union is None or text.startswith("type alias"):
        raise CompileError(f"line {line}: malformed type declaration")
    name, params = union.group(1), _params(union.group(2), line)
    variants: list[tuple[str, tuple[TypeExpr, ...]]] = []
    for part in _split_variants(union.group(3), line):
        tokens = _TokenStream(part, line=line)
        ctor = tokens.next()
        if ctor.kind != "upper" or "." in ctor.value:
            raise CompileError(f"line {line}: expected a constructor name, found {ctor.value!r}")
        args: list[TypeExpr] = []
        while tokens.starts_atom():
            args.append(_parse_atom(tokens))
        tokens.expect_end()
        variants.append((ctor.value, tuple(args)))
    return TypeDeclaration(
        name=name, kind="union", params=params, line=line, variants=tuple(variants)
    )


def _params(raw: str, line: int) -> tuple[str, ...]:
    params = tuple(raw.split())
    if len(set(params)) != len(params):
        raise CompileError(f"line {line}: duplicate type parameter")
    return params


def _split_variants(body: str, line: int) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in body:
        if char in "({":
            depth += 1
        elif char in ")}":
            depth -= 1
        if char == "|" and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    if any(not part.strip() for part in parts):
        raise CompileError(f"line {line}: empty constructor in custom type")
    return parts


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str
    value: str


class _TokenStream:
    def __init__(self, text: str, *, line: int) -> None:
        self._line = line
        self._items = self._tokenize(text)
        self._pos = 0

    def _tokenize(self, text: str) -> list[_Token]:
        tokens: list[_Token] = []
        index = 0
        while index < len(text):
            match = _TOKEN_RE.match(text, index)
            if match is None:
                raise CompileError(f"line {self._line}: unexpected character {text[index]!r}")
            kind = match.lastgroup or ""
            if kind != "space":
                tokens.append(_Token(kind, match.group(0)))
            index = match.end()
        return tokens

    def error(self, message: str) -> CompileError:
        return CompileError(f"line {self._line}: {message}")

    def peek(self) -> _Token | None:
        return self._items[self._pos] if self._pos < len(self._items) else None

    def next(self) -> _Token:
        token = self.peek()
        if token is None:
            raise self.error("unexpected end of type")
        self._pos += 1
        return token

    def accept(self, value: str) -> bool:
        token = self.peek()
        if token is not None and token.value == value:
            self._pos += 1
            return True
        return False

    def expect(self, value: str) -> None:
        token = self.next()
        if token.value != value:
            raise self.error(f"expected {value!r}, found {token.value!r}")

    def expect_lower(self) -> str:
        token = self.next()
        if token.kind != "lower":
            raise self.error(f"expected a field name, found {token.value!r}")
        return token.value

    def expect_end(self) -> None:
        token = self.peek()
        if token is not None:
            raise self.error(f"unexpected {token.value!r}")

    def starts_atom(self) -> bool:
        token = self.peek()
        return token is not None and (
            token.kind in ("upper", "lower") or token.value in ("(", "{")
        )


def _parse_type(tokens: _TokenStream) -> TypeExpr:
    token = tokens.peek()
    if token is not None and token.kind == "upper":
        tokens.next()
        args: list[TypeExpr] = []
        while tokens.starts_atom():
            args.append(_parse_atom(tokens))
        left: TypeExpr = TypeReference(token.value, tuple(args))
    else:
        left = _parse_atom(tokens)
    if tokens.accept("->"):
        return FunctionType(left, _parse_type(tokens))
    return left


def _parse_atom(tokens: _TokenStream) -> TypeExpr:
    token = tokens.next()
    if token.kind == "upper":
        return TypeReference(token.value)
    if token.kind == "lower":
        return TypeVariable(token.value)
    if token.value == "(":
        if tokens.accept(")"):
            return TupleType(())
        items = [_parse_type(tokens)]
        while tokens.accept(","):
            items.append(_parse_type(tokens))
        tokens.expect(")")
        if len(items) == 1:
            return items[0]
        if len(items) > 3:
            raise tokens.error("tuples may have at most three elements")
        return TupleType(tuple(items))
    if token.value == "{":
        return _parse_record(tokens)
    raise tokens.error(f"unexpected {token.value!r}")


def _parse_record(tokens: _TokenStream) -> RecordType:
    if tokens.accept("}"):
        return RecordType(())
    name = tokens.expect_lower()
    extends = None
    if tokens.accept("|"):
        extends = name
        name = tokens.expect_lower()
    fields: list[tuple[str, TypeExpr]] = []
    while True:
        tokens.expect(":")
        if any(existing == name for existing, _ in fields):
            raise tokens.error(f"duplicate record field {name!r}")
        fields.append((name, _parse_type(tokens)))
        if tokens.accept("}"):
            break
        tokens.expect(",")
        name = tokens.expect_lower()
    return RecordType(tuple(fields), extends)


# ------------------------------------------------------------------ canonical form


class _Resolver:
    def __init__(self, module: ElmModule) -> None:
        self._module = module
        self._qualifiers: dict[str, str] = dict(_IMPLICIT_MODULES)
        self._exposed: dict[str, str] = {}
        self._open_modules: list[str] = []
        for imported in module.imports:
            self._qualifiers[imported.alias or imported.name] = imported.name
            for type_name in imported.exposed_types:
                self._exposed.setdefault(type_name, imported.name)
            if imported.exposes_all:
                self._open_modules.append(imported.name)

    def declaration(self, declaration: TypeDeclaration) -> dict[str, object]:
        params = {name: index for index, name in enumerate(declaration.params)}
        if declaration.aliased is not None:
            return {
                "kind": "alias",
                "params": len(params),
                "type": self._expr(declaration.aliased, params, declaration.line),
            }
        return {
            "kind": "union",
            "params": len(params),
            "variants": [
                [ctor, [self._expr(arg, params, declaration.line) for arg in args]]
                for ctor, args in declaration.variants
            ],
        }

    def _expr(self, expr: TypeExpr, params: dict[str, int], line: int) -> object:
        if isinstance(expr, TypeVariable):
            return {"param": self._param(expr.name, params, line)}
        if isinstance(expr, TypeReference):
            return {
                "ref": self._name(expr.name, len(expr.args), line),
                "args": [self._expr(arg, params, line) for arg in expr.args],
            }
        if isinstance(expr, FunctionType):
            return {
                "function": [
                    self._expr(expr.argument, params, line),
                    self._expr(expr.result, params, line),
                ]
            }
        if isinstance(expr, TupleType):
            return {"tuple": [self._expr(item, params, line) for item in expr.items]}
        fields = sorted(expr.fields, key=lambda item: item[0])
        return {
            "record": [[name, self._expr(value, params, line)] for name, value in fields],
            "extends": None if expr.extends is None else self._param(expr.extends, params, line),
        }

    def _param(self, name: str, params: dict[str, int], line: int) -> int:
        if name not in params:
            raise CompileError(f"line {line}: type variable {name!r} is not declared")
        return params[name]

    def _name(self, name: str, arity: int, line: int) -> str:
        if "." in name:
            qualifier, _, base = name.rpartition(".")
            module = self._qualifiers.get(qualifier)
            if module is None:
                raise CompileError(f"line {line}: unknown module qualifier {qualifier!r}")
            return f"{module}.{base}"

        local = self._module.declarations.get(name)
        if local is not None:
            self._check_arity(name, len(local.params), arity, line)
            return name
        if name in _IMPLICIT_TYPES:
            self._check_arity(name, _IMPLICIT_TYPES[name], arity, line)
            return name
        if name in self._exposed:
            return f"{self._exposed[name]}.{name}"
        if self._open_modules:
            return f"{self._open_modules[0]}.{name}"
        raise CompileError(f"line {line}: cannot find type {name!r}")

    @staticmethod
    def _check_arity(name: str, expected: int, actual: int, line: int) -> None:
        if expected != actual:
            raise CompileError(
                f"line {line}: type {name!r} expects {expected} argument(s), got {actual}"
            )


def canonical_shape(module: ElmModule, *, root: str) -> bytes:
    """Return canonical JSON bytes describing every declaration reachable from ``root``."""

    resolver = _Resolver(module)
    resolved = {name: resolver.declaration(decl) for name, decl in module.declarations.items()}
    if root not in resolved:
        raise CompileError(f"type {root!r} is not declared in module {module.name}")

    reachable: list[str] = [root]
    seen = {root}
    cursor = 0
    while cursor < len(reachable):
        current = reachable[cursor]
        cursor += 1
        for reference in _references(resolved[current]):
            if reference in resolved and reference not in seen:
                seen.add(reference)
                reachable.append(reference)

    for name in reachable:
        if _contains_function(resolved[name]):
            raise CompileError(
                f"line {module.declarations[name].line}: {name!r} contains a function type, "
                "which has no wire codec"
            )

    payload = {
        "root": root,
        "declarations": {name: resolved[name] for name in sorted(reachable)},
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _references(node: object) -> list[str]:
    found: list[str] = []
    if isinstance(node, dict):
        reference = node.get("ref")
        if isinstance(reference, str):
            found.append(reference)
        for value in node.values():
            found.extend(_references(value))
    elif isinstance(node, list):
        for item in node:
            found.extend(_references(item))
    return found


def _contains_function(node: object) -> bool:
    if isinstance(node, dict):
        return "function" in node or any(_contains_function(value) for value in node.values())
    if isinstance(node, list):
        return any(_contains_function(item) for item in node)
    return False


def _line_of(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


__all__ = [
    "ElmModule",
    "FunctionType",
    "ImportedModule",
    "RecordType",
    "TupleType",
    "TypeDeclaration",
    "TypeExpr",
    "TypeReference",
    "TypeVariable",
    "canonical_shape",
    "parse_module",
    "strip_comments",
]
