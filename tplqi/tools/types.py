"""Declared-type expressions for template variables.

Grammar (whitespace is allowed between tokens):

    type    := '?'? base ('[]')?
    base    := KEYWORD | 'iterable' ('<' (keytype ',')? type '>')? | FQN
    keytype := 'string' | 'number'
    FQN     := '\\'? IDENT ('\\' IDENT)*

`T[]` is sugar for `iterable<T>`. Nullability nests at most one level, and
`[]` may appear once per `type` (so `??T` and `T[][]` are syntax errors).
Deprecated keywords (bool, int, float) parse to their replacement but keep
the alias so it can be reported.

Matching is a dispatch over the tagged variant; class references are
resolved through a `TypeProvider` (see `tplqi.tools.typeinfo`).
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

BASIC_TYPES = ("string", "number", "boolean", "null", "iterable", "object", "mixed")

DEPRECATED_TYPES = {
    "bool": "boolean",
    "int": "number",
    "float": "number",
}

SCALAR_TYPES = ("string", "number", "boolean")

KEY_TYPES = ("string", "number")

FQN_RE = re.compile(r"^\\?[A-Za-z_][A-Za-z0-9_]*(\\[A-Za-z_][A-Za-z0-9_]*)*$")


class TypeSyntaxError(ValueError):
    pass


# -------------------------
# Type model
# -------------------------

class TypeExpr:
    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Basic(TypeExpr):
    name: str
    alias: Optional[str] = None

    def render(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class Nullable(TypeExpr):
    inner: TypeExpr

    def render(self) -> str:
        return f"?{self.inner.render()}"


@dataclass(frozen=True)
class IterableOf(TypeExpr):
    value: TypeExpr
    key: Optional[TypeExpr] = None

    def render(self) -> str:
        if self.key is None:
            return f"iterable<{self.value.render()}>"
        return f"iterable<{self.key.render()}, {self.value.render()}>"


@dataclass(frozen=True)
class ClassRef(TypeExpr):
    fqn: str

    def render(self) -> str:
        return self.fqn


MIXED = Basic("mixed")


def normalize_fqn(name: str) -> str:
    return name if name.startswith("\\") else "\\" + name


# -------------------------
# Type parsing
# -------------------------

class _Tok:
    def __init__(self, kind: str, text: str, pos: int) -> None:
        self.kind = kind
        self.text = text
        self.pos = pos


_IDENT_RE = re.compile(r"\\?[A-Za-z_][A-Za-z0-9_]*(\\[A-Za-z_][A-Za-z0-9_]*)*")


def _tokenize(s: str) -> List[_Tok]:
    out: List[_Tok] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c.isspace():
            i += 1
            continue
        if s.startswith("[]", i):
            out.append(_Tok("[]", "[]", i))
            i += 2
            continue
        if c in "?<>,":
            out.append(_Tok(c, c, i))
            i += 1
            continue
        m = _IDENT_RE.match(s, i)
        if m is None:
            raise TypeSyntaxError(f"Invalid character at {i}: {s[i:i+10]!r}")
        j = m.end()
        # a dangling separator ("\App\") is not a valid name
        if j < len(s) and s[j] == "\\":
            raise TypeSyntaxError(f"Invalid type name at {i}: {s[i:j+1]!r}")
        out.append(_Tok("IDENT", m.group(0), i))
        i = j
    return out


class _Parser:
    def __init__(self, toks: List[_Tok]) -> None:
        self.toks = toks
        self.i = 0

    def peek(self) -> Optional[_Tok]:
        return self.toks[self.i] if self.i < len(self.toks) else None

    def accept(self, kind: str) -> Optional[_Tok]:
        t = self.peek()
        if t is not None and t.kind == kind:
            self.i += 1
            return t
        return None

    def expect(self, kind: str) -> _Tok:
        t = self.peek()
        if t is None or t.kind != kind:
            raise TypeSyntaxError(f"Expected {kind}, got {t.text if t else 'end of input'}")
        self.i += 1
        return t

    def parse_type(self) -> TypeExpr:
        nullable = self.accept("?") is not None
        ty = self.parse_base()
        if self.accept("[]"):
            ty = IterableOf(ty)
        return Nullable(ty) if nullable else ty

    def parse_base(self) -> TypeExpr:
        name = self.expect("IDENT").text
        if name == "iterable":
            if not self.accept("<"):
                return Basic("iterable")
            first = self.parse_type()
            if self.accept(","):
                if not _is_key_type(first):
                    raise TypeSyntaxError(f"Iterable key type must be 'string' or 'number', got '{first}'")
                value = self.parse_type()
                self.expect(">")
                return IterableOf(value, first)
            self.expect(">")
            return IterableOf(first)
        if name in BASIC_TYPES:
            return Basic(name)
        if name in DEPRECATED_TYPES:
            return Basic(DEPRECATED_TYPES[name], alias=name)
        return ClassRef(normalize_fqn(name))


def _is_key_type(ty: TypeExpr) -> bool:
    return isinstance(ty, Basic) and ty.name in KEY_TYPES


def parse_type(text: str) -> TypeExpr:
    if not isinstance(text, str):
        raise TypeSyntaxError(f"Type must be a string, got {type(text).__name__}")
    p = _Parser(_tokenize(text))
    ty = p.parse_type()
    if p.peek() is not None:
        raise TypeSyntaxError(f"Unexpected '{p.peek().text}' at end of type")
    return ty


def serialize(ty: TypeExpr) -> str:
    return ty.render()


# -------------------------
# Queries
# -------------------------

def is_nullable(ty: TypeExpr) -> bool:
    return isinstance(ty, Nullable)


def unwrap_nullable(ty: TypeExpr) -> TypeExpr:
    return ty.inner if isinstance(ty, Nullable) else ty


def is_mixed(ty: TypeExpr) -> bool:
    return isinstance(ty, Basic) and ty.name == "mixed"


def walk_type(ty: TypeExpr) -> Iterator[TypeExpr]:
    yield ty
    if isinstance(ty, Nullable):
        yield from walk_type(ty.inner)
    elif isinstance(ty, IterableOf):
        if ty.key is not None:
            yield from walk_type(ty.key)
        yield from walk_type(ty.value)


def deprecated_aliases(ty: TypeExpr) -> List[Tuple[str, str]]:
    """Return (alias, replacement) for every deprecated keyword used in ty."""
    return [(t.alias, t.name) for t in walk_type(ty) if isinstance(t, Basic) and t.alias]


def class_refs(ty: TypeExpr) -> List[str]:
    return [t.fqn for t in walk_type(ty) if isinstance(t, ClassRef)]


def unknown_class_refs(ty: TypeExpr, provider: Any) -> List[str]:
    out: List[str] = []
    for fqn in class_refs(ty):
        if not FQN_RE.match(fqn) or provider.lookup(fqn) is None:
            out.append(fqn)
    return out


def is_structurally_valid(ty: TypeExpr, provider: Any) -> bool:
    return not unknown_class_refs(ty, provider)


# -------------------------
# Matching
# -------------------------

def _is_stringable(value: Any) -> bool:
    if isinstance(value, str):
        return True
    if value is None or isinstance(value, (bool, int, float, bytes, list, tuple, dict, set, frozenset)):
        return False
    return type(value).__str__ is not object.__str__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_object(value: Any) -> bool:
    if value is None:
        return False
    return not isinstance(value, (str, bytes, bool, int, float, list, tuple, dict, set, frozenset))


def _is_iterable(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes))


def _iter_items(value: Any) -> Iterator[Tuple[Any, Any]]:
    if isinstance(value, Mapping):
        yield from value.items()
    else:
        yield from enumerate(value)


def matches(value: Any, ty: TypeExpr, provider: Any = None) -> bool:
    if isinstance(ty, Nullable):
        return value is None or matches(value, ty.inner, provider)

    if isinstance(ty, IterableOf):
        if not _is_iterable(value):
            return False
        for key, item in _iter_items(value):
            if not matches(item, ty.value, provider):
                return False
            if ty.key is not None and not matches(key, ty.key, provider):
                return False
        return True

    if isinstance(ty, ClassRef):
        if provider is None or value is None:
            return False
        from tplqi.tools.typeinfo import is_subtype

        runtime_name = provider.type_of(value)
        return runtime_name is not None and is_subtype(provider, runtime_name, ty.fqn)

    if isinstance(ty, Basic):
        if ty.name == "string":
            return _is_stringable(value)
        if ty.name == "number":
            return _is_number(value)
        if ty.name == "boolean":
            return isinstance(value, bool)
        if ty.name == "null":
            return value is None
        if ty.name == "object":
            return _is_object(value)
        if ty.name == "iterable":
            return _is_iterable(value)
        return True

    return True


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="tplqi parse-type")
    ap.add_argument("type", help="Type expression, e.g. 'iterable<string, \\\\App\\\\Widget>'")
    ap.add_argument("--json", action="store_true", help="Emit result as JSON")
    args = ap.parse_args(argv)

    try:
        ty = parse_type(args.type)
    except TypeSyntaxError as e:
        if args.json:
            print(json.dumps({"valid": False, "error": str(e)}))
        else:
            print(f"SyntaxError: {e}", file=sys.stderr)
        return 2

    deprecations = deprecated_aliases(ty)
    if args.json:
        print(json.dumps({"valid": True, "type": serialize(ty), "deprecated": [a for a, _ in deprecations]}))
    else:
        print(serialize(ty))
        for alias, replacement in deprecations:
            print(f"Deprecated type '{alias}' used. Use '{replacement}' instead.", file=sys.stderr)
    return 1 if deprecations else 0


if __name__ == "__main__":
    raise SystemExit(main())
