"""Type-metadata providers.

The analyzer never introspects host types itself. Everything it needs to
know about a class-like type (does it exist, what are its public members,
which traits does it use, what are its enum cases and constants) comes from
a `TypeProvider`:

- `StaticTypeProvider` reads a JSON type-definition document
  (schema: `tplqi/schema/types.schema.v1.json`).
- `PythonTypeProvider` resolves `\\pkg\\module\\Class` names to importable
  Python classes and enumerates their members with `inspect`.
- `ChainTypeProvider` asks several providers in order.

Type names are fully-qualified with backslash separators and a leading
backslash (`\\App\\Widget`), regardless of the provider.
"""

from __future__ import annotations

import enum
import importlib
import inspect
import json
import re
from collections import deque
from dataclasses import dataclass, field, fields as dataclass_fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from tplqi.tools.types import normalize_fqn

PUBLIC = "public"
PROTECTED = "protected"
PRIVATE = "private"

KINDS = ("class", "interface", "trait", "enum")


@dataclass
class TypeInfo:
    name: str
    kind: str = "class"
    parents: List[str] = field(default_factory=list)
    traits: List[str] = field(default_factory=list)
    fields: Dict[str, str] = field(default_factory=dict)
    methods: Dict[str, str] = field(default_factory=dict)
    properties: Set[str] = field(default_factory=set)
    cases: List[str] = field(default_factory=list)
    constants: Set[str] = field(default_factory=set)

    def find_method(self, name: str) -> Optional[Tuple[str, str]]:
        """Return (declared name, visibility); method names are case-insensitive."""
        wanted = name.lower()
        for declared, visibility in self.methods.items():
            if declared.lower() == wanted:
                return declared, visibility
        return None


class TypeProvider:
    def lookup(self, fqn: str) -> Optional[TypeInfo]:
        raise NotImplementedError

    def type_of(self, value: Any) -> Optional[str]:
        """Runtime type name of a value (default: `\\module\\QualName` of its class)."""
        return python_fqn(type(value))

    def constant_exists(self, name: str) -> bool:
        if "::" in name:
            cls, const = name.split("::", 1)
            info = self.lookup(normalize_fqn(cls))
            return info is not None and const in info.constants
        return False


def python_fqn(cls: type) -> str:
    module = cls.__module__
    if module == "builtins":
        return "\\" + cls.__qualname__
    return "\\" + "\\".join(module.split(".") + [cls.__qualname__])


def ancestry(provider: TypeProvider, fqn: str) -> Iterator[TypeInfo]:
    """Known infos for `fqn` and its parents and traits, nearest first."""
    seen: Set[str] = set()
    todo = deque([normalize_fqn(fqn)])
    while todo:
        name = todo.popleft()
        if name.lower() in seen:
            continue
        seen.add(name.lower())
        info = provider.lookup(name)
        if info is None:
            continue
        yield info
        todo.extend(normalize_fqn(p) for p in info.parents)
        todo.extend(normalize_fqn(t) for t in info.traits)


def is_subtype(provider: TypeProvider, fqn: str, target: str) -> bool:
    """True when `fqn` is, extends, implements or (transitively) uses `target`."""
    target = normalize_fqn(target).lower()
    if normalize_fqn(fqn).lower() == target:
        return True
    for info in ancestry(provider, fqn):
        if any(normalize_fqn(s).lower() == target for s in info.parents + info.traits):
            return True
    return False


# -------------------------
# Static (JSON) provider
# -------------------------

def _visibility_map(raw: Any) -> Dict[str, str]:
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    if isinstance(raw, list):
        return {str(k): PUBLIC for k in raw}
    return {}


class StaticTypeProvider(TypeProvider):
    def __init__(self, doc: Optional[Dict[str, Any]] = None) -> None:
        doc = doc or {}
        self._types: Dict[str, TypeInfo] = {}
        for name, entry in (doc.get("types") or {}).items():
            info = self._info_from_entry(name, entry or {})
            self._types[info.name.lower()] = info
        self._constants: Set[str] = set(doc.get("constants") or [])

    @classmethod
    def from_path(cls, path: str | Path) -> "StaticTypeProvider":
        from tplqi.tools.schema import validate_or_raise

        doc = json.loads(Path(path).read_text(encoding="utf-8"))
        validate_or_raise(doc, "types.schema.v1.json", label=str(path))
        return cls(doc)

    @staticmethod
    def _info_from_entry(name: str, entry: Dict[str, Any]) -> TypeInfo:
        extends = entry.get("extends") or []
        if isinstance(extends, str):
            extends = [extends]
        parents = list(extends) + list(entry.get("implements") or [])
        return TypeInfo(
            name=normalize_fqn(name),
            kind=entry.get("kind", "class"),
            parents=[normalize_fqn(p) for p in parents],
            traits=[normalize_fqn(t) for t in entry.get("uses") or []],
            fields=_visibility_map(entry.get("fields")),
            methods=_visibility_map(entry.get("methods")),
            properties=set(entry.get("properties") or []),
            cases=list(entry.get("cases") or []),
            constants=set(entry.get("constants") or []),
        )

    def lookup(self, fqn: str) -> Optional[TypeInfo]:
        return self._types.get(normalize_fqn(fqn).lower())

    def constant_exists(self, name: str) -> bool:
        if "::" not in name:
            return name in self._constants
        return super().constant_exists(name)


# -------------------------
# Python provider
# -------------------------

_IVAR_RE = re.compile(r"^\s*:ivar(?:\s+[\w\[\], .|]+)?\s+(\w+)\s*:", re.MULTILINE)


def _member_visibility(name: str) -> str:
    if name.startswith("__") and not name.endswith("__"):
        return PRIVATE
    if name.startswith("_"):
        return PROTECTED
    return PUBLIC


def _resolve_python_object(fqn: str) -> Any:
    """Import the longest module prefix of `\\a\\b\\C` and walk the remaining attributes."""
    parts = [p for p in normalize_fqn(fqn).split("\\") if p]
    if not parts:
        return None
    candidates = [("builtins", parts)] if len(parts) == 1 else []
    for i in range(len(parts) - 1, 0, -1):
        candidates.append((".".join(parts[:i]), parts[i:]))
    for module_name, attrs in candidates:
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError:
            continue
        try:
            for attr in attrs:
                obj = getattr(obj, attr)
        except AttributeError:
            continue
        return obj
    return None


class PythonTypeProvider(TypeProvider):
    """Resolve type names against importable Python classes."""

    def __init__(self) -> None:
        self._cache: Dict[str, Optional[TypeInfo]] = {}

    def lookup(self, fqn: str) -> Optional[TypeInfo]:
        key = normalize_fqn(fqn)
        if key not in self._cache:
            obj = _resolve_python_object(key)
            self._cache[key] = self._describe(obj) if inspect.isclass(obj) else None
        return self._cache[key]

    def constant_exists(self, name: str) -> bool:
        if "::" in name:
            return super().constant_exists(name)
        parts = [p for p in normalize_fqn(name).split("\\") if p]
        if len(parts) < 2:
            return False
        try:
            module = importlib.import_module(".".join(parts[:-1]))
        except ImportError:
            return False
        value = getattr(module, parts[-1], None)
        return value is not None and not inspect.ismodule(value) and not callable(value)

    def _describe(self, cls: type) -> TypeInfo:
        kind = "class"
        if issubclass(cls, enum.Enum):
            kind = "enum"
        elif inspect.isabstract(cls):
            kind = "interface"

        info = TypeInfo(
            name=python_fqn(cls),
            kind=kind,
            parents=[python_fqn(base) for base in cls.__mro__[1:] if base is not object],
        )

        for klass in reversed(cls.__mro__):
            for name in getattr(klass, "__annotations__", {}):
                info.fields[name] = _member_visibility(name)
            for name in getattr(klass, "__slots__", ()) or ():
                info.fields[name] = _member_visibility(name)
        if is_dataclass(cls):
            for f in dataclass_fields(cls):
                info.fields[f.name] = _member_visibility(f.name)

        for name, member in inspect.getmembers(cls):
            if isinstance(member, property):
                info.fields[name] = _member_visibility(name)
            elif inspect.isfunction(member) or inspect.ismethoddescriptor(member) or inspect.ismethod(member):
                if name.startswith("__") and name.endswith("__"):
                    continue
                info.methods[name] = _member_visibility(name)
            elif name.isupper() and not callable(member):
                info.constants.add(name)

        info.properties = set(_IVAR_RE.findall(inspect.getdoc(cls) or ""))

        if kind == "enum":
            info.cases = [m.name for m in cls]  # type: ignore[attr-defined]
            info.constants.update(info.cases)
        return info


class ChainTypeProvider(TypeProvider):
    def __init__(self, providers: Iterable[TypeProvider]) -> None:
        self.providers = list(providers)

    def lookup(self, fqn: str) -> Optional[TypeInfo]:
        for provider in self.providers:
            info = provider.lookup(fqn)
            if info is not None:
                return info
        return None

    def constant_exists(self, name: str) -> bool:
        return any(p.constant_exists(name) for p in self.providers)
