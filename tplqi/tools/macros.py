"""Macro signatures and call-site checks.

A signature is built from a macro declaration: parameters in declaration
order, required iff they carry no default. A macro whose body references
`varargs` anywhere gets an implicit trailing optional `varargs` parameter and
accepts any number of extra positional arguments.

The check functions return a message (or None); reporting is left to the
inspection driving them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from tplqi.tools.nodes import MacroArgument, MacroDeclaration, Node, VariableReference, iter_nodes

VARARGS = "varargs"


@dataclass(frozen=True)
class Param:
    name: str
    required: bool


@dataclass(frozen=True)
class MacroSignature:
    name: str
    params: Tuple[Param, ...] = ()
    accepts_varargs: bool = False
    path: str = ""
    line: int = 0

    @property
    def param_names(self) -> List[str]:
        return [p.name for p in self.params]

    @property
    def required_count(self) -> int:
        return sum(1 for p in self.params if p.required)


def uses_varargs(node: Node) -> bool:
    return any(isinstance(n, VariableReference) and n.name == VARARGS for n in iter_nodes(node))


def build_signature(macro: MacroDeclaration, path: str = "") -> MacroSignature:
    params = [Param(p.name, not p.has_default) for p in macro.params]
    varargs = any(uses_varargs(stmt) for stmt in macro.body)
    if varargs and VARARGS not in {p.name for p in params}:
        params.append(Param(VARARGS, False))
    return MacroSignature(macro.name, tuple(params), varargs, path, macro.line)


def required_after_optional(macro: MacroDeclaration) -> Optional[str]:
    """Name of the first required parameter declared after an optional one."""
    seen_optional = False
    for p in macro.params:
        if p.has_default:
            seen_optional = True
        elif seen_optional:
            return p.name
    return None


def check_arity(sig: MacroSignature, args: Sequence[MacroArgument]) -> Optional[str]:
    n = len(args)
    if not sig.accepts_varargs and n > len(sig.params):
        return f"Too many arguments ({n}) for macro '{sig.name}'"
    if n < sig.required_count:
        return f"Too few arguments ({n}) for macro '{sig.name}'"
    return None


def invalid_named_arguments(sig: MacroSignature, args: Iterable[MacroArgument]) -> Optional[str]:
    known = set(sig.param_names)
    bad = [a.name for a in args if a.name is not None and a.name not in known]
    if not bad:
        return None
    return "Invalid named macro argument(s) " + ", ".join(bad)


def positional_after_named(args: Iterable[MacroArgument]) -> bool:
    seen_named = False
    for a in args:
        if a.is_named:
            seen_named = True
        elif seen_named:
            return True
    return False
