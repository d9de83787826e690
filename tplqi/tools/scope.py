"""Variable scope tracking during a template walk.

Each name maps to a stack of declared types; the most recent binding wins.

Two disciplines share the same structure:
- block-scoped names (loop targets, arrow-function parameters) are pushed when
  the construct is entered and popped when it is left; popping restores any
  binding the name had before (shadow, then unshadow);
- accumulating names (`types` declarations, `set` assignments) are added once
  and stay declared for the rest of the enclosing scope.
"""

from __future__ import annotations

from typing import Dict, List, Mapping

from tplqi.tools.types import MIXED, TypeExpr


class Scope:
    def __init__(self) -> None:
        self._types: Dict[str, List[TypeExpr]] = {}

    def add(self, bindings: Mapping[str, TypeExpr]) -> None:
        """Bulk declare; replaces the most recent binding of each name."""
        for name, ty in bindings.items():
            stack = self._types.setdefault(name, [])
            if stack:
                stack[-1] = ty
            else:
                stack.append(ty)

    def push(self, name: str, ty: TypeExpr = MIXED) -> None:
        self._types.setdefault(name, []).append(ty)

    def pop(self, name: str) -> TypeExpr:
        stack = self._types.get(name)
        if not stack:
            raise KeyError(f"Variable '{name}' is not bound in this scope")
        ty = stack.pop()
        if not stack:
            del self._types[name]
        return ty

    def is_declared(self, name: str) -> bool:
        return name in self._types

    def type_of(self, name: str, *, required: bool = False) -> TypeExpr:
        stack = self._types.get(name)
        if not stack:
            if required:
                raise KeyError(f"Variable '{name}' is not declared")
            return MIXED
        return stack[-1]

    def declared_names(self) -> List[str]:
        return list(self._types.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __repr__(self) -> str:
        inside = ", ".join(f"{k}: {v[-1]}" for k, v in self._types.items())
        return f"Scope({{{inside}}})"
