"""Runtime guard synthesis.

Every `types` declaration is wrapped in an `AssertedTypes` node during
analysis. From those nodes we emit Python source:

    def assert_types_<n>(context, report, types):
        ...

one function per declaration. A declaration inside a macro body or a loop
body describes the macro's arguments or the loop targets, so its function
must be called by the host where that scope exists (with the macro
arguments, or the loop variables, as `context`). `GUARD_SCOPES` maps every
function to its owner (`None` for template level), and
`assert_template_types` calls the template-level functions in document
order. At render time the host executes the code (see
`tplqi.tools.sandbox_exec_py`) against the template context.

Per declared variable, in order, with no short-circuit between guards:
1. existence (unless optional)        -> MissingVariable
2. non-null (unless nullable)         -> NullVariable
3. type match (unless exactly mixed)  -> TypeMismatch, skipped when null

Type checks go through `rt.matches(value, type_text, types)`; the generated
code contains no imports.

CLI:
  tplqi guards page.json [--out guards.py]
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from tplqi.tools.nodes import Loop, MacroDeclaration, Module, Node, TypeAnnotation, iter_nodes
from tplqi.tools.types import TypeSyntaxError, is_mixed, is_nullable, parse_type

ENTRY_POINT = "assert_template_types"


@dataclass(eq=False)
class AssertedTypes(Node):
    CHILDREN = ("types",)

    types: TypeAnnotation
    path: str = ""

    @classmethod
    def wrap(cls, types: TypeAnnotation, path: str = "") -> "AssertedTypes":
        return cls(types, path, line=types.line, pointer=types.pointer)


def _guard_lines(name: str, type_text: str, optional: bool) -> List[str]:
    key = repr(name)
    out: List[str] = []
    try:
        ty = parse_type(type_text)
    except TypeSyntaxError:
        ty = None

    if not optional:
        out.append(f"if {key} not in context:")
        out.append(f"    report('error', 'MissingVariable', {repr(f'Non-optional variable {name!r} is not set')})")

    if ty is None or not is_nullable(ty):
        out.append(f"if {key} in context and context[{key}] is None:")
        out.append(f"    report('error', 'NullVariable', {repr(f'Non-nullable variable {name!r} is null')})")

    if ty is not None and not is_mixed(ty):
        out.append(f"if context.get({key}) is not None and not rt.matches(context[{key}], {type_text!r}, types):")
        out.append(f"    report('error', 'TypeMismatch', {repr(f'Type for variable {name!r} does not match')})")
    return out


def generate_guard_function(node: AssertedTypes, fn_name: str) -> str:
    lines = [f"def {fn_name}(context, report, types):"]
    lines.append(f"    # {node.path!r}:{node.line}")
    body: List[str] = []
    for name, decl in node.types.mapping.items():
        body.extend(_guard_lines(name, decl.type_text, decl.optional))
    if not body:
        body = ["pass"]
    lines.extend("    " + b for b in body)
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class GuardSite:
    """One generated guard function and the scope its declaration lives in."""

    function: str
    node: AssertedTypes
    owner: Optional[Node] = None

    @property
    def scope(self) -> Optional[str]:
        if isinstance(self.owner, MacroDeclaration):
            return f"macro {self.owner.name}"
        if isinstance(self.owner, Loop):
            return f"for {self.owner.value_name}"
        return None


def _collect_sites(node: Node, owner: Optional[Node], out: List[Tuple[AssertedTypes, Optional[Node]]]) -> None:
    if isinstance(node, AssertedTypes):
        out.append((node, owner))
        return
    for child in node.iter_children():
        child_owner = owner
        if isinstance(node, MacroDeclaration):
            child_owner = node
        elif isinstance(node, Loop) and any(child is b for b in node.body):
            # seq and else run outside the loop targets
            child_owner = node
        _collect_sites(child, child_owner, out)


def guard_sites(module: Module) -> List[GuardSite]:
    found: List[Tuple[AssertedTypes, Optional[Node]]] = []
    _collect_sites(module, None, found)
    return [GuardSite(f"assert_types_{i}", node, owner) for i, (node, owner) in enumerate(found, start=1)]


def asserted_nodes(module: Module) -> List[AssertedTypes]:
    return [n for n in iter_nodes(module) if isinstance(n, AssertedTypes)]


def generate_guards(module: Module) -> str:
    """Python source for every guard in an analyzed module."""
    sites = guard_sites(module)
    chunks: List[str] = [f"# type assertions for {module.path!r}\n"]
    for site in sites:
        chunks.append(generate_guard_function(site.node, site.function))

    scopes = ["GUARD_SCOPES = {"]
    scopes.extend(f"    {site.function!r}: {site.scope!r}," for site in sites)
    scopes.append("}")
    chunks.append("\n".join(scopes) + "\n")

    entry = [f"def {ENTRY_POINT}(context, report, types):"]
    entry.extend(f"    {site.function}(context, report, types)" for site in sites if site.owner is None)
    if len(entry) == 1:
        entry.append("    pass")
    chunks.append("\n".join(entry) + "\n")
    return "\n\n".join(chunks)


def wrap_annotations(module: Module, path: Optional[str] = None) -> int:
    """Wrap every TypeAnnotation without running a full analysis; returns how many."""
    count = 0
    parents = [
        n for n in iter_nodes(module)
        if not isinstance(n, AssertedTypes) and any(isinstance(c, TypeAnnotation) for c in n.iter_children())
    ]
    for parent in parents:
        for child in list(parent.iter_children()):
            if isinstance(child, TypeAnnotation):
                parent.replace_child(child, AssertedTypes.wrap(child, path or module.path))
                count += 1
    return count


def main(argv: List[str] | None = None) -> int:
    from tplqi.tools.nodes import load_template
    from tplqi.tools.schema import SchemaError, load_json, validate_or_raise

    ap = argparse.ArgumentParser(prog="tplqi guards")
    ap.add_argument("path", help="Path to template JSON")
    ap.add_argument("--out", help="Write guard code to this file (default: stdout)")
    args = ap.parse_args(argv)

    path = Path(args.path)
    try:
        doc = load_json(path)
        validate_or_raise(doc, "template.schema.v1.json", label=str(path))
        module = load_template(doc, str(path))
    except SchemaError as e:
        print(str(e), file=sys.stderr)
        return 3
    except (OSError, ValueError) as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3

    wrap_annotations(module)
    code = generate_guards(module)
    if args.out:
        Path(args.out).write_text(code, encoding="utf-8")
    else:
        sys.stdout.write(code)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
