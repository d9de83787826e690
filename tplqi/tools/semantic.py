"""Traversal controller for tplqi.

Analysis of one template runs in two passes:

1. Pre-pass: the resolver collects the template's macro declarations and
   resolves its imports (recursively), so every call can be checked no
   matter where it appears relative to the declaration.
2. A single depth-first walk with enter/leave callbacks, dispatched to every
   enabled inspection in order.

Per-run state (scope, current macro, registry, visited imports) lives in an
`AnalysisContext` built fresh for every top-level analysis; nothing is kept
on the inspections or the analyzer between runs.

The controller owns the scope:
- module start resets it
- `types`  -> add declared types (malformed ones as mixed)
- `set`    -> declare names not yet declared, as mixed
- `for`    -> push key (or `_key`), value and `loop` on enter; pop on leave
- arrow    -> push params on enter; pop on leave
- macro    -> fresh scope with its params (and `varargs`); restore on leave
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tplqi.tools.diagnostics import Diagnostic, DiagnosticSink, ListSink, Location, exit_code
from tplqi.tools.log import get_logger
from tplqi.tools.macros import VARARGS
from tplqi.tools.nodes import (
    Assignment,
    Lambda,
    Loop,
    MacroDeclaration,
    Module,
    Node,
    TypeAnnotation,
)
from tplqi.tools.resolve import TemplateLoader, TemplateMacros, TemplateResolver
from tplqi.tools.scope import Scope
from tplqi.tools.typeinfo import StaticTypeProvider, TypeProvider
from tplqi.tools.types import MIXED, TypeExpr, TypeSyntaxError, parse_type

IMPLICIT_KEY = "_key"
LOOP = "loop"

log = get_logger("tplqi.semantic")


@dataclass
class AnalysisContext:
    sink: DiagnosticSink
    provider: TypeProvider
    resolver: TemplateResolver
    globals: Set[str] = field(default_factory=set)
    module: Optional[Module] = None
    macros: Optional[TemplateMacros] = None
    scope: Scope = field(default_factory=Scope)
    current_macro: Optional[MacroDeclaration] = None
    _saved_scopes: List[Scope] = field(default_factory=list, init=False, repr=False)
    _types: Dict[str, Tuple[Optional[TypeExpr], Optional[str]]] = field(default_factory=dict, init=False, repr=False)

    @property
    def path(self) -> str:
        return self.module.path if self.module is not None else ""

    def location(self, node: Node) -> Location:
        return Location(self.path, node.line)

    def report(self, severity: str, code: str, message: str, node: Node) -> None:
        self.sink.report(Diagnostic(severity, code, message, self.location(node), node.pointer))

    def parse_declared(self, text: str) -> Tuple[Optional[TypeExpr], Optional[str]]:
        """(type, None) or (None, syntax error message); cached per run."""
        if text not in self._types:
            try:
                self._types[text] = (parse_type(text), None)
            except TypeSyntaxError as e:
                self._types[text] = (None, str(e))
        return self._types[text]

    def declared_type(self, text: str) -> TypeExpr:
        ty, _ = self.parse_declared(text)
        return ty if ty is not None else MIXED

    def enter_macro(self, macro: MacroDeclaration) -> None:
        self._saved_scopes.append(self.scope)
        self.scope = Scope()
        for p in macro.params:
            self.scope.push(p.name)
        if VARARGS not in self.scope:
            self.scope.push(VARARGS)
        self.current_macro = macro

    def leave_macro(self) -> None:
        self.scope = self._saved_scopes.pop()
        self.current_macro = None


class Inspection:
    """Base class for inspections. Override the hooks you need."""

    name = "Inspection"

    def enter_module(self, ctx: AnalysisContext, module: Module) -> None:
        pass

    def leave_module(self, ctx: AnalysisContext, module: Module) -> None:
        pass

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        pass

    def leave(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        pass


class Analyzer:
    def __init__(
        self,
        inspections: Optional[Sequence[Inspection]] = None,
        *,
        provider: Optional[TypeProvider] = None,
        loader: Optional[TemplateLoader] = None,
        globals: Iterable[str] = (),
    ) -> None:
        if inspections is None:
            from tplqi.tools.inspections import default_inspections

            inspections = default_inspections()
        self.inspections = list(inspections)
        self.provider = provider or StaticTypeProvider()
        self.loader = loader
        self.globals = set(globals)

    def new_context(self, sink: DiagnosticSink) -> AnalysisContext:
        return AnalysisContext(
            sink=sink,
            provider=self.provider,
            resolver=TemplateResolver(self.loader),
            globals=set(self.globals),
        )

    def analyze(self, module: Module, sink: Optional[DiagnosticSink] = None) -> AnalysisContext:
        ctx = self.new_context(sink if sink is not None else ListSink())
        self.run(ctx, module)
        return ctx

    def run(self, ctx: AnalysisContext, module: Module) -> None:
        log.debug("analysis.start", template=module.name, path=module.path)
        ctx.module = module
        ctx.scope = Scope()
        ctx.current_macro = None
        ctx.macros = ctx.resolver.collect(module)

        for insp in self.inspections:
            insp.enter_module(ctx, module)
        self._walk(ctx, module, None)
        for insp in self.inspections:
            insp.leave_module(ctx, module)

        reported = len(ctx.sink.diagnostics) if isinstance(ctx.sink, ListSink) else None
        log.debug("analysis.done", template=module.name, diagnostics=reported)

    def _walk(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        self._enter_scope(ctx, node)
        for insp in self.inspections:
            insp.enter(ctx, node, parent)

        for child in list(node.iter_children()):
            self._walk(ctx, child, node)

        for insp in self.inspections:
            insp.leave(ctx, node, parent)
        self._leave_scope(ctx, node)

    @staticmethod
    def _enter_scope(ctx: AnalysisContext, node: Node) -> None:
        if isinstance(node, MacroDeclaration):
            ctx.enter_macro(node)
        elif isinstance(node, TypeAnnotation):
            ctx.scope.add({name: ctx.declared_type(decl.type_text) for name, decl in node.mapping.items()})
        elif isinstance(node, Assignment):
            ctx.scope.add({name: MIXED for name in node.names if name not in ctx.scope})
        elif isinstance(node, Loop):
            ctx.scope.push(node.key_name or IMPLICIT_KEY)
            ctx.scope.push(node.value_name)
            ctx.scope.push(LOOP)
        elif isinstance(node, Lambda):
            for p in node.params:
                ctx.scope.push(p)

    @staticmethod
    def _leave_scope(ctx: AnalysisContext, node: Node) -> None:
        if isinstance(node, MacroDeclaration):
            ctx.leave_macro()
        elif isinstance(node, Loop):
            ctx.scope.pop(LOOP)
            ctx.scope.pop(node.value_name)
            ctx.scope.pop(node.key_name or IMPLICIT_KEY)
        elif isinstance(node, Lambda):
            for p in reversed(node.params):
                ctx.scope.pop(p)


def analyze_module(
    module: Module,
    *,
    provider: Optional[TypeProvider] = None,
    loader: Optional[TemplateLoader] = None,
    globals: Iterable[str] = (),
    inspections: Optional[Sequence[Inspection]] = None,
) -> List[Diagnostic]:
    sink = ListSink()
    Analyzer(inspections, provider=provider, loader=loader, globals=globals).analyze(module, sink)
    return sink.diagnostics


def main(argv: List[str] | None = None) -> int:
    from tplqi.tools.config import add_config_arguments, config_from_args
    from tplqi.tools.log import configure_logging
    from tplqi.tools.nodes import load_template
    from tplqi.tools.schema import SchemaError, load_json, validate_or_raise

    ap = argparse.ArgumentParser(prog="tplqi check")
    ap.add_argument("path", help="Path to template JSON")
    ap.add_argument("--json", action="store_true", help="Emit diagnostics as JSON")
    add_config_arguments(ap)
    args = ap.parse_args(argv)

    try:
        config = config_from_args(args)
    except (OSError, ValueError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 3
    configure_logging(level=config.log_level, json_format=config.log_json)

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

    loader = config.make_loader(path.parent)
    module.name = config.template_name(path)
    try:
        provider = config.make_provider()
    except (OSError, ValueError) as e:
        print(f"Failed to load type definitions: {e}", file=sys.stderr)
        return 3

    from tplqi.tools.inspections import default_inspections

    sink = ListSink()
    try:
        analyzer = Analyzer(
            default_inspections(config.inspections),
            provider=provider,
            loader=loader,
            globals=config.globals,
        )
        analyzer.analyze(module, sink)
    except ValueError as e:
        # unknown inspection names, or an imported template that fails to load
        print(f"error: {e}", file=sys.stderr)
        return 3

    if args.json:
        print(json.dumps(sink.to_dicts(), indent=2, ensure_ascii=False))
    else:
        for d in sink.diagnostics:
            print(f"{d.severity} {d.code} {d.pointer or '/'}: {d.format()}")

    return exit_code(sink.diagnostics, strict=config.strict)


if __name__ == "__main__":
    raise SystemExit(main())
