"""Template inspections.

Each inspection hooks into the analyzer's walk (see `tplqi.tools.semantic`)
and reports through the analysis context. Inspections keep no state of their
own; everything per-run lives on the context.

Default order:
  InvalidTypes, InvalidDotOperation, TypeGuards, InvalidConstant,
  InvalidEnumCase, MacroCalls, PositionalArgumentAfterNamed,
  RequiredArgumentAfterOptional, UndeclaredVariableInMacro
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Type

from tplqi.tools.diagnostics import DEPRECATION, ERROR, WARNING
from tplqi.tools.macros import (
    VARARGS,
    check_arity,
    invalid_named_arguments,
    positional_after_named,
    required_after_optional,
)
from tplqi.tools.nodes import (
    ARRAY_CALL,
    METHOD_CALL,
    AttributeAccess,
    Constant,
    FunctionCall,
    MacroCall,
    MacroDeclaration,
    Module,
    Node,
    Test,
    TypeAnnotation,
    VariableReference,
)
from tplqi.tools.resolve import RESOLVED, UNKNOWN
from tplqi.tools.semantic import AnalysisContext, Inspection
from tplqi.tools.typeinfo import PUBLIC, TypeInfo, ancestry
from tplqi.tools.types import (
    SCALAR_TYPES,
    Basic,
    ClassRef,
    deprecated_aliases,
    unknown_class_refs,
    unwrap_nullable,
)


class InvalidTypes(Inspection):
    name = "InvalidTypes"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, TypeAnnotation):
            return
        for var, decl in node.mapping.items():
            ty, _ = ctx.parse_declared(decl.type_text)
            if ty is None:
                ctx.report(ERROR, "SyntaxError", f"Invalid type '{decl.type_text}' for variable '{var}'", node)
                continue
            for alias, replacement in deprecated_aliases(ty):
                ctx.report(DEPRECATION, "DeprecatedType", f"Deprecated type '{alias}' used. Use '{replacement}' instead.", node)
            for fqn in unknown_class_refs(ty, ctx.provider):
                ctx.report(ERROR, "UnknownType", f"Invalid type '{fqn}' for variable '{var}'", node)


def _has_member(chain: List[TypeInfo], attr: str, *, methods_only: bool) -> bool:
    if not methods_only:
        for info in chain:
            if info.fields.get(attr) == PUBLIC or attr in info.properties:
                return True
    for candidate in (attr, "get" + attr, "is" + attr, "has" + attr):
        for info in chain:
            found = info.find_method(candidate)
            if found is not None:
                # first existing method wins, public or not
                return found[1] == PUBLIC
    return False


class InvalidDotOperation(Inspection):
    """`foo.bar` must make sense for the declared type of `foo`."""

    name = "InvalidDotOperation"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, AttributeAccess) or node.kind == ARRAY_CALL:
            return
        receiver = node.node
        if not isinstance(receiver, VariableReference) or not ctx.scope.is_declared(receiver.name):
            return

        ty = unwrap_nullable(ctx.scope.type_of(receiver.name))
        if isinstance(ty, Basic) and ty.name in SCALAR_TYPES:
            ctx.report(ERROR, "InvalidAttributeAccess", f"Invalid dot operation on unsupported type '{ty}'", node)
            return
        if not isinstance(ty, ClassRef):
            return

        chain = list(ancestry(ctx.provider, ty.fqn))
        if not chain:
            return
        if not _has_member(chain, node.attr, methods_only=node.kind == METHOD_CALL):
            ctx.report(
                ERROR,
                "InvalidAttributeAccess",
                f"Invalid dot operation: '{ty.fqn}' has no attribute '{node.attr}'",
                node,
            )


class TypeGuards(Inspection):
    """Wrap every `types` declaration in an AssertedTypes node on leave."""

    name = "TypeGuards"

    def leave(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, TypeAnnotation) or parent is None:
            return
        from tplqi.tools.guards import AssertedTypes

        if not isinstance(parent, AssertedTypes):
            parent.replace_child(node, AssertedTypes.wrap(node, ctx.path))


def _constant_call_error(ctx: AnalysisContext, args: Sequence[Node]) -> Optional[str]:
    if len(args) == 1:
        arg = args[0]
        if not isinstance(arg, Constant) or not isinstance(arg.value, str):
            return "single argument must be string"
        if not ctx.provider.constant_exists(arg.value):
            return f"invalid constant: '{arg.value}'"
        return None
    if len(args) == 2:
        first, second = args
        if not isinstance(first, Constant) or not isinstance(first.value, str):
            return "first argument must be string"
        if not isinstance(second, VariableReference):
            return "second argument must be a variable name"
        return None
    if not args:
        return "single argument must be string"
    return "too many arguments"


class InvalidConstant(Inspection):
    name = "InvalidConstant"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if isinstance(node, FunctionCall) and node.fn == "constant":
            if node.is_defined_test:
                return
            args = node.args
        elif isinstance(node, Test) and node.name == "constant":
            args = node.args
        else:
            return
        error = _constant_call_error(ctx, args)
        if error:
            ctx.report(ERROR, "InvalidConstantReference", f"Invalid constant() call: {error}", node)


class InvalidEnumCase(Inspection):
    name = "InvalidEnumCase"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, AttributeAccess) or node.attr == "cases":
            return
        call = node.node
        if not isinstance(call, FunctionCall) or call.fn != "enum" or not call.args:
            return
        enum_name = call.args[0]
        if not isinstance(enum_name, Constant) or not isinstance(enum_name.value, str):
            return
        info = ctx.provider.lookup(enum_name.value)
        if info is None or info.kind != "enum":
            return
        if node.attr not in info.cases:
            ctx.report(ERROR, "InvalidEnumCase", f"Invalid enum case '{node.attr}'", node)


class MacroCalls(Inspection):
    """Unknown templates and macros, argument count, named arguments."""

    name = "MacroCalls"

    def enter_module(self, ctx: AnalysisContext, module: Module) -> None:
        if ctx.macros is None:
            return
        for imp, target in ctx.macros.missing:
            ctx.report(ERROR, "UnknownTemplate", f"Unknown template '{target}'", imp)
        for imp, target, reason in ctx.macros.broken:
            ctx.report(ERROR, "InvalidTemplate", f"Unable to load template '{target}': {reason}", imp)

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, MacroCall) or ctx.macros is None:
            return
        res = ctx.resolver.resolve_call(ctx.macros, node)
        if res.status == UNKNOWN:
            ctx.report(ERROR, "UnknownMacro", f"Unknown macro '{node.display_name}'", node)
            return
        if res.status != RESOLVED or res.signature is None:
            return

        message = check_arity(res.signature, node.args)
        if message:
            ctx.report(ERROR, "ArgumentCountMismatch", message, node)
        message = invalid_named_arguments(res.signature, node.args)
        if message:
            ctx.report(ERROR, "InvalidNamedArgument", message, node)


class PositionalArgumentAfterNamed(Inspection):
    name = "PositionalArgumentAfterNamed"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if isinstance(node, MacroCall) and positional_after_named(node.args):
            ctx.report(ERROR, "PositionalAfterNamed", "Positional macro argument after named", node)


class RequiredArgumentAfterOptional(Inspection):
    name = "RequiredArgumentAfterOptional"

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        if not isinstance(node, MacroDeclaration):
            return
        offender = required_after_optional(node)
        if offender is not None:
            ctx.report(
                WARNING,
                "RequiredAfterOptionalDeclaration",
                f"Macro '{node.name}' argument '{offender}' is required, but previous isn't",
                node,
            )


class UndeclaredVariableInMacro(Inspection):
    name = "UndeclaredVariableInMacro"

    SPECIAL_NAMES = frozenset({VARARGS, "_self"})

    def enter(self, ctx: AnalysisContext, node: Node, parent: Optional[Node]) -> None:
        macro = ctx.current_macro
        if macro is None or not isinstance(node, VariableReference) or node.is_defined_test:
            return
        name = node.name
        if name in self.SPECIAL_NAMES or name.startswith("__internal"):
            return
        if name in ctx.globals or ctx.scope.is_declared(name):
            return
        ctx.report(
            WARNING,
            "UndeclaredVariable",
            f'The macro "{macro.name}" ({ctx.path}:{node.line}) uses an undeclared variable named "{name}".',
            node,
        )


INSPECTIONS: Dict[str, Type[Inspection]] = {
    cls.name: cls
    for cls in (
        InvalidTypes,
        InvalidDotOperation,
        TypeGuards,
        InvalidConstant,
        InvalidEnumCase,
        MacroCalls,
        PositionalArgumentAfterNamed,
        RequiredArgumentAfterOptional,
        UndeclaredVariableInMacro,
    )
}


def default_inspections(names: Optional[Iterable[str]] = None) -> List[Inspection]:
    """Instantiate inspections in default order, optionally limited to `names`."""
    if names is None:
        return [cls() for cls in INSPECTIONS.values()]
    wanted = list(names)
    unknown = [n for n in wanted if n not in INSPECTIONS]
    if unknown:
        raise ValueError(f"Unknown inspection(s): {', '.join(unknown)}")
    return [cls() for name, cls in INSPECTIONS.items() if name in wanted]
