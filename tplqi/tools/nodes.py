"""Template syntax tree.

Templates arrive as JSON (see `tplqi/schema/template.schema.v1.json`):

    {"template": "page.twig", "body": [<stmt>, ...]}

Every node is a single-key object `{tag: payload}`. Bare JSON literals are
constants and `{"var": "x"}` is shorthand for `{"var": {"name": "x"}}`.

`load_template` turns that document into the node classes below. Each node
remembers its source line and the JSON Pointer (RFC 6901) of its position in
the document, so diagnostics can point at the exact offending node.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union


class TemplateFormatError(ValueError):
    def __init__(self, pointer: str, message: str) -> None:
        super().__init__(f"{pointer or '/'}: {message}")
        self.pointer = pointer


def escape_segment(seg: str) -> str:
    return seg.replace("~", "~0").replace("/", "~1")


def join_pointer(base: str, *segments: Union[str, int]) -> str:
    return base + "".join("/" + escape_segment(str(s)) for s in segments)


# -------------------------
# Node model
# -------------------------

@dataclass(eq=False)
class Node:
    CHILDREN: ClassVar[Tuple[str, ...]] = ()

    line: int = field(default=0, kw_only=True)
    pointer: str = field(default="", kw_only=True)

    def iter_children(self) -> Iterator["Node"]:
        for name in self.CHILDREN:
            value = getattr(self, name)
            if isinstance(value, list):
                yield from (v for v in value if isinstance(v, Node))
            elif isinstance(value, Node):
                yield value

    def replace_child(self, old: "Node", new: "Node") -> None:
        for name in self.CHILDREN:
            value = getattr(self, name)
            if value is old:
                setattr(self, name, new)
                return
            if isinstance(value, list):
                for i, v in enumerate(value):
                    if v is old:
                        value[i] = new
                        return
        raise ValueError(f"{type(old).__name__} is not a child of {type(self).__name__}")


@dataclass(eq=False)
class Module(Node):
    """`path` is where diagnostics point; `name` is what imports refer to."""

    CHILDREN = ("body",)

    path: str
    body: List[Node]
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.path


# statements

@dataclass(eq=False)
class Text(Node):
    data: str


@dataclass(eq=False)
class Print(Node):
    CHILDREN = ("expr",)

    expr: Node


@dataclass(frozen=True)
class TypeDecl:
    type_text: str
    optional: bool = False


@dataclass(eq=False)
class TypeAnnotation(Node):
    mapping: Dict[str, TypeDecl]


@dataclass(eq=False)
class Assignment(Node):
    CHILDREN = ("values", "body")

    names: List[str]
    values: List[Node] = field(default_factory=list)
    body: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class Loop(Node):
    CHILDREN = ("seq", "body", "else_body")

    key_name: Optional[str]
    value_name: str
    seq: Node
    body: List[Node] = field(default_factory=list)
    else_body: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class IfBranch(Node):
    CHILDREN = ("cond", "body")

    cond: Node
    body: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class If(Node):
    CHILDREN = ("branches", "else_body")

    branches: List[IfBranch]
    else_body: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class MacroParam(Node):
    CHILDREN = ("default",)

    name: str
    default: Optional[Node] = None

    @property
    def has_default(self) -> bool:
        return self.default is not None


@dataclass(eq=False)
class MacroDeclaration(Node):
    CHILDREN = ("params", "body")

    name: str
    params: List[MacroParam] = field(default_factory=list)
    body: List[Node] = field(default_factory=list)


@dataclass(frozen=True)
class ImportBinding:
    name: str
    alias: Optional[str] = None

    @property
    def local_name(self) -> str:
        return self.alias or self.name


@dataclass(eq=False)
class Import(Node):
    """`import "t" as alias` (namespace) or `from "t" import a as b` (bindings)."""

    CHILDREN = ("template",)

    template: Node
    alias: Optional[str] = None
    bindings: List[ImportBinding] = field(default_factory=list)

    @property
    def template_name(self) -> Optional[str]:
        """Name of the imported template; None when it is computed at render time."""
        if isinstance(self.template, Constant) and isinstance(self.template.value, str):
            return self.template.value
        if isinstance(self.template, VariableReference) and self.template.name == "_self":
            return "_self"
        return None


@dataclass(eq=False)
class Block(Node):
    CHILDREN = ("body",)

    name: str
    body: List[Node] = field(default_factory=list)


# expressions

@dataclass(eq=False)
class Constant(Node):
    value: Any


@dataclass(eq=False)
class VariableReference(Node):
    name: str
    is_defined_test: bool = False


@dataclass(eq=False)
class ListExpr(Node):
    CHILDREN = ("items",)

    items: List[Node]


@dataclass(eq=False)
class MapPair(Node):
    CHILDREN = ("key", "value")

    key: Node
    value: Node


@dataclass(eq=False)
class MapExpr(Node):
    CHILDREN = ("pairs",)

    pairs: List[MapPair]


ANY_CALL = "any"
METHOD_CALL = "method"
ARRAY_CALL = "array"


@dataclass(eq=False)
class AttributeAccess(Node):
    CHILDREN = ("node", "args")

    node: Node
    attr: str
    kind: str = ANY_CALL
    args: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class MacroArgument(Node):
    CHILDREN = ("value",)

    value: Node
    name: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return self.name is not None


@dataclass(eq=False)
class MacroCall(Node):
    CHILDREN = ("args",)

    name: str
    namespace: Optional[str] = None
    args: List[MacroArgument] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name


@dataclass(eq=False)
class FunctionCall(Node):
    CHILDREN = ("args",)

    fn: str
    args: List[Node] = field(default_factory=list)
    is_defined_test: bool = False


@dataclass(eq=False)
class Filter(Node):
    CHILDREN = ("node", "args")

    name: str
    node: Node
    args: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class Test(Node):
    CHILDREN = ("node", "args")

    name: str
    node: Node
    args: List[Node] = field(default_factory=list)


@dataclass(eq=False)
class Lambda(Node):
    CHILDREN = ("body",)

    params: List[str]
    body: Node


@dataclass(eq=False)
class Binary(Node):
    CHILDREN = ("left", "right")

    op: str
    left: Node
    right: Node


@dataclass(eq=False)
class Unary(Node):
    CHILDREN = ("node",)

    op: str
    node: Node


@dataclass(eq=False)
class Conditional(Node):
    CHILDREN = ("test", "then", "else_")

    test: Node
    then: Node
    else_: Node


# -------------------------
# Loading
# -------------------------

def _single(node: Any, ptr: str) -> Tuple[str, Any]:
    if not isinstance(node, dict) or len(node) != 1:
        raise TemplateFormatError(ptr, "node must be an object with exactly one key")
    tag = next(iter(node.keys()))
    return tag, node[tag]


def _payload(val: Any, ptr: str, tag: str) -> Dict[str, Any]:
    if not isinstance(val, dict):
        raise TemplateFormatError(ptr, f"{tag} must be an object")
    return val


def _line(val: Dict[str, Any]) -> int:
    line = val.get("line", 0)
    return line if isinstance(line, int) else 0


def _stmts(items: Any, ptr: str) -> List[Node]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise TemplateFormatError(ptr, "expected an array of statements")
    return [_stmt(s, join_pointer(ptr, i)) for i, s in enumerate(items)]


def _exprs(items: Any, ptr: str) -> List[Node]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise TemplateFormatError(ptr, "expected an array of expressions")
    return [_expr(e, join_pointer(ptr, i)) for i, e in enumerate(items)]


def _stmt(stmt: Any, ptr: str) -> Node:
    tag, val = _single(stmt, ptr)
    at = join_pointer(ptr, tag)

    if tag == "text":
        if isinstance(val, str):
            return Text(val, pointer=ptr)
        payload = _payload(val, at, tag)
        return Text(str(payload.get("data", "")), line=_line(payload), pointer=ptr)

    if tag == "print":
        payload = _payload(val, at, tag)
        return Print(_expr(payload.get("expr"), join_pointer(at, "expr")), line=_line(payload), pointer=ptr)

    if tag == "types":
        payload = _payload(val, at, tag)
        mapping: Dict[str, TypeDecl] = {}
        for name, decl in (payload.get("mapping") or {}).items():
            if isinstance(decl, str):
                mapping[name] = TypeDecl(decl)
            elif isinstance(decl, dict):
                mapping[name] = TypeDecl(str(decl.get("type", "mixed")), bool(decl.get("optional", False)))
            else:
                raise TemplateFormatError(join_pointer(at, "mapping", name), "type declaration must be a string or object")
        return TypeAnnotation(mapping, line=_line(payload), pointer=ptr)

    if tag == "set":
        payload = _payload(val, at, tag)
        names = payload.get("names") or []
        if isinstance(names, str):
            names = [names]
        return Assignment(
            list(names),
            _exprs(payload.get("values"), join_pointer(at, "values")),
            _stmts(payload.get("body"), join_pointer(at, "body")),
            line=_line(payload),
            pointer=ptr,
        )

    if tag == "for":
        payload = _payload(val, at, tag)
        return Loop(
            payload.get("key"),
            payload.get("value", "_"),
            _expr(payload.get("seq"), join_pointer(at, "seq")),
            _stmts(payload.get("body"), join_pointer(at, "body")),
            _stmts(payload.get("else"), join_pointer(at, "else")),
            line=_line(payload),
            pointer=ptr,
        )

    if tag == "if":
        payload = _payload(val, at, tag)
        branches: List[IfBranch] = []
        for i, br in enumerate(payload.get("branches") or []):
            bp = join_pointer(at, "branches", i)
            br = _payload(br, bp, "branch")
            branches.append(
                IfBranch(
                    _expr(br.get("cond"), join_pointer(bp, "cond")),
                    _stmts(br.get("body"), join_pointer(bp, "body")),
                    line=_line(br) or _line(payload),
                    pointer=bp,
                )
            )
        return If(branches, _stmts(payload.get("else"), join_pointer(at, "else")), line=_line(payload), pointer=ptr)

    if tag == "macro":
        payload = _payload(val, at, tag)
        params: List[MacroParam] = []
        for i, p in enumerate(payload.get("params") or []):
            pp = join_pointer(at, "params", i)
            if isinstance(p, str):
                params.append(MacroParam(p, line=_line(payload), pointer=pp))
                continue
            p = _payload(p, pp, "param")
            default = _expr(p["default"], join_pointer(pp, "default")) if "default" in p else None
            params.append(MacroParam(str(p.get("name")), default, line=_line(payload), pointer=pp))
        return MacroDeclaration(
            str(payload.get("name")),
            params,
            _stmts(payload.get("body"), join_pointer(at, "body")),
            line=_line(payload),
            pointer=ptr,
        )

    if tag == "import":
        payload = _payload(val, at, tag)
        bindings: List[ImportBinding] = []
        for b in payload.get("bindings") or []:
            if isinstance(b, str):
                bindings.append(ImportBinding(b))
            else:
                bindings.append(ImportBinding(str(b.get("name")), b.get("alias")))
        return Import(
            _expr(payload.get("template"), join_pointer(at, "template")),
            payload.get("alias"),
            bindings,
            line=_line(payload),
            pointer=ptr,
        )

    if tag == "block":
        payload = _payload(val, at, tag)
        return Block(str(payload.get("name")), _stmts(payload.get("body"), join_pointer(at, "body")), line=_line(payload), pointer=ptr)

    raise TemplateFormatError(ptr, f"Unknown statement form: {tag}")


def _expr(expr: Any, ptr: str) -> Node:
    if isinstance(expr, (int, float, str, bool)) or expr is None:
        return Constant(expr, pointer=ptr)

    tag, val = _single(expr, ptr)
    at = join_pointer(ptr, tag)

    if tag == "const":
        if isinstance(val, dict) and "value" in val:
            return Constant(val["value"], line=_line(val), pointer=ptr)
        return Constant(val, pointer=ptr)

    if tag == "var":
        if isinstance(val, str):
            return VariableReference(val, pointer=ptr)
        payload = _payload(val, at, tag)
        return VariableReference(str(payload.get("name")), bool(payload.get("defined_test", False)), line=_line(payload), pointer=ptr)

    if tag == "list":
        return ListExpr(_exprs(val, at), pointer=ptr)

    if tag == "map":
        if not isinstance(val, list):
            raise TemplateFormatError(at, "map must be an array of {key, value} pairs")
        pairs: List[MapPair] = []
        for i, pair in enumerate(val):
            pp = join_pointer(at, i)
            pair = _payload(pair, pp, "pair")
            pairs.append(
                MapPair(_expr(pair.get("key"), join_pointer(pp, "key")), _expr(pair.get("value"), join_pointer(pp, "value")), pointer=pp)
            )
        return MapExpr(pairs, pointer=ptr)

    payload = _payload(val, at, tag)
    line = _line(payload)

    if tag == "getattr":
        return AttributeAccess(
            _expr(payload.get("node"), join_pointer(at, "node")),
            str(payload.get("attr")),
            payload.get("kind", ANY_CALL),
            _exprs(payload.get("args"), join_pointer(at, "args")),
            line=line,
            pointer=ptr,
        )

    if tag == "macro_call":
        args: List[MacroArgument] = []
        for i, a in enumerate(payload.get("args") or []):
            ap = join_pointer(at, "args", i)
            if isinstance(a, dict) and "value" in a and len(a.keys() - {"name", "value", "line"}) == 0:
                args.append(MacroArgument(_expr(a["value"], join_pointer(ap, "value")), a.get("name"), line=_line(a) or line, pointer=ap))
            else:
                args.append(MacroArgument(_expr(a, ap), line=line, pointer=ap))
        return MacroCall(str(payload.get("name")), payload.get("namespace"), args, line=line, pointer=ptr)

    if tag == "call":
        return FunctionCall(str(payload.get("fn")), _exprs(payload.get("args"), join_pointer(at, "args")), line=line, pointer=ptr)

    if tag == "filter":
        return Filter(
            str(payload.get("name")),
            _expr(payload.get("node"), join_pointer(at, "node")),
            _exprs(payload.get("args"), join_pointer(at, "args")),
            line=line,
            pointer=ptr,
        )

    if tag == "test":
        name = str(payload.get("name"))
        inner = _expr(payload.get("node"), join_pointer(at, "node"))
        if name == "defined" and isinstance(inner, (VariableReference, FunctionCall)):
            inner.is_defined_test = True
        return Test(name, inner, _exprs(payload.get("args"), join_pointer(at, "args")), line=line, pointer=ptr)

    if tag == "arrow":
        params = payload.get("params") or []
        if isinstance(params, str):
            params = [params]
        return Lambda(list(params), _expr(payload.get("body"), join_pointer(at, "body")), line=line, pointer=ptr)

    if tag == "binary":
        return Binary(
            str(payload.get("op")),
            _expr(payload.get("left"), join_pointer(at, "left")),
            _expr(payload.get("right"), join_pointer(at, "right")),
            line=line,
            pointer=ptr,
        )

    if tag == "unary":
        return Unary(str(payload.get("op")), _expr(payload.get("node"), join_pointer(at, "node")), line=line, pointer=ptr)

    if tag == "cond":
        return Conditional(
            _expr(payload.get("test"), join_pointer(at, "test")),
            _expr(payload.get("then"), join_pointer(at, "then")),
            _expr(payload.get("else"), join_pointer(at, "else")),
            line=line,
            pointer=ptr,
        )

    raise TemplateFormatError(ptr, f"Unknown expr form: {tag}")


def load_template(doc: Any, path: Optional[str] = None) -> Module:
    """Build a `Module` from a template JSON document."""
    if not isinstance(doc, dict):
        raise TemplateFormatError("", "template must be an object")
    name = str(doc.get("template") or path or "<template>")
    return Module(str(path or name), _stmts(doc.get("body"), "/body"), name, pointer="")


def iter_nodes(node: Node) -> Iterator[Node]:
    """Pre-order iteration over a subtree."""
    yield node
    for child in node.iter_children():
        yield from iter_nodes(child)
