"""Shorthand builders for template JSON documents used across the tests."""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

Json = Any


def template(*body: Json, name: str = "test.twig") -> Dict[str, Json]:
    return {"template": name, "body": list(body)}


def text(data: str) -> Json:
    return {"text": data}


def var(name: str, line: int = 1) -> Json:
    return {"var": {"name": name, "line": line}}


def const(value: Any) -> Json:
    return {"const": {"value": value}}


def pr(expr: Json, line: int = 1) -> Json:
    return {"print": {"expr": expr, "line": line}}


def types(line: int = 1, **mapping: Union[str, Tuple[str, bool]]) -> Json:
    out: Dict[str, Json] = {}
    for name, decl in mapping.items():
        if isinstance(decl, tuple):
            out[name] = {"type": decl[0], "optional": decl[1]}
        else:
            out[name] = {"type": decl, "optional": False}
    return {"types": {"mapping": out, "line": line}}


def macro(name: str, params: Iterable[Union[str, Tuple[str, Json]]] = (), body: Iterable[Json] = (), line: int = 1) -> Json:
    ps: List[Json] = []
    for p in params:
        if isinstance(p, tuple):
            ps.append({"name": p[0], "default": p[1]})
        else:
            ps.append({"name": p})
    return {"macro": {"name": name, "params": ps, "body": list(body), "line": line}}


def call(name: str, *args: Union[Json, Tuple[str, Json]], namespace: Optional[str] = None, line: int = 1) -> Json:
    """Macro call; `("name", expr)` tuples are named arguments."""
    out: List[Json] = []
    for a in args:
        if isinstance(a, tuple):
            out.append({"name": a[0], "value": a[1]})
        else:
            out.append({"value": a})
    payload: Dict[str, Json] = {"name": name, "args": out, "line": line}
    if namespace is not None:
        payload["namespace"] = namespace
    return {"macro_call": payload}


def attr(node: Json, name: str, kind: str = "any", line: int = 1) -> Json:
    return {"getattr": {"node": node, "attr": name, "kind": kind, "line": line}}


def fn(name: str, *args: Json, line: int = 1) -> Json:
    return {"call": {"fn": name, "args": list(args), "line": line}}


def is_(name: str, node: Json, *args: Json, line: int = 1) -> Json:
    """`node is name(args)` test expression."""
    return {"test": {"name": name, "node": node, "args": list(args), "line": line}}


def arrow(params: List[str], body: Json) -> Json:
    return {"arrow": {"params": params, "body": body}}


def filt(name: str, node: Json, *args: Json) -> Json:
    return {"filter": {"name": name, "node": node, "args": list(args)}}


def for_(value: str, seq: Json, body: Iterable[Json] = (), key: Optional[str] = None, line: int = 1) -> Json:
    payload: Dict[str, Json] = {"value": value, "seq": seq, "body": list(body), "line": line}
    if key is not None:
        payload["key"] = key
    return {"for": payload}


def set_(*names: str, values: Iterable[Json] = (), line: int = 1) -> Json:
    return {"set": {"names": list(names), "values": list(values), "line": line}}


def if_(cond: Json, body: Iterable[Json] = (), line: int = 1) -> Json:
    return {"if": {"branches": [{"cond": cond, "body": list(body)}], "line": line}}


def import_(tpl: Json, alias: Optional[str] = None, bindings: Iterable[Union[str, Tuple[str, str]]] = (), line: int = 1) -> Json:
    payload: Dict[str, Json] = {"template": tpl, "line": line}
    if alias is not None:
        payload["alias"] = alias
    bs: List[Json] = []
    for b in bindings:
        if isinstance(b, tuple):
            bs.append({"name": b[0], "alias": b[1]})
        else:
            bs.append({"name": b})
    if bs:
        payload["bindings"] = bs
    return {"import": payload}
