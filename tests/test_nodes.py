import pytest

from builders import arrow, attr, call, filt, for_, import_, is_, macro, pr, set_, template, types, var
from tplqi.tools.nodes import (
    AttributeAccess,
    Constant,
    Lambda,
    Loop,
    MacroCall,
    MacroDeclaration,
    TemplateFormatError,
    TypeAnnotation,
    VariableReference,
    iter_nodes,
    join_pointer,
    load_template,
)


def test_module_naming():
    assert load_template(template(name="page.twig")).name == "page.twig"
    module = load_template(template(name="page.twig"), "/srv/templates/page.json")
    assert module.path == "/srv/templates/page.json"
    assert module.name == "page.twig"


def test_shorthand_forms():
    module = load_template({"body": [{"text": "hi"}, {"print": {"expr": {"var": "x"}}}, {"print": {"expr": 3}}]})
    assert isinstance(module.body[1].expr, VariableReference)
    assert isinstance(module.body[2].expr, Constant)
    assert module.body[2].expr.value == 3


def test_statements():
    module = load_template(template(
        types(line=1, a="string", b=("?number", True)),
        set_("x", "y", values=[1, 2], line=2),
        for_("v", var("items"), [pr(var("v"))], key="k", line=3),
        macro("m", ["a", ("b", 1)], line=4),
        import_("forms.twig", alias="f", bindings=[("input", "field")], line=5),
    ))
    decl, assign, loop, mac, imp = module.body
    assert isinstance(decl, TypeAnnotation)
    assert decl.mapping["b"].optional and decl.mapping["b"].type_text == "?number"
    assert assign.names == ["x", "y"]
    assert isinstance(loop, Loop) and loop.key_name == "k" and loop.value_name == "v"
    assert isinstance(mac, MacroDeclaration)
    assert [p.has_default for p in mac.params] == [False, True]
    assert imp.template_name == "forms.twig"
    assert imp.bindings[0].local_name == "field"
    assert imp.line == 5


def test_dynamic_and_self_imports():
    dynamic, me = load_template(template(import_(var("layout"), alias="d"), import_(var("_self"), alias="me"))).body
    assert dynamic.template_name is None
    assert me.template_name == "_self"


def test_expressions():
    module = load_template(template(pr(filt("map", attr(var("w"), "title", kind="method"), arrow(["x"], call("m", ("a", 1), namespace="ns"))))))
    nodes = list(iter_nodes(module))
    access = next(n for n in nodes if isinstance(n, AttributeAccess))
    assert access.kind == "method"
    lam = next(n for n in nodes if isinstance(n, Lambda))
    assert lam.params == ["x"]
    mc = next(n for n in nodes if isinstance(n, MacroCall))
    assert mc.display_name == "ns.m"
    assert mc.args[0].is_named and mc.args[0].name == "a"


def test_defined_test_marks_operand():
    module = load_template(template(pr(is_("defined", var("x"))), pr(is_("empty", var("y")))))
    defined, empty = (n for n in iter_nodes(module) if isinstance(n, VariableReference))
    assert defined.is_defined_test
    assert not empty.is_defined_test


def test_pointers():
    module = load_template(template(pr(var("a")), macro("m", body=[pr(call("x", var("b")))])))
    pointers = {n.pointer for n in iter_nodes(module)}
    assert "/body/0/print/expr" in pointers
    assert "/body/1/macro/body/0/print/expr/macro_call/args/0" in pointers


def test_join_pointer_escapes():
    assert join_pointer("", "mapping", "a/b~c") == "/mapping/a~1b~0c"


@pytest.mark.parametrize(
    "doc",
    [
        [],
        {"body": [{"nope": {}}]},
        {"body": [{"print": {}, "text": "x"}]},
        {"body": [{"print": {"expr": {"bogus": 1}}}]},
    ],
)
def test_malformed(doc):
    with pytest.raises(TemplateFormatError):
        load_template(doc)


def test_replace_child():
    module = load_template(template(pr(var("a"))))
    old = module.body[0]
    new = load_template(template(pr(var("b")))).body[0]
    module.replace_child(old, new)
    assert module.body[0] is new
    with pytest.raises(ValueError):
        module.replace_child(old, new)
