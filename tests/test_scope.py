import pytest

from tplqi.tools.scope import Scope
from tplqi.tools.types import MIXED, Basic, parse_type


@pytest.fixture
def scope():
    return Scope()


def test_undeclared_is_mixed(scope):
    assert not scope.is_declared("foo")
    assert scope.type_of("foo") == MIXED


def test_required_lookup_fails(scope):
    with pytest.raises(KeyError):
        scope.type_of("foo", required=True)


def test_add_replaces_latest_binding(scope):
    scope.add({"foo": parse_type("string")})
    scope.add({"foo": parse_type("number")})
    assert scope.type_of("foo") == Basic("number")
    scope.pop("foo")
    assert "foo" not in scope


def test_push_shadows_and_pop_restores(scope):
    scope.add({"foo": parse_type("string")})
    scope.push("foo")
    assert scope.type_of("foo") == MIXED
    scope.pop("foo")
    assert scope.type_of("foo") == Basic("string")


def test_pop_removes_name_when_empty(scope):
    scope.push("item")
    assert scope.declared_names() == ["item"]
    assert scope.pop("item") == MIXED
    assert not scope.is_declared("item")


def test_pop_unbound_fails(scope):
    with pytest.raises(KeyError):
        scope.pop("nope")
