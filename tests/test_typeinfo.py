import pytest

from pytypes import FancyWidget, Renderable, Status, Widget
from tplqi.tools.schema import SchemaError
from tplqi.tools.typeinfo import (
    PRIVATE,
    PROTECTED,
    PUBLIC,
    ChainTypeProvider,
    PythonTypeProvider,
    StaticTypeProvider,
    is_subtype,
    python_fqn,
)


class TestStaticTypeProvider:
    def test_lookup(self, static_types):
        info = static_types.lookup("\\App\\Widget")
        assert info is not None
        assert info.kind == "class"
        assert info.fields["attr"] == PUBLIC
        assert info.fields["secret"] == PRIVATE
        assert "magic" in info.properties
        assert info.traits == ["\\App\\Loggable"]
        assert info.parents == ["\\App\\Base", "\\App\\Renderable"]

    def test_lookup_without_leading_backslash(self, static_types):
        assert static_types.lookup("App\\Status").cases == ["Active", "Inactive"]

    def test_unknown(self, static_types):
        assert static_types.lookup("\\App\\Nope") is None

    def test_method_list_means_public(self, static_types):
        assert static_types.lookup("\\App\\Base").methods == {"getId": PUBLIC}

    def test_find_method_ignores_case(self, static_types):
        info = static_types.lookup("\\App\\Widget")
        assert info.find_method("gettitle") == ("getTitle", PUBLIC)
        assert info.find_method("getLabel") == ("getLabel", PROTECTED)
        assert info.find_method("missing") is None

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("PHP_EOL", True),
            ("NOPE", False),
            ("\\App\\Config::VERSION", True),
            ("App\\Config::VERSION", True),
            ("\\App\\Config::NOPE", False),
            ("\\App\\Missing::VERSION", False),
        ],
    )
    def test_constants(self, static_types, name, expected):
        assert static_types.constant_exists(name) is expected

    def test_subtyping(self, static_types):
        assert is_subtype(static_types, "\\App\\Widget", "\\App\\Base")
        assert is_subtype(static_types, "\\App\\Widget", "\\App\\Renderable")
        assert is_subtype(static_types, "\\App\\Widget", "\\App\\Loggable")
        assert is_subtype(static_types, "\\App\\Widget", "\\app\\widget")
        assert not is_subtype(static_types, "\\App\\Base", "\\App\\Widget")

    def test_subtyping_survives_cycles(self):
        provider = StaticTypeProvider({"types": {"\\A": {"extends": "\\B"}, "\\B": {"extends": "\\A"}}})
        assert not is_subtype(provider, "\\A", "\\C")

    def test_from_path_validates(self, tmp_path):
        path = tmp_path / "types.json"
        path.write_text('{"types": {"\\\\App\\\\X": {"kind": "struct"}}}', encoding="utf-8")
        with pytest.raises(SchemaError):
            StaticTypeProvider.from_path(path)


class TestPythonTypeProvider:
    @pytest.fixture
    def provider(self):
        return PythonTypeProvider()

    def test_fqn(self):
        assert python_fqn(Widget) == "\\pytypes\\Widget"
        assert python_fqn(str) == "\\str"

    def test_describe_class(self, provider):
        info = provider.lookup(python_fqn(Widget))
        assert info.kind == "class"
        assert info.fields["attr"] == PUBLIC
        assert info.fields["_secret"] == PROTECTED
        assert info.methods["getTitle"] == PUBLIC
        assert info.methods["_getHidden"] == PROTECTED
        assert "magic" in info.properties
        assert "MAX_ITEMS" in info.constants
        assert python_fqn(Renderable) in info.parents

    def test_abstract_class_is_interface(self, provider):
        assert provider.lookup(python_fqn(Renderable)).kind == "interface"

    def test_enum(self, provider):
        info = provider.lookup(python_fqn(Status))
        assert info.kind == "enum"
        assert info.cases == ["ACTIVE", "INACTIVE"]

    def test_subclass(self, provider):
        assert is_subtype(provider, python_fqn(FancyWidget), python_fqn(Renderable))

    @pytest.mark.parametrize("fqn", ["\\pytypes\\Nope", "\\no_such_module\\Thing", "\\pytypes\\GREETING"])
    def test_unknown(self, provider, fqn):
        assert provider.lookup(fqn) is None

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("\\pytypes\\GREETING", True),
            ("\\pytypes\\helper", False),
            ("\\pytypes\\Widget::MAX_ITEMS", True),
            ("\\pytypes\\Status::ACTIVE", True),
            ("GREETING", False),
        ],
    )
    def test_constants(self, provider, name, expected):
        assert provider.constant_exists(name) is expected


class TestChainTypeProvider:
    def test_first_hit_wins(self, static_types):
        chain = ChainTypeProvider([static_types, PythonTypeProvider()])
        assert chain.lookup("\\App\\Widget").name == "\\App\\Widget"
        assert chain.lookup(python_fqn(Widget)).name == "\\pytypes\\Widget"
        assert chain.lookup("\\Nowhere") is None

    def test_constants_from_any_provider(self, static_types):
        chain = ChainTypeProvider([static_types, PythonTypeProvider()])
        assert chain.constant_exists("PHP_EOL")
        assert chain.constant_exists("\\pytypes\\GREETING")
