"""Cross-template macro resolution: imports, aliases, cycles and isolation."""

import json

import pytest

from builders import call, const, import_, macro, pr, template, var
from tplqi.tools import resolve
from tplqi.tools.diagnostics import ListSink
from tplqi.tools.nodes import load_template
from tplqi.tools.resolve import (
    RESOLVED,
    UNKNOWN,
    UNRESOLVED,
    DictLoader,
    DirectoryLoader,
    TemplateNotFound,
    TemplateResolver,
    macro_table,
)
from tplqi.tools.semantic import Analyzer

FORMS = template(
    macro("input", ["name", ("type", const("text"))]),
    macro("label", ["text"]),
    name="forms.twig",
)


class CountingLoader(DictLoader):
    def __init__(self, templates):
        super().__init__(templates)
        self.loads = []

    def load(self, name):
        self.loads.append(name)
        return super().load(name)


def _messages(sink):
    return [d.message for d in sink.diagnostics]


class TestImports:
    def test_namespace_import(self, analyze):
        doc = template(
            import_("forms.twig", alias="f"),
            pr(call("input", "user", namespace="f")),
            pr(call("input", namespace="f")),
            pr(call("nope", namespace="f")),
        )
        sink = analyze(doc, templates={"forms.twig": FORMS})
        assert _messages(sink) == [
            "Too few arguments (0) for macro 'input'",
            "Unknown macro 'f.nope'",
        ]

    def test_aliased_binding_uses_original_signature(self, analyze):
        doc = template(
            import_("forms.twig", bindings=[("input", "field"), "label"]),
            pr(call("field", "a", "b")),
            pr(call("field", "a", "b", "c")),
            pr(call("label", ("text", "x"))),
            pr(call("input", "a")),
        )
        sink = analyze(doc, templates={"forms.twig": FORMS})
        assert _messages(sink) == [
            "Too many arguments (3) for macro 'input'",
            "Unknown macro 'input'",
        ]

    def test_local_declaration_takes_precedence(self, analyze):
        doc = template(
            import_("forms.twig", bindings=["input"]),
            macro("input"),
            pr(call("input")),
        )
        assert analyze(doc, templates={"forms.twig": FORMS}).diagnostics == []

    def test_local_override_does_not_touch_imported_entry(self):
        page = load_template(template(import_("forms.twig", bindings=["input"]), macro("input")))
        resolver = TemplateResolver(DictLoader({"forms.twig": FORMS}))
        record = resolver.collect(page)
        assert record.macros["input"].param_names == []
        assert resolver.lookup_template("forms.twig").macros["input"].param_names == ["name", "type"]

    def test_dynamic_import_is_silent(self, analyze):
        doc = template(
            import_(var("layout"), alias="d"),
            import_(var("layout"), bindings=["box"]),
            pr(call("anything", 1, 2, 3, namespace="d")),
            pr(call("box")),
        )
        assert analyze(doc).diagnostics == []

    def test_unknown_template(self, analyze):
        doc = template(import_("missing.twig", alias="m", line=2), pr(call("x", namespace="m")))
        sink = analyze(doc)
        assert [d.code for d in sink.diagnostics] == ["UnknownTemplate"]
        assert sink.diagnostics[0].format() == "Unknown template 'missing.twig' (at test.twig:2)"

    def test_broken_import_does_not_abort_analysis(self, analyze):
        doc = template(
            import_("bad.twig", alias="b", line=2),
            pr(call("x", namespace="b")),
            pr(call("nope", line=4)),
        )
        sink = analyze(doc, templates={"bad.twig": {"body": [{"nope": {}}]}})
        assert [d.code for d in sink.diagnostics] == ["InvalidTemplate", "UnknownMacro"]
        assert sink.diagnostics[0].message == (
            "Unable to load template 'bad.twig': /body/0: Unknown statement form: nope"
        )
        assert sink.diagnostics[0].location.line == 2

    @pytest.mark.parametrize("content", ["{not json", '{"body": [{"print": {"expr": {"var": {"name": ""}}}}]}'])
    def test_unloadable_file_binds_unresolved(self, tmp_path, content):
        (tmp_path / "bad.json").write_text(content, encoding="utf-8")
        page = load_template(template(import_("bad.json", alias="b", bindings=["m"])), "page.twig")
        record = TemplateResolver(DirectoryLoader(tmp_path)).collect(page)
        assert [target for _, target, _ in record.broken] == ["bad.json"]
        assert record.missing == []
        assert record.namespaces == {"b": None}
        assert record.bindings == {"m": (None, "m")}

    def test_missing_nested_import_not_reported_on_importer(self, analyze):
        forms = template(import_("ghost.twig", alias="g"), macro("input"), name="forms.twig")
        doc = template(import_("forms.twig", alias="f"), pr(call("input", namespace="f")))
        assert analyze(doc, templates={"forms.twig": forms}).diagnostics == []

    def test_templates_loaded_once_per_run(self, static_types):
        loader = CountingLoader({"forms.twig": FORMS})
        doc = template(
            import_("forms.twig", alias="f"),
            import_("forms.twig", bindings=["label"]),
            pr(call("label", "x")),
        )
        analyzer = Analyzer(provider=static_types, loader=loader)
        analyzer.analyze(load_template(doc))
        assert loader.loads == ["forms.twig"]

        # a new top-level analysis starts with an empty visited set
        analyzer.analyze(load_template(doc))
        assert loader.loads == ["forms.twig", "forms.twig"]


class TestCycles:
    def test_self_import(self, analyze):
        doc = template(
            import_("loop.twig", alias="me"),
            import_(var("_self"), alias="this"),
            macro("m", ["a"]),
            pr(call("m", 1, namespace="me")),
            pr(call("m", namespace="this")),
            name="loop.twig",
        )
        sink = analyze(doc)
        assert _messages(sink) == ["Too few arguments (0) for macro 'm'"]

    def test_mutual_imports_terminate(self, fixtures_dir, static_types):
        loader = DirectoryLoader(fixtures_dir / "templates")
        for name in ("this.json", "that.json"):
            sink = ListSink()
            ctx = Analyzer(provider=static_types, loader=loader).analyze(loader.load(name), sink)
            assert sink.diagnostics == []
            assert ctx.resolver.lookup_template("this.json").macros.keys() == {"this_macro"}
            assert ctx.resolver.lookup_template("that.json").macros.keys() == {"that_macro"}

    def test_call_into_uncollected_template_is_unresolved(self):
        resolver = TemplateResolver(DictLoader({}))
        record = resolve.TemplateMacros("a.twig", namespaces={"b": "b.twig"})
        call_node = load_template(template(pr(call("x", namespace="b")))).body[0].expr
        assert resolver.resolve_call(record, call_node).status == UNRESOLVED


class TestIsolation:
    A = template(macro("marco", ["polo"]), name="a.twig")
    B = template(macro("marco"), name="b.twig")

    def test_same_macro_name_in_two_templates(self, analyze):
        doc = template(
            import_("a.twig", alias="a"),
            import_("b.twig", alias="b"),
            pr(call("marco", 1, namespace="a")),
            pr(call("marco", namespace="b")),
            pr(call("marco", 1, namespace="b")),
        )
        sink = analyze(doc, templates={"a.twig": self.A, "b.twig": self.B})
        assert _messages(sink) == ["Too many arguments (1) for macro 'marco'"]

    def test_consecutive_runs_do_not_share_registry(self, static_types):
        analyzer = Analyzer(provider=static_types)
        first = ListSink()
        analyzer.analyze(load_template(template(macro("marco", ["polo"]), pr(call("marco", 1)), name="marco.twig")), first)
        second = ListSink()
        analyzer.analyze(load_template(template(macro("marco"), pr(call("marco")), name="marco.twig")), second)
        assert first.diagnostics == []
        assert second.diagnostics == []

    def test_resolution_status(self):
        resolver = TemplateResolver(DictLoader({"a.twig": self.A}))
        record = resolver.collect(load_template(template(import_("a.twig", alias="a"))))
        ok = load_template(template(pr(call("marco", namespace="a")))).body[0].expr
        missing = load_template(template(pr(call("polo", namespace="a")))).body[0].expr
        assert resolver.resolve_call(record, ok).status == RESOLVED
        assert resolver.resolve_call(record, missing).status == UNKNOWN


class TestLoaders:
    def test_directory_loader_adds_suffix(self, fixtures_dir):
        module = DirectoryLoader(fixtures_dir / "templates").load("macros")
        assert module.name == "macros"
        assert module.path.endswith("macros.json")

    @pytest.mark.parametrize("name", ["nope.json", "../types.json"])
    def test_directory_loader_not_found(self, fixtures_dir, name):
        with pytest.raises(TemplateNotFound):
            DirectoryLoader(fixtures_dir / "templates").load(name)

    def test_dict_loader(self):
        module = DictLoader({"a.twig": TestIsolation.A}).load("a.twig")
        assert module.name == "a.twig"
        with pytest.raises(TemplateNotFound):
            DictLoader({}).load("a.twig")


class TestResolveCli:
    def test_macro_table(self, fixtures_dir, capsys):
        assert resolve.main([str(fixtures_dir / "templates" / "clean.json")]) == 0
        table = json.loads(capsys.readouterr().out)
        assert table["bindings"] == {"list_all": {"template": "macros.json", "macro": "list_all"}}

    def test_missing_import_exit_code(self, tmp_path, capsys):
        path = tmp_path / "page.json"
        path.write_text(json.dumps(template(import_("ghost.json", alias="g"))), encoding="utf-8")
        assert resolve.main([str(path)]) == 2
        assert json.loads(capsys.readouterr().out)["namespaces"] == {"g": None}

    def test_broken_import_exit_code(self, tmp_path, capsys):
        (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
        path = tmp_path / "page.json"
        path.write_text(json.dumps(template(import_("bad.json", alias="b"))), encoding="utf-8")
        assert resolve.main([str(path)]) == 2
        captured = capsys.readouterr()
        assert json.loads(captured.out)["namespaces"] == {"b": None}
        assert "bad.json" in captured.err

    def test_table_lists_varargs(self, fixtures_dir):
        module = DirectoryLoader(fixtures_dir / "templates").load("macros.json")
        table = macro_table(TemplateResolver().collect(module))
        assert table["macros"]["list_all"] == {"params": [{"name": "varargs", "required": False}], "varargs": True}
        assert table["macros"]["marco"]["params"][1] == {"name": "mode", "required": False}
