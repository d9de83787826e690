"""A small "drop-in" integration layer for tplqi.

It wires the loader, the analyzer and the guard pipeline into one ergonomic
API for Python hosts.

Typical usage:

    from tplqi.engine import TemplateQI

    qi = TemplateQI(types_file="types.json", template_root="templates")
    module = qi.load_path("templates/page.json")
    report = qi.analyze(module)
    if report.any_errors:
        ...
    violations = qi.check_context(report, {"user": user})

"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from tplqi.tools import guards, sandbox_exec_py
from tplqi.tools.config import Config
from tplqi.tools.diagnostics import ERROR, Diagnostic, DiagnosticSink, ListSink, TeeSink
from tplqi.tools.inspections import default_inspections
from tplqi.tools.nodes import Module, load_template
from tplqi.tools.resolve import DictLoader, TemplateLoader
from tplqi.tools.runtime_guarded import GuardViolation, Reporter
from tplqi.tools.schema import validate_or_raise
from tplqi.tools.semantic import Analyzer
from tplqi.tools.typeinfo import TypeProvider


@dataclass
class AnalysisReport:
    module: Module
    diagnostics: List[Diagnostic]

    @property
    def any_errors(self) -> bool:
        return any(d.severity == ERROR for d in self.diagnostics)

    @property
    def any_warnings(self) -> bool:
        return any(d.severity != ERROR for d in self.diagnostics)

    @property
    def guard_code(self) -> str:
        return guards.generate_guards(self.module)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.diagnostics]


class TemplateQI:
    def __init__(
        self,
        *,
        provider: Optional[TypeProvider] = None,
        loader: Optional[TemplateLoader] = None,
        globals: Iterable[str] = (),
        inspections: Optional[Sequence[str]] = None,
        types_file: Optional[str] = None,
        template_root: Optional[str] = None,
        python_types: bool = False,
    ):
        self.config = Config(
            globals=list(globals),
            inspections=list(inspections) if inspections is not None else None,
            template_root=template_root,
            types_file=types_file,
            python_types=python_types,
        )
        self.provider = provider or self.config.make_provider()
        self.loader = loader
        if self.loader is None and template_root is not None:
            self.loader = self.config.make_loader(Path(template_root))
        # validate inspection names eagerly
        default_inspections(self.config.inspections)

    @classmethod
    def from_config(cls, config: Config) -> "TemplateQI":
        qi = cls(
            globals=config.globals,
            inspections=config.inspections,
            types_file=config.types_file and str(config.resolve_path(config.types_file)),
            template_root=config.template_root and str(config.loader_root(config.base_dir)),
            python_types=config.python_types,
        )
        qi.config.strict = config.strict
        return qi

    def load_path(self, path: str | Path) -> Module:
        p = Path(path)
        doc = json.loads(p.read_text(encoding="utf-8"))
        validate_or_raise(doc, "template.schema.v1.json", label=str(p))
        module = load_template(doc, str(p))
        module.name = self.config.template_name(p)
        if self.loader is None:
            self.loader = self.config.make_loader(p.parent)
        return module

    def load(self, doc: Dict[str, Any], name: Optional[str] = None) -> Module:
        validate_or_raise(doc, "template.schema.v1.json", label=name or "<template>")
        module = load_template(doc, name)
        if name:
            module.name = name
        return module

    def analyzer(self) -> Analyzer:
        return Analyzer(
            default_inspections(self.config.inspections),
            provider=self.provider,
            loader=self.loader,
            globals=self.config.globals,
        )

    def analyze(self, module: Module, sink: Optional[DiagnosticSink] = None) -> AnalysisReport:
        collected = ListSink()
        self.analyzer().analyze(module, TeeSink([collected, sink]) if sink is not None else collected)
        return AnalysisReport(module, collected.diagnostics)

    def analyze_templates(self, templates: Mapping[str, Dict[str, Any]], name: str) -> AnalysisReport:
        """Analyze `templates[name]`, resolving imports among `templates` only."""
        previous = self.loader
        self.loader = DictLoader(templates)
        try:
            module = self.load(templates[name], name)
            return self.analyze(module)
        finally:
            self.loader = previous

    def check_context(
        self,
        report: AnalysisReport | str,
        context: Mapping[str, Any],
        *,
        reporter: Optional[Reporter] = None,
        function: str = guards.ENTRY_POINT,
    ) -> List[GuardViolation]:
        code = report if isinstance(report, str) else report.guard_code
        return sandbox_exec_py.run_guards(code, context, self.provider, report=reporter, function=function)
