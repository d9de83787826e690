"""Cross-template macro resolution.

Each template gets its own `TemplateMacros` record:
- macros:     macro name -> MacroSignature, declared in that template
- namespaces: `import "t" as ns`           -> ns -> "t"
- bindings:   `from "t" import m as a`     -> a  -> ("t", "m")

Imported templates are collected (declarations + their own imports,
recursively) on demand and cached for the lifetime of the resolver, which is
one top-level analysis. A template whose collection is in flight is never
re-entered, so circular imports terminate; bindings refer to templates by
name and are looked up lazily, so a cycle still resolves once every template
involved has been collected.

Imports whose template is computed at render time (dynamic imports),
templates the loader cannot find and templates that fail to load bind their
names as *unresolved* (template None): calls through them are skipped, not
reported as unknown.

CLI:
  tplqi resolve page.json [--root DIR] [--log-level LEVEL]
  (prints the macro table as JSON)
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from tplqi.tools.log import configure_logging, get_logger
from tplqi.tools.macros import MacroSignature, build_signature
from tplqi.tools.nodes import Import, MacroCall, MacroDeclaration, Module, iter_nodes, load_template

SELF = "_self"

log = get_logger("tplqi.resolve")


class TemplateNotFound(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unable to find template '{name}'")
        self.name = name


# -------------------------
# Loaders
# -------------------------

class TemplateLoader:
    def load(self, name: str) -> Module:
        raise NotImplementedError


class DirectoryLoader(TemplateLoader):
    """Templates are JSON files below `root`; `name` or `name.json`."""

    def __init__(self, root: Union[str, Path], *, validate: bool = True) -> None:
        self.root = Path(root).resolve()
        self.validate = validate

    def _find(self, name: str) -> Path:
        for candidate in (name, name + ".json"):
            path = (self.root / candidate).resolve()
            if not path.is_relative_to(self.root):
                break
            if path.is_file():
                return path
        raise TemplateNotFound(name)

    def load(self, name: str) -> Module:
        path = self._find(name)
        doc = json.loads(path.read_text(encoding="utf-8"))
        if self.validate:
            from tplqi.tools.schema import validate_or_raise

            validate_or_raise(doc, "template.schema.v1.json", label=str(path))
        module = load_template(doc, str(path))
        module.name = name
        return module


class DictLoader(TemplateLoader):
    """In-memory templates: name -> template JSON document (or Module)."""

    def __init__(self, templates: Mapping[str, Any]) -> None:
        self.templates = dict(templates)

    def load(self, name: str) -> Module:
        if name not in self.templates:
            raise TemplateNotFound(name)
        doc = self.templates[name]
        if isinstance(doc, Module):
            return doc
        module = load_template(doc, name)
        module.name = name
        return module


class NullLoader(TemplateLoader):
    def load(self, name: str) -> Module:
        raise TemplateNotFound(name)


# -------------------------
# Registry
# -------------------------

@dataclass
class TemplateMacros:
    name: str
    macros: Dict[str, MacroSignature] = field(default_factory=dict)
    namespaces: Dict[str, Optional[str]] = field(default_factory=dict)
    bindings: Dict[str, Tuple[Optional[str], str]] = field(default_factory=dict)
    missing: List[Tuple[Import, str]] = field(default_factory=list)
    broken: List[Tuple[Import, str, str]] = field(default_factory=list)


RESOLVED = "resolved"
UNKNOWN = "unknown"
UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class CallResolution:
    status: str
    signature: Optional[MacroSignature] = None


class TemplateResolver:
    def __init__(self, loader: Optional[TemplateLoader] = None) -> None:
        self.loader = loader or NullLoader()
        self._visited: Dict[str, TemplateMacros] = {}
        self._in_flight: Set[str] = set()

    def collect(self, module: Module) -> TemplateMacros:
        """Collect a module's own macros and imports (and, transitively, its imports')."""
        self._in_flight.add(module.name)
        try:
            record = TemplateMacros(module.name)
            for node in iter_nodes(module):
                if isinstance(node, MacroDeclaration):
                    record.macros.setdefault(node.name, build_signature(node, module.path))
                elif isinstance(node, Import):
                    self._bind_import(record, node)
        finally:
            self._in_flight.discard(module.name)
        self._visited[module.name] = record
        log.debug("import.collected", template=module.name, macros=sorted(record.macros))
        return record

    def lookup_template(self, name: str) -> Optional[TemplateMacros]:
        return self._visited.get(name)

    def _bind_import(self, record: TemplateMacros, imp: Import) -> None:
        target = imp.template_name
        if target == SELF:
            target = record.name
        elif target is None:
            log.info("import.unresolved", template=record.name, reason="dynamic", line=imp.line)
        else:
            try:
                found = self._ensure_collected(target, importer=record.name)
            except (OSError, ValueError) as e:
                # the template exists but is not a valid template document
                record.broken.append((imp, target, str(e)))
                log.warning(
                    "import.unresolved", template=record.name, target=target, reason="invalid", error=str(e)
                )
                target = None
            else:
                if not found:
                    record.missing.append((imp, target))
                    log.info("import.unresolved", template=record.name, target=target, reason="not_found")
                    target = None

        if imp.alias:
            record.namespaces[imp.alias] = target
        for b in imp.bindings:
            record.bindings[b.local_name] = (target, b.name)

    def _ensure_collected(self, name: str, *, importer: str) -> bool:
        if name in self._visited:
            return True
        if name in self._in_flight:
            log.debug("import.cycle_skipped", template=name, importer=importer)
            return True
        try:
            module = self.loader.load(name)
        except TemplateNotFound:
            return False
        module.name = name
        self.collect(module)
        return True

    def _macro_of(self, template: str, macro: str) -> CallResolution:
        record = self._visited.get(template)
        if record is None:
            # still in flight: its declarations are not known yet
            return CallResolution(UNRESOLVED)
        sig = record.macros.get(macro)
        return CallResolution(RESOLVED, sig) if sig else CallResolution(UNKNOWN)

    def resolve_call(self, current: TemplateMacros, call: MacroCall) -> CallResolution:
        """Find the signature a call refers to, seen from the `current` template."""
        if call.namespace == SELF:
            sig = current.macros.get(call.name)
            return CallResolution(RESOLVED, sig) if sig else CallResolution(UNKNOWN)

        if call.namespace is not None:
            if call.namespace not in current.namespaces:
                return CallResolution(UNKNOWN)
            target = current.namespaces[call.namespace]
            if target is None:
                return CallResolution(UNRESOLVED)
            return self._macro_of(target, call.name)

        local = current.macros.get(call.name)
        if local is not None:
            return CallResolution(RESOLVED, local)
        if call.name in current.bindings:
            target, original = current.bindings[call.name]
            if target is None:
                return CallResolution(UNRESOLVED)
            return self._macro_of(target, original)
        return CallResolution(UNKNOWN)


def macro_table(record: TemplateMacros) -> Dict[str, Any]:
    return {
        "template": record.name,
        "macros": {
            name: {
                "params": [{"name": p.name, "required": p.required} for p in sig.params],
                "varargs": sig.accepts_varargs,
            }
            for name, sig in sorted(record.macros.items())
        },
        "namespaces": dict(record.namespaces),
        "bindings": {k: {"template": t, "macro": m} for k, (t, m) in record.bindings.items()},
    }


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="tplqi resolve")
    ap.add_argument("path", help="Path to template JSON")
    ap.add_argument("--root", help="Template root for imports (default: the template's directory)")
    ap.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING or ERROR")
    args = ap.parse_args(argv)
    configure_logging(level=args.log_level)

    path = Path(args.path)
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3

    resolver = TemplateResolver(DirectoryLoader(args.root or path.parent))
    try:
        record = resolver.collect(load_template(doc, str(path)))
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 3
    sys.stdout.write(json.dumps(macro_table(record), indent=2, ensure_ascii=False) + "\n")
    for _, target, reason in record.broken:
        print(f"error: template '{target}': {reason}", file=sys.stderr)
    return 2 if record.missing or record.broken else 0


if __name__ == "__main__":
    raise SystemExit(main())
