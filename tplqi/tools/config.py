"""tplqi configuration.

A config file is a JSON object validated by `config.schema.v1.json`:

    {
      "globals": ["app", "user"],
      "inspections": ["InvalidTypes", "MacroCalls"],
      "template_root": "templates",
      "types_file": "types.json",
      "python_types": true,
      "strict": false,
      "log_level": "INFO",
      "log_json": false
    }

Relative paths are resolved against the config file's directory. Command
line flags override file values.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from tplqi.tools.resolve import DirectoryLoader, TemplateLoader
from tplqi.tools.schema import validate_or_raise
from tplqi.tools.typeinfo import ChainTypeProvider, PythonTypeProvider, StaticTypeProvider, TypeProvider


@dataclass
class Config:
    globals: List[str] = field(default_factory=list)
    inspections: Optional[List[str]] = None
    template_root: Optional[str] = None
    types_file: Optional[str] = None
    python_types: bool = False
    strict: bool = False
    log_level: str = "WARNING"
    log_json: bool = False
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_dict(cls, doc: Dict[str, Any], base_dir: Optional[Path] = None) -> "Config":
        validate_or_raise(doc, "config.schema.v1.json", label="config")
        return cls(
            globals=list(doc.get("globals") or []),
            inspections=doc.get("inspections"),
            template_root=doc.get("template_root"),
            types_file=doc.get("types_file"),
            python_types=bool(doc.get("python_types", False)),
            strict=bool(doc.get("strict", False)),
            log_level=doc.get("log_level", "WARNING"),
            log_json=bool(doc.get("log_json", False)),
            base_dir=base_dir or Path.cwd(),
        )

    def resolve_path(self, value: str) -> Path:
        p = Path(value)
        return p if p.is_absolute() else self.base_dir / p

    def make_provider(self) -> TypeProvider:
        providers: List[TypeProvider] = []
        if self.types_file:
            providers.append(StaticTypeProvider.from_path(self.resolve_path(self.types_file)))
        if self.python_types:
            providers.append(PythonTypeProvider())
        if not providers:
            return StaticTypeProvider()
        if len(providers) == 1:
            return providers[0]
        return ChainTypeProvider(providers)

    def loader_root(self, default: Path) -> Path:
        return self.resolve_path(self.template_root) if self.template_root else default

    def make_loader(self, default_root: Path) -> TemplateLoader:
        return DirectoryLoader(self.loader_root(default_root))

    def template_name(self, path: Path) -> str:
        """Name imports use for `path`: relative to the template root when inside it."""
        root = self.loader_root(path.parent).resolve()
        resolved = path.resolve()
        if resolved.is_relative_to(root):
            return resolved.relative_to(root).as_posix()
        return path.name


def load_config(path: str | Path) -> Config:
    p = Path(path)
    doc = json.loads(p.read_text(encoding="utf-8"))
    return Config.from_dict(doc, base_dir=p.parent)


def add_config_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--config", help="Path to a tplqi config JSON")
    ap.add_argument("--root", help="Template root for imports (default: the template's directory)")
    ap.add_argument("--types", help="Static type-definition JSON")
    ap.add_argument("--python-types", action="store_true", default=None, help="Resolve type names against importable Python classes")
    ap.add_argument("--global", dest="globals", action="append", default=None, metavar="NAME", help="Name of a global variable (repeatable)")
    ap.add_argument("--inspection", dest="inspections", action="append", default=None, metavar="NAME", help="Enable only these inspections (repeatable)")
    ap.add_argument("--strict", action="store_true", default=None, help="Treat warnings as errors")
    ap.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    ap.add_argument("--log-json", action="store_true", default=None, help="Emit logs as JSON lines")


def config_from_args(args: argparse.Namespace) -> Config:
    config = load_config(args.config) if args.config else Config()
    if args.root:
        config.template_root = str(Path(args.root).resolve())
    if args.types:
        config.types_file = str(Path(args.types).resolve())
    if args.python_types:
        config.python_types = True
    if args.globals:
        config.globals = list(config.globals) + list(args.globals)
    if args.inspections:
        config.inspections = list(args.inspections)
    if args.strict:
        config.strict = True
    if args.log_level:
        config.log_level = args.log_level
    if args.log_json:
        config.log_json = True
    return config
