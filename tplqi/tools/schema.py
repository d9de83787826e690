"""JSON Schema validation for tplqi inputs.

Schemas ship as package data under `tplqi/schema/`:
- template.schema.v1.json  (template syntax tree)
- types.schema.v1.json     (static type definitions)
- config.schema.v1.json    (tplqi configuration file)

Validation errors carry JSON Pointers, like every other tplqi diagnostic.

CLI:
  tplqi validate page.json [--kind template|types|config] [--json-errors]

Exit codes:
  0 OK
  2 schema validation failed
  3 IO/JSON parse error
"""

from __future__ import annotations

import argparse
import importlib.resources as importlib_resources
import json
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import jsonschema

from tplqi.tools.nodes import join_pointer

SCHEMAS = {
    "template": "template.schema.v1.json",
    "types": "types.schema.v1.json",
    "config": "config.schema.v1.json",
}


class SchemaError(ValueError):
    def __init__(self, label: str, errors: List[Dict[str, Any]]) -> None:
        first = errors[0] if errors else {"pointer": "", "message": "invalid"}
        super().__init__(f"{label}: {first['pointer'] or '/'}: {first['message']}")
        self.label = label
        self.errors = errors


def load_schema_text(name: str) -> str:
    with importlib_resources.files("tplqi.schema").joinpath(name).open("r", encoding="utf-8") as f:
        return f.read()


@lru_cache(maxsize=None)
def _validator(name: str) -> jsonschema.Draft202012Validator:
    return jsonschema.Draft202012Validator(json.loads(load_schema_text(name)))


def load_schema(name: str) -> Dict[str, Any]:
    return json.loads(load_schema_text(name))


def load_json(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    return json.loads(text)


def validate(doc: Any, name: str) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    for err in sorted(_validator(name).iter_errors(doc), key=lambda e: list(map(str, e.absolute_path))):
        errors.append(
            {
                "pointer": join_pointer("", *err.absolute_path),
                "message": err.message,
                "validator": err.validator,
                "expected": err.validator_value,
            }
        )
    return errors


def validate_or_raise(doc: Any, name: str, *, label: str = "<document>") -> None:
    errors = validate(doc, name)
    if errors:
        raise SchemaError(label, errors)


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="tplqi validate")
    ap.add_argument("path", help="Path to a JSON document")
    ap.add_argument("--kind", choices=sorted(SCHEMAS), default="template", help="Which schema to validate against")
    ap.add_argument("--json-errors", action="store_true", help="Emit validation errors as JSON on stderr")
    args = ap.parse_args(argv)

    try:
        doc = load_json(Path(args.path))
    except Exception as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3

    errors = validate(doc, SCHEMAS[args.kind])
    if errors:
        if args.json_errors:
            print(json.dumps(errors, indent=2, ensure_ascii=False), file=sys.stderr)
        else:
            for e in errors:
                print(f"{e['pointer']}: {e['message']}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
