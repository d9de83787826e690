"""Execute synthesized guard code in a restricted environment.

Security model (pragmatic):
- Generated guard code contains no import statements.
- `exec` runs with a restricted `__builtins__` dictionary.
- The only global is `rt` (tplqi.tools.runtime_guarded).

This is NOT a perfect sandbox; the code it runs is produced by
`tplqi.tools.guards` from declared type texts, never from template data.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from tplqi.tools import runtime_guarded as rt
from tplqi.tools.guards import ENTRY_POINT, generate_guards, wrap_annotations

GuardFunction = Callable[[Mapping[str, Any], rt.Reporter, Any], None]


def _exec_guards(code: str, filename: str) -> Dict[str, Any]:
    # Very restricted builtins
    safe_builtins: Dict[str, Any] = {
        "True": True,
        "False": False,
        "None": None,
    }

    g: Dict[str, Any] = {
        "__builtins__": safe_builtins,
        "rt": rt,
    }

    exec(compile(code, filename, "exec"), g, g)
    return g


def compile_guards(
    code: str,
    *,
    function: str = ENTRY_POINT,
    filename: str = "<tplqi-guards>",
) -> GuardFunction:
    fn = _exec_guards(code, filename).get(function)
    if fn is None:
        raise NameError(f"Guard code does not define {function}()")
    return fn


def guard_scopes(code: str) -> Dict[str, Optional[str]]:
    """Map each `assert_types_<n>` to its owning macro or loop (None: template level)."""
    return dict(_exec_guards(code, "<tplqi-guards>").get("GUARD_SCOPES", {}))


def run_guards(
    code: str,
    context: Mapping[str, Any],
    provider: Optional[Any] = None,
    *,
    report: Optional[rt.Reporter] = None,
    function: str = ENTRY_POINT,
) -> List[rt.GuardViolation]:
    """Run guard code against a render context and return the violations found.

    `function` picks a single declaration's guard, e.g. one owned by a macro,
    to be run against that macro's arguments.
    """
    collector = rt.ViolationCollector()
    sink = rt.tee_reporter(collector, report) if report is not None else collector
    compile_guards(code, function=function)(context, sink, provider)
    return collector.violations


def main(argv: Optional[List[str]] = None) -> int:
    from tplqi.tools.config import add_config_arguments, config_from_args
    from tplqi.tools.log import configure_logging
    from tplqi.tools.nodes import load_template
    from tplqi.tools.schema import SchemaError, load_json, validate_or_raise

    ap = argparse.ArgumentParser(prog="tplqi assert")
    ap.add_argument("path", help="Path to template JSON")
    ap.add_argument("--context", required=True, help="Path to a JSON object with the render context")
    ap.add_argument("--json", action="store_true", help="Emit violations as JSON")
    add_config_arguments(ap)
    args = ap.parse_args(argv)

    try:
        config = config_from_args(args)
        doc = load_json(Path(args.path))
        validate_or_raise(doc, "template.schema.v1.json", label=args.path)
        module = load_template(doc, args.path)
        context = load_json(Path(args.context))
        provider = config.make_provider()
    except SchemaError as e:
        print(str(e), file=sys.stderr)
        return 3
    except (OSError, ValueError) as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3
    if not isinstance(context, dict):
        print("Render context must be a JSON object", file=sys.stderr)
        return 3
    configure_logging(level=config.log_level, json_format=config.log_json)

    wrap_annotations(module)
    violations = run_guards(generate_guards(module), context, provider)

    if args.json:
        print(json.dumps([v.to_dict() for v in violations], indent=2, ensure_ascii=False))
    else:
        for v in violations:
            print(f"{v.severity} {v.code}: {v.message}")
    return 2 if violations else 0


if __name__ == "__main__":
    raise SystemExit(main())
