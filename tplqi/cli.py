#!/usr/bin/env python3
"""tplqi unified CLI.

This CLI delegates argument parsing to the individual tool modules.
That keeps each tool usable both as:
- `tplqi <tool> ...`
- `python -m tplqi.tools.<tool> ...`

Commands:
- check         Static inspections over a template JSON
- guards        Print synthesized runtime guard code
- assert        Run guard code against a JSON render context
- parse-type    Normalize a declared type expression
- validate      JSON Schema check (template, types or config)
- resolve       Print the macro table visible from a template
- version       Show current version

Example:
  tplqi check templates/page.json --types types.json --global app
"""

from __future__ import annotations

import sys
from typing import List, Optional

from tplqi.tools import (
    guards,
    resolve,
    sandbox_exec_py,
    schema,
    semantic,
    types,
)


def _help() -> str:
    return (
        "tplqi CLI\n\n"
        "Usage:\n"
        "  tplqi <command> [args...]\n\n"
        "Commands:\n"
        "  check         Run template inspections\n"
        "  guards        Print runtime guard code\n"
        "  assert        Run guards against a render context\n"
        "  parse-type    Parse + normalize a type expression\n"
        "  validate      Schema-check a JSON document\n"
        "  resolve       Show macros visible from a template\n"
        "  version       Show current version\n"
    )


def _version() -> str:
    try:
        from importlib.metadata import version

        return version("tplqi")
    except Exception:
        return "unknown"


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] in {"-h", "--help", "help"}:
        sys.stdout.write(_help())
        return 0

    cmd, rest = argv[0], argv[1:]
    if cmd in {"--version", "-V", "version"}:
        print(_version())
        return 0
    if cmd == "check":
        return semantic.main(rest)
    if cmd == "guards":
        return guards.main(rest)
    if cmd == "assert":
        return sandbox_exec_py.main(rest)
    if cmd == "parse-type":
        return types.main(rest)
    if cmd == "validate":
        return schema.main(rest)
    if cmd == "resolve":
        return resolve.main(rest)

    sys.stderr.write(f"Unknown command: {cmd}\n\n")
    sys.stderr.write(_help())
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
