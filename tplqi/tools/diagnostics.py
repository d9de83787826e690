"""Diagnostics for tplqi.

Every finding produced by an inspection is a `Diagnostic`:
- severity: "error" | "warning" | "deprecation"
- code: taxonomy name (SyntaxError, UnknownType, UnknownMacro, ...)
- message: human readable text (stable wording, tooling pattern-matches it)
- location: template path + line
- pointer: JSON Pointer of the offending node inside the template JSON

Diagnostics are append-only and never influence control flow: a sink just
records (or forwards) what it is given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

ERROR = "error"
WARNING = "warning"
DEPRECATION = "deprecation"

SEVERITIES = (ERROR, WARNING, DEPRECATION)


@dataclass(frozen=True)
class Location:
    path: str
    line: int = 0

    def __str__(self) -> str:
        return f"{self.path}:{self.line}"


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    code: str
    message: str
    location: Location
    pointer: str = ""

    def format(self) -> str:
        return f"{self.message} (at {self.location})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "path": self.location.path,
            "line": self.location.line,
            "pointer": self.pointer,
        }


class DiagnosticSink:
    """Receives diagnostics. Subclasses decide what "receiving" means."""

    def report(self, diag: Diagnostic) -> None:
        raise NotImplementedError


@dataclass
class ListSink(DiagnosticSink):
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def report(self, diag: Diagnostic) -> None:
        self.diagnostics.append(diag)

    def by_code(self, code: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.code == code]

    def messages(self) -> List[str]:
        return [d.format() for d in self.diagnostics]

    @property
    def has_errors(self) -> bool:
        return any(d.severity == ERROR for d in self.diagnostics)

    @property
    def has_warnings(self) -> bool:
        return any(d.severity != ERROR for d in self.diagnostics)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.diagnostics]


class LoggerSink(DiagnosticSink):
    """Forward diagnostics to a structlog logger."""

    def __init__(self, logger: Optional[Any] = None) -> None:
        if logger is None:
            from tplqi.tools.log import get_logger

            logger = get_logger("tplqi.diagnostics")
        self.logger = logger

    def report(self, diag: Diagnostic) -> None:
        fields = {
            "code": diag.code,
            "path": diag.location.path,
            "line": diag.location.line,
        }
        if diag.severity == ERROR:
            self.logger.error(diag.format(), **fields)
        elif diag.severity == DEPRECATION:
            self.logger.warning(diag.format(), deprecated=True, **fields)
        else:
            self.logger.warning(diag.format(), **fields)


class TeeSink(DiagnosticSink):
    def __init__(self, sinks: Iterable[DiagnosticSink]) -> None:
        self.sinks = list(sinks)

    def report(self, diag: Diagnostic) -> None:
        for sink in self.sinks:
            sink.report(diag)


def exit_code(diags: Iterable[Diagnostic], *, strict: bool = False) -> int:
    """CLI exit code: 2 on errors (or warnings with strict), 1 on warnings, else 0."""
    diags = list(diags)
    has_errors = any(d.severity == ERROR for d in diags)
    has_warnings = any(d.severity != ERROR for d in diags)
    if has_errors or (strict and has_warnings):
        return 2
    if has_warnings:
        return 1
    return 0
