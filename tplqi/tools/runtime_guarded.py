"""Runtime support for synthesized type guards.

Generated guard code (see `tplqi.tools.guards`) refers to this module as
`rt` and calls:

    rt.matches(value, "iterable<string, \\App\\Widget>", types)

Type texts are parsed once and cached. Malformed types match everything;
they were already reported at analysis time.

Guards report through a plain callable `report(severity, code, message)`.
`ViolationCollector` is the default one: it records `GuardViolation`s and
can raise them as a `GuardError`.

Class references need a type provider. Hosts either pass one explicitly
(`types` argument) or install a default via `set_default_provider(...)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from tplqi.tools.types import TypeExpr, TypeSyntaxError, parse_type
from tplqi.tools.types import matches as _matches

Reporter = Callable[[str, str, str], None]


class GuardError(RuntimeError):
    def __init__(self, violations: List["GuardViolation"]) -> None:
        super().__init__("; ".join(v.message for v in violations))
        self.violations = violations


@dataclass(frozen=True)
class GuardViolation:
    severity: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"severity": self.severity, "code": self.code, "message": self.message}


# -------------------------
# Default provider
# -------------------------

_default_provider: Optional[Any] = None


def set_default_provider(provider: Optional[Any]) -> None:
    """Provider used for class references when guards are called with `types=None`."""
    global _default_provider
    _default_provider = provider


@lru_cache(maxsize=512)
def parse_cached(type_text: str) -> Optional[TypeExpr]:
    try:
        return parse_type(type_text)
    except TypeSyntaxError:
        return None


def matches(value: Any, type_text: str, types: Optional[Any] = None) -> bool:
    ty = parse_cached(type_text)
    if ty is None:
        return True
    return _matches(value, ty, types if types is not None else _default_provider)


# -------------------------
# Reporters
# -------------------------

class ViolationCollector:
    def __init__(self) -> None:
        self.violations: List[GuardViolation] = []

    def __call__(self, severity: str, code: str, message: str) -> None:
        self.violations.append(GuardViolation(severity, code, message))

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        if self.violations:
            raise GuardError(list(self.violations))


def logging_reporter(logger: Optional[Any] = None, **bound: Any) -> Reporter:
    """A reporter that logs every violation at error level."""
    if logger is None:
        from tplqi.tools.log import get_logger

        logger = get_logger("tplqi.guards")
    logger = logger.bind(**bound) if bound else logger

    def report(severity: str, code: str, message: str) -> None:
        logger.error(message, code=code, severity=severity)

    return report


def tee_reporter(*reporters: Reporter) -> Reporter:
    def report(severity: str, code: str, message: str) -> None:
        for r in reporters:
            r(severity, code, message)

    return report
