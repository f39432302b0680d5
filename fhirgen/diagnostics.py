"""Diagnostic records returned alongside best-effort results."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ParseFailure:
    """A document that could not be turned into a definition record."""
    source: str
    message: str
    package: Optional[str] = None

    def __str__(self) -> str:
        prefix = f"{self.package}/" if self.package else ""
        return f"{prefix}{self.source}: {self.message}"


@dataclass(frozen=True)
class ResolutionError:
    """An unresolved reference or an inheritance cycle.

    ``members`` names the definitions involved: the owning type for an
    unresolved reference, every type on the loop for a cycle.
    """
    code: str
    message: str
    definition: str
    path: Optional[str] = None
    target: Optional[str] = None
    members: Tuple[str, ...] = ()
    severity: Severity = Severity.ERROR

    def __str__(self) -> str:
        where = self.path or self.definition
        return f"[{self.severity.value}] {self.code} at {where}: {self.message}"


@dataclass(frozen=True)
class ConversionDiagnostic:
    code: str
    path: str
    message: str
    severity: Severity = Severity.WARNING

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.code} at {self.path}: {self.message}"


@dataclass(frozen=True)
class EmissionDiagnostic:
    language: str
    definition: str
    path: Optional[str]
    message: str
    severity: Severity = Severity.WARNING

    def __str__(self) -> str:
        where = self.path or self.definition
        return f"[{self.severity.value}] {self.language} {where}: {self.message}"


def to_dict(diagnostic: Any) -> Dict[str, Any]:
    """Plain-dict view of any diagnostic record (for JSON reports)."""
    result: Dict[str, Any] = {"type": type(diagnostic).__name__}
    for name in diagnostic.__dataclass_fields__:
        value = getattr(diagnostic, name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        result[name] = value
    return result
