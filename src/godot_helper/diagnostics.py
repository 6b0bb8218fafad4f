"""Structured diagnostics reported by parsers, the scanner and the emitter."""
from __future__ import annotations

from dataclasses import dataclass


# ============================================================
# Diagnostic ids
# ============================================================

DUPLICATE_ACCESSOR_PATH = "GH0001"
SIGNAL_NAME_SUFFIX = "GH0002"
AMBIGUOUS_SINGLETON = "GH0003"
UNREGISTERED_SINGLETON = "GH0004"
DUPLICATE_HINT_NAME = "GH0005"
UNEXPECTED_FAILURE = "GH9999"

SEVERITY_ORDER = {"error": 0, "warning": 1, "info": 2}


@dataclass(frozen=True)
class SourceLocation:
    """A position inside a source file (1-based line/column, 0 = unknown)."""
    path: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if not self.path:
            return "<unknown>"
        if self.line:
            return f"{self.path}:{self.line}:{self.column}"
        return self.path


@dataclass(frozen=True)
class Diagnostic:
    diagnostic_id: str
    severity: str
    message: str
    location: SourceLocation = SourceLocation()

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def format(self) -> str:
        """Render in the usual `path:line:col: severity ID: message` shape."""
        return f"{self.location}: {self.severity} {self.diagnostic_id}: {self.message}"


def sort_diagnostics(diagnostics: list[Diagnostic] | tuple[Diagnostic, ...]) -> tuple[Diagnostic, ...]:
    """Order diagnostics by location, then severity, then id."""
    return tuple(
        sorted(
            set(diagnostics),
            key=lambda diagnostic: (
                diagnostic.location.path,
                diagnostic.location.line,
                diagnostic.location.column,
                SEVERITY_ORDER.get(diagnostic.severity, 3),
                diagnostic.diagnostic_id,
                diagnostic.message,
            ),
        )
    )


# ============================================================
# Exceptions
# ============================================================

class GeneratorError(RuntimeError):
    """Base class for errors raised by the generator."""


class DeclarationError(GeneratorError):
    """A marked declaration that cannot be turned into generated code."""

    def __init__(self, diagnostic: Diagnostic) -> None:
        super().__init__(diagnostic.format())
        self.diagnostic = diagnostic


class SymbolGraphError(GeneratorError):
    """The compiled symbol snapshot is malformed or inconsistent."""


class GenerationCancelled(GeneratorError):
    """Raised at an item boundary when the running pass has been superseded."""
