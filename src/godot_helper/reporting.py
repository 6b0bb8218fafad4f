"""Console output shared by the CLI commands and watch mode."""
from __future__ import annotations

import sys
from typing import Iterable

from .diagnostics import Diagnostic


LOG_TAG = "[godot_helper]"


def print_diagnostics(diagnostics: Iterable[Diagnostic]) -> None:
    """Errors and warnings go to stderr, info to stdout."""
    for diagnostic in diagnostics:
        stream = sys.stdout if diagnostic.severity == "info" else sys.stderr
        print(diagnostic.format(), file=stream, flush=True)


def print_write_summary(fragment_count: int, written: list[str], removed: list[str]) -> None:
    print(
        f"{LOG_TAG} {fragment_count} fragment(s): {len(written)} written, {len(removed)} removed",
        flush=True,
    )
    for hint_name in written:
        print(f"  + {hint_name}", flush=True)
    for file_name in removed:
        print(f"  - {file_name}", flush=True)
