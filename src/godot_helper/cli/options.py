"""Arguments shared by every subcommand."""
from __future__ import annotations

import argparse
from pathlib import Path

from godot_helper.config import Settings


def add_project_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project",
        dest="project",
        default=None,
        help="Project directory holding the manifest (default: $GODOT_HELPER_PROJECT_ROOT or .).",
    )
    parser.add_argument(
        "--symbols",
        dest="symbols",
        default=None,
        help="JSON symbol snapshot (default: <project>/symbols.json).",
    )


def add_output_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--out",
        dest="out",
        default=None,
        help="Directory generated fragments are written to (default: <project>/.godot/godot_helper).",
    )


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment and .env settings, overridden by whichever flags were given."""
    overrides: dict[str, Path] = {}
    if getattr(args, "project", None):
        overrides["project_root"] = Path(args.project)
    if getattr(args, "symbols", None):
        overrides["symbols_path"] = Path(args.symbols).resolve()
    if getattr(args, "out", None):
        overrides["output_dir"] = Path(args.out).resolve()
    return Settings(**overrides)


def check_project_root(settings: Settings) -> str | None:
    """Error message when the project directory or its manifest is missing."""
    project_root = settings.resolved_project_root
    if not project_root.is_dir():
        return f"project directory not found: {project_root}"
    manifest_path = project_root / settings.manifest_name
    if not manifest_path.is_file():
        return f"manifest not found: {manifest_path}"
    return None
