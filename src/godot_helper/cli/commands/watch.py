"""Keep the output directory in sync with the project while files change."""
from __future__ import annotations

import argparse
import sys

from godot_helper.cli.options import add_output_argument, add_project_arguments, check_project_root, settings_from_args
from godot_helper.watch import watch_project


def register_watch_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `watch` subcommand and its CLI arguments."""
    parser = subparsers.add_parser(
        "watch",
        help="Generate, then regenerate whenever the manifest, a scene or the symbol snapshot changes.",
    )
    add_project_arguments(parser)
    add_output_argument(parser)
    parser.add_argument(
        "--debounce-ms",
        dest="debounce_ms",
        type=int,
        default=None,
        help="Quiet period before a batch of changes is processed (default: $GODOT_HELPER_WATCH_DEBOUNCE_MS or 300).",
    )


def run_watch_command(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    if args.debounce_ms is not None:
        settings = settings.model_copy(update={"watch_debounce_ms": args.debounce_ms})
    problem = check_project_root(settings)
    if problem is not None:
        print(f"godot-helper: {problem}", file=sys.stderr)
        return 1
    return watch_project(settings)
