"""Run one generation pass and write (or check) the output directory."""
from __future__ import annotations

import argparse
import sys

from godot_helper.cli.options import add_output_argument, add_project_arguments, check_project_root, settings_from_args
from godot_helper.emitter import outdated_fragments, stale_fragment_paths, write_fragments
from godot_helper.pipeline import GeneratorPipeline
from godot_helper.reporting import LOG_TAG, print_diagnostics, print_write_summary


def register_generate_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `generate` subcommand and its CLI arguments."""
    parser = subparsers.add_parser(
        "generate",
        help="Generate helper fragments once.",
    )
    add_project_arguments(parser)
    add_output_argument(parser)
    parser.add_argument(
        "--check",
        action="store_true",
        help="Write nothing; exit 1 when the output directory is out of date.",
    )


def run_generate_command(args: argparse.Namespace) -> int:
    """Run a pass based on parsed CLI args."""
    settings = settings_from_args(args)
    problem = check_project_root(settings)
    if problem is not None:
        print(f"godot-helper: {problem}", file=sys.stderr)
        return 1

    pipeline = GeneratorPipeline.from_settings(settings)
    pipeline.load_project(settings.resolved_symbols_path)
    result = pipeline.run()
    print_diagnostics(result.diagnostics)

    output_dir = settings.resolved_output_dir
    if args.check:
        outdated = outdated_fragments(result.fragments, output_dir)
        stale = stale_fragment_paths(result.fragments, output_dir)
        if outdated or stale:
            print(f"godot-helper: {output_dir} is out of date", file=sys.stderr)
            for hint_name in outdated:
                print(f"  * {hint_name}", file=sys.stderr)
            for stale_path in stale:
                print(f"  - {stale_path.name}", file=sys.stderr)
            return 1
        print(f"{LOG_TAG} {len(result.fragments)} fragment(s) up to date", flush=True)
        return 1 if result.has_errors else 0

    written, removed = write_fragments(result.fragments, output_dir)
    print_write_summary(len(result.fragments), written, removed)
    return 1 if result.has_errors else 0
