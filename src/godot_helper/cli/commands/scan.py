"""Print what the parsers and the scanner see, as JSON."""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from godot_helper.cli.options import add_project_arguments, check_project_root, settings_from_args
from godot_helper.pipeline import GeneratorPipeline


def register_scan_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `scan` subcommand and its CLI arguments."""
    parser = subparsers.add_parser(
        "scan",
        help="Dump parsed manifest entries, scene connections and scanned classes.",
    )
    add_project_arguments(parser)


def build_scan_document(pipeline: GeneratorPipeline) -> dict[str, object]:
    return {
        "manifest": [asdict(entry) for _key, entry in pipeline.entries.items()],
        "scenes": [
            {"path": asset.path, "connections": [dict(tag.properties) | {"method": tag.name} for tag in asset.connections]}
            for _key, asset in pipeline.scene_assets.items()
        ],
        "classes": [asdict(scanned) for scanned in pipeline.scanned()],
    }


def run_scan_command(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    problem = check_project_root(settings)
    if problem is not None:
        print(f"godot-helper: {problem}", file=sys.stderr)
        return 1

    pipeline = GeneratorPipeline.from_settings(settings)
    pipeline.load_project(settings.resolved_symbols_path)
    print(json.dumps(build_scan_document(pipeline), indent=2, default=str))
    return 0
