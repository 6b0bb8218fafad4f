#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from godot_helper.cli.commands.generate import register_generate_command, run_generate_command
from godot_helper.cli.commands.scan import register_scan_command, run_scan_command
from godot_helper.cli.commands.watch import register_watch_command, run_watch_command


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="godot-helper", description="Generate C# helper code for a Godot project.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_generate_command(subparsers)
    register_scan_command(subparsers)
    register_watch_command(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate":
        try:
            return run_generate_command(args)
        except Exception as exc:
            print(f"godot-helper: {exc}", file=sys.stderr)
            return 1
    if args.command == "scan":
        try:
            return run_scan_command(args)
        except Exception as exc:
            print(f"godot-helper: {exc}", file=sys.stderr)
            return 1
    if args.command == "watch":
        try:
            return run_watch_command(args)
        except Exception as exc:
            print(f"godot-helper: {exc}", file=sys.stderr)
            return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
