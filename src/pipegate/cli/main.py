"""Pipegate CLI entry point — argument parsing and report output.

Provides the ``main()`` entry point: parse arguments, run
:func:`pipegate.engine.validate`, print the report on stdout and exit with
the status derived from the results.  All configurable strings (program
name, description, formats, modes, exit codes) are loaded from the central
config module so nothing is hardcoded.

Usage::

    pipegate [ROOT] [--mode quick|full] [--format text|json]
             [--conventions PATH] [--no-external] [--workers N]
             [--deadline SECONDS]
    pipegate --list-rules
"""

from __future__ import annotations

import argparse
import signal
import sys
from typing import Optional, Sequence

from pipegate import __version__
from pipegate.engine import validate
from pipegate.exceptions import PipegateFatalError
from pipegate.lib import config
from pipegate.lib.cancel import CancelToken
from pipegate.lib.formatter import format_rule_catalog, format_suite_json, format_suite_text


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser from config vocabulary."""
    prog = config.get_str("cli.prog_name")
    fmt_text = config.get_str("formats.text")
    fmt_json = config.get_str("formats.json")
    mode_full = config.get_str("modes.full")
    mode_quick = config.get_str("modes.quick")

    parser = argparse.ArgumentParser(prog=prog, description=config.get_str("cli.description"))
    parser.add_argument(
        "root",
        nargs="?",
        default=".",
        help="Repository root or workflow directory (default: current directory)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode_full, mode_quick],
        default=mode_full,
        help=f"'{mode_quick}' runs only the syntax and reference-pinning gates",
    )
    parser.add_argument(
        "--format",
        choices=[fmt_text, fmt_json],
        default=config.get_str("formats.default"),
        help="Report format",
    )
    parser.add_argument(
        "--conventions",
        metavar="PATH",
        help=f"Conventions document (default: <root>/{config.get_str('filenames.conventions')})",
    )
    parser.add_argument(
        "--no-external",
        action="store_true",
        help="Do not probe or run external analyzers",
    )
    parser.add_argument("--workers", type=int, metavar="N", help="Worker pool size")
    parser.add_argument(
        "--deadline",
        type=float,
        metavar="SECONDS",
        help="Stop starting new documents after this many seconds",
    )
    parser.add_argument(
        "--list-rules",
        action="store_true",
        help="List built-in rule ids (valid suppression targets) and exit",
    )
    parser.add_argument("--version", action="version", version=f"{prog} {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse arguments, validate and exit with the suite's exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_rules:
        sys.stdout.write(format_rule_catalog(stream=sys.stdout) + "\n")
        sys.exit(config.get_int("exit_codes.ok"))

    token = CancelToken(args.deadline)
    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        suite = validate(
            args.root,
            mode=args.mode,
            conventions_path=args.conventions,
            use_external_tools=not args.no_external,
            workers=args.workers,
            cancel=token,
        )
    except PipegateFatalError as exc:
        sys.stderr.write(f"{config.get_str('messages.fatal_prefix')}{exc}\n")
        sys.exit(config.get_int("exit_codes.fatal"))
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.format == config.get_str("formats.json"):
        sys.stdout.write(format_suite_json(suite) + "\n")
    else:
        sys.stdout.write(format_suite_text(suite, stream=sys.stdout) + "\n")
    sys.exit(suite.exit_code)


if __name__ == "__main__":
    main()
