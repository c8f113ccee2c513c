"""Command-line option parsing shared by the falcoprobes commands."""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence

from falcoprobes.logsetup import configure_logging


def new_parser(prog: str | None = None, description: str | None = None) -> argparse.ArgumentParser:
    """Return an argument parser carrying the common logging options."""
    parser = argparse.ArgumentParser(
        prog=prog or os.path.basename(sys.argv[0]),
        description=description,
    )
    logging_group = parser.add_argument_group("logging options")
    logging_group.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Show verbose debug information",
    )
    return parser


def parse_flags(parser: argparse.ArgumentParser, argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse ``argv`` with ``parser`` and apply the logging options.

    Unknown or extra arguments make the parser exit with an error; ``--help``
    exits successfully.
    """
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return args