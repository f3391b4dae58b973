"""Subcommand dispatcher for framecast.

Usage:
    framecast render    --manifest ... --output ...
    framecast encoders
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="framecast",
        description="Timeline-driven frame compositing and encoding.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own entry point.
    subparsers.add_parser("render", help="Render a YAML export manifest")
    subparsers.add_parser("encoders", help="List supported (codec, container) pairs")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "render":
        from .cli import main as render_main
        render_main(remaining)
    elif parsed.command == "encoders":
        from .cli import encoders_main
        encoders_main(remaining)


if __name__ == "__main__":
    main()
