"""CLI entry point for paw."""

from __future__ import annotations

import sys

if sys.version_info < (3, 12):  # noqa: UP036
    print("Error: paw requires Python 3.12 or higher.")
    sys.exit(1)

from paw.cli.commands.root import cli  # noqa: E402


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
