"""Repository-level entry point for the codecli launcher.

Mirrors the ``codecli`` console script so the launcher can be started from a
source checkout with ``python main.py [options] [paths...]``.
"""

from __future__ import annotations

import sys
from typing import Sequence


def main(argv: Sequence[str] | None = None) -> int:
    from codecli.cli.dispatch import main as cli_main

    args = list(argv) if argv is not None else sys.argv[1:]
    return cli_main(args)


if __name__ == "__main__":
    raise SystemExit(main())
