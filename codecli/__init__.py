"""codecli: command-line launcher for the Code editor."""

from __future__ import annotations

from .version import __version__


__all__ = ["main", "parse_args", "__version__"]


def main(argv=None):
    from codecli.cli.dispatch import main as _main

    return _main(argv)


def parse_args(argv):
    from codecli.cli.args import parse_args as _parse_args

    return _parse_args(argv)
