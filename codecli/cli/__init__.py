"""Command-line front end of the launcher."""

from __future__ import annotations

from .args import LaunchArgs, build_help_message, build_parser, parse_args

__all__ = ["LaunchArgs", "build_help_message", "build_parser", "parse_args"]
