"""
ANSI color helpers for launcher console output.

NO_COLOR disables styling. FORCE_COLOR enables it even when the target
stream is not a TTY.
"""

from __future__ import annotations

import os
import sys
from typing import Optional, TextIO

__all__ = ["color", "echo", "echo_error"]

_CODES = {
    "reset": "\x1b[0m",
    "bold": "\x1b[1m",
    "red": "\x1b[31m",
    "green": "\x1b[32m",
    "yellow": "\x1b[33m",
    "blue": "\x1b[34m",
    "magenta": "\x1b[35m",
    "cyan": "\x1b[36m",
}


def _enabled(stream: Optional[TextIO]) -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    if os.getenv("FORCE_COLOR") is not None:
        return True
    target = stream if stream is not None else sys.stdout
    try:
        return bool(target.isatty())
    except (AttributeError, ValueError):
        return False


def color(
    text: str,
    *,
    fg: str | None = None,
    bold: bool = False,
    stream: Optional[TextIO] = None,
) -> str:
    if (fg is None and not bold) or not _enabled(stream):
        return text
    prefix = ""
    if bold:
        prefix += _CODES["bold"]
    if fg:
        prefix += _CODES.get(fg.lower(), "")
    return prefix + text + _CODES["reset"]


def echo(text: str = "", *, fg: str | None = None, bold: bool = False) -> None:
    print(color(text, fg=fg, bold=bold, stream=sys.stdout))


def echo_error(text: str) -> None:
    print(color(text, fg="red", stream=sys.stderr), file=sys.stderr)
