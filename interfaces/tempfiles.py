"""Scratch-file helpers: random names, stdin capture and wait markers."""

from __future__ import annotations

import random
import shutil
import string
from pathlib import Path
from typing import BinaryIO, Optional

from .paths import resolve_home_dir, resolve_temp_dir

__all__ = [
    "capture_stdin",
    "create_stdin_file",
    "create_wait_marker",
    "profile_prefix",
    "random_letters",
    "stdin_capture_path",
]


def random_letters(length: int) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(length))


def stdin_capture_path(directory: Optional[Path] = None) -> Path:
    base = directory if directory is not None else resolve_temp_dir()
    return base / f"stdin-{random_letters(6)}.txt"


def create_stdin_file(directory: Optional[Path] = None) -> Path:
    """Create an empty, previously non-existent ``stdin-xxxxxx.txt`` file."""

    path = stdin_capture_path(directory)
    path.open("xb").close()
    return path


def capture_stdin(source: BinaryIO, directory: Optional[Path] = None) -> Path:
    """Copy ``source`` until EOF into a fresh ``stdin-xxxxxx.txt`` file.

    Raises ``OSError`` when the file cannot be created or written; the
    partially written file is removed in that case.
    """

    path = create_stdin_file(directory)
    try:
        with path.open("ab") as handle:
            shutil.copyfileobj(source, handle)
    except OSError:
        path.unlink(missing_ok=True)
        raise
    return path


def create_wait_marker(directory: Optional[Path] = None) -> Path:
    """Create an empty marker file whose deletion signals the end of a wait."""

    base = directory if directory is not None else resolve_temp_dir()
    path = base / random_letters(10)
    path.write_bytes(b"")
    return path


def profile_prefix(directory: Optional[Path] = None) -> Path:
    """Return ``<home>/<4 hex chars>``, the stem shared by profile outputs."""

    base = directory if directory is not None else resolve_home_dir()
    return base / f"{random.getrandbits(16):04x}"
