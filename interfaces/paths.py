"""Shared path utilities for launcher data, extension and scratch locations."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

__all__ = [
    "resolve_extensions_dir",
    "resolve_home_dir",
    "resolve_install_source_path",
    "resolve_temp_dir",
    "resolve_user_data_dir",
]


def _expand(path: str) -> Path:
    return Path(path).expanduser()


def resolve_home_dir() -> Path:
    return Path.home()


def resolve_temp_dir() -> Path:
    return Path(tempfile.gettempdir())


def resolve_user_data_dir(name_long: str, override: Optional[str] = None) -> Path:
    """Return the application's user data directory.

    Precedence:
    1. ``override`` (the ``--user-data-dir`` flag)
    2. ``VSCODE_APPDATA`` environment variable joined with ``name_long``
    3. The platform application-data folder joined with ``name_long``
    """

    if override:
        return _expand(override).resolve()

    appdata = os.getenv("VSCODE_APPDATA")
    if appdata:
        return _expand(appdata) / name_long

    home = resolve_home_dir()
    if sys.platform == "win32":
        base = Path(os.getenv("APPDATA", home / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = home / "Library" / "Application Support"
    else:
        base = Path(os.getenv("XDG_CONFIG_HOME", home / ".config"))
    return base / name_long


def resolve_extensions_dir(data_folder_name: str, override: Optional[str] = None) -> Path:
    """Return the directory holding installed extensions.

    Precedence:
    1. ``override`` (the ``--extensions-dir`` flag)
    2. ``CODECLI_EXTENSIONS_DIR`` environment variable
    3. ``~/<data_folder_name>/extensions``
    """

    if override:
        return _expand(override).resolve()
    env_dir = os.getenv("CODECLI_EXTENSIONS_DIR")
    if env_dir:
        return _expand(env_dir)
    return resolve_home_dir() / data_folder_name / "extensions"


def resolve_install_source_path(user_data_dir: Path) -> Path:
    return user_data_dir / "installSource"
