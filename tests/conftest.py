"""Ensure the project root is importable and isolate launcher state per test."""

from __future__ import annotations

import shutil
import sys
import tempfile
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from codecli.config import get_runtime_config  # noqa: E402


@pytest.fixture(autouse=True)
def _launcher_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep tests away from the real home, config files and colour codes."""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("CODECLI_CONFIG_HOME", str(tmp_path / "config-home"))
    monkeypatch.setenv("NO_COLOR", "1")
    for key in (
        "CODECLI_CONFIG",
        "CODECLI_EXECUTABLE",
        "CODECLI_BASE_PORT",
        "CODECLI_EXTENSIONS_DIR",
        "VSCODE_APPDATA",
        "VSCODE_DEV",
        "FORCE_COLOR",
        "XDG_CONFIG_HOME",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_runtime_config.cache_clear()
    yield
    get_runtime_config.cache_clear()


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    """A temp dir with a short path; Unix socket paths are length-limited."""

    path = Path(tempfile.mkdtemp(prefix="cc"))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
