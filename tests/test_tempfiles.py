from __future__ import annotations

import io
import re
from pathlib import Path

import pytest

from interfaces import tempfiles


class BrokenReader(io.RawIOBase):
    def __init__(self) -> None:
        self.calls = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self.calls += 1
        if self.calls == 1:
            buffer[:4] = b"part"
            return 4
        raise OSError("pipe closed")


def test_capture_stdin_copies_bytes(tmp_path: Path) -> None:
    path = tempfiles.capture_stdin(io.BytesIO(b"hello\x00world"), tmp_path)
    assert re.fullmatch(r"stdin-[a-z]{6}\.txt", path.name)
    assert path.read_bytes() == b"hello\x00world"


def test_capture_stdin_removes_partial_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        tempfiles.capture_stdin(BrokenReader(), tmp_path)
    assert list(tmp_path.glob("stdin-*")) == []


def test_capture_stdin_leaves_existing_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    existing = tmp_path / "stdin-aaaaaa.txt"
    existing.write_text("keep", encoding="utf-8")
    monkeypatch.setattr(tempfiles, "random_letters", lambda length: "a" * length)
    with pytest.raises(FileExistsError):
        tempfiles.capture_stdin(io.BytesIO(b"new"), tmp_path)
    assert existing.read_text(encoding="utf-8") == "keep"


def test_wait_marker_is_empty(tmp_path: Path) -> None:
    marker = tempfiles.create_wait_marker(tmp_path)
    assert re.fullmatch(r"[a-z]{10}", marker.name)
    assert marker.read_bytes() == b""


def test_profile_prefix_defaults_to_home(tmp_path: Path) -> None:
    prefix = tempfiles.profile_prefix()
    assert prefix.parent == tmp_path / "home"
    assert re.fullmatch(r"[0-9a-f]{4}", prefix.name)
