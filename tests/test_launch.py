from __future__ import annotations

import asyncio
import io
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from codecli import launch as launch_module
from codecli.cli import parse_args
from codecli.config import LauncherConfig, ProductConfig, WatchConfig
from codecli.environment import CLI_LAUNCH_ENV, ChildEnvironment
from codecli.errors import LaunchError, PortNotFoundError
from codecli.launch import (
    PORTS_NOT_FOUND_MESSAGE,
    STREAMS_IGNORE,
    STREAMS_PIPE,
    is_reading_from_stdin,
    launch,
    resolve_executable,
)


class FakeProcess:
    def __init__(self) -> None:
        self._exited = asyncio.Event()
        self.stdout = None
        self.stderr = None
        self.returncode: Optional[int] = None

    async def wait(self) -> int:
        await self._exited.wait()
        return 0

    def exit(self) -> None:
        self.returncode = 0
        self._exited.set()


class TTYStream(io.BytesIO):
    def isatty(self) -> bool:
        return True


class Recorder:
    def __init__(self, on_spawn: Any = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.process: Optional[FakeProcess] = None
        self._on_spawn = on_spawn

    async def __call__(self, executable: str, args: Sequence[str], env: ChildEnvironment, streams: str) -> FakeProcess:
        self.process = FakeProcess()
        self.calls.append({"executable": executable, "args": list(args), "env": env, "streams": streams})
        if self._on_spawn is not None:
            self._on_spawn(self.process, list(args))
        else:
            self.process.exit()
        return self.process


def _config() -> LauncherConfig:
    return LauncherConfig(
        product=ProductConfig(executable="/opt/code/code"),
        watch=WatchConfig(poll_interval=0.01),
    )


def _marker_from(args: List[str]) -> Path:
    return Path(args[args.index("--waitMarkerFilePath") + 1])


def test_plain_launch_spawns_detached_without_streams(tmp_path: Path) -> None:
    spawner = Recorder()
    asyncio.run(
        launch(parse_args(["file.txt"]), _config(), stdin=TTYStream(), spawner=spawner, temp_dir=tmp_path)
    )
    assert len(spawner.calls) == 1
    call = spawner.calls[0]
    assert call["executable"] == "/opt/code/code"
    assert call["args"] == ["file.txt"]
    assert call["streams"] == STREAMS_IGNORE
    assert call["env"][CLI_LAUNCH_ENV] == "1"


def test_stdin_is_captured_into_temp_file(tmp_path: Path) -> None:
    payload = b"line one\nline two\x00binary\n"
    captured: Dict[str, bytes] = {}

    def _on_spawn(process: FakeProcess, args: List[str]) -> None:
        stdin_path = Path(args[0])
        captured["content"] = stdin_path.read_bytes()
        captured["name"] = stdin_path.name.encode()
        process.exit()

    spawner = Recorder(_on_spawn)
    asyncio.run(
        launch(parse_args([]), _config(), stdin=io.BytesIO(payload), spawner=spawner, temp_dir=tmp_path)
    )

    args = spawner.calls[0]["args"]
    assert captured["content"] == payload
    assert captured["name"].startswith(b"stdin-") and captured["name"].endswith(b".txt")
    assert args[1:3] == ["--wait", "--skip-add-to-recently-opened"]
    assert "--waitMarkerFilePath" in args
    # cleaned up once the wait resolved
    assert not Path(args[0]).exists()
    assert not _marker_from(args).exists()


def test_stdin_ignored_when_paths_given(tmp_path: Path) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    spawner = Recorder()
    asyncio.run(
        launch(parse_args(["a.txt"]), _config(), stdin=io.BytesIO(b"data"), spawner=spawner, temp_dir=scratch)
    )
    assert spawner.calls[0]["args"] == ["a.txt"]
    assert list(scratch.iterdir()) == []


def test_stdin_capture_failure_degrades(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    spawner = Recorder()
    missing = tmp_path / "does-not-exist"
    asyncio.run(
        launch(parse_args(["--verbose"]), _config(), stdin=io.BytesIO(b"x"), spawner=spawner, temp_dir=missing)
    )
    args = spawner.calls[0]["args"]
    assert args == ["--verbose"]
    assert "Failed to create file to read via stdin" in capsys.readouterr().err
    assert spawner.calls[0]["streams"] == STREAMS_PIPE


def test_wait_resolves_when_marker_deleted(tmp_path: Path) -> None:
    def _on_spawn(process: FakeProcess, args: List[str]) -> None:
        marker = _marker_from(args)
        assert marker.exists() and marker.read_bytes() == b""
        asyncio.get_running_loop().call_later(0.05, marker.unlink)

    spawner = Recorder(_on_spawn)

    async def _run() -> None:
        await asyncio.wait_for(
            launch(parse_args(["--wait", "f.txt"]), _config(), stdin=TTYStream(), spawner=spawner, temp_dir=tmp_path),
            timeout=5,
        )

    asyncio.run(_run())
    assert spawner.process is not None and spawner.process.returncode is None


def test_wait_resolves_when_child_exits(tmp_path: Path) -> None:
    def _on_spawn(process: FakeProcess, args: List[str]) -> None:
        asyncio.get_running_loop().call_later(0.05, process.exit)

    spawner = Recorder(_on_spawn)

    async def _run() -> None:
        await asyncio.wait_for(
            launch(parse_args(["--wait", "f.txt"]), _config(), stdin=TTYStream(), spawner=spawner, temp_dir=tmp_path),
            timeout=5,
        )

    asyncio.run(_run())
    # the marker is removed by the launcher when the child never deleted it
    assert not _marker_from(spawner.calls[0]["args"]).exists()


def test_prof_startup_aborts_without_spawn_when_ports_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def _no_ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        raise PortNotFoundError(start, attempts)

    monkeypatch.setattr("codecli.profiling.find_free_ports", _no_ports)
    spawner = Recorder()
    result = asyncio.run(
        launch(parse_args(["--prof-startup"]), _config(), stdin=TTYStream(), spawner=spawner, home_dir=tmp_path)
    )
    assert result is None
    assert spawner.calls == []
    assert PORTS_NOT_FOUND_MESSAGE in capsys.readouterr().err


def test_inspect_all_aborts_without_spawn_when_ports_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def _no_ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        raise PortNotFoundError(start, attempts)

    monkeypatch.setattr("codecli.inspect_all.find_free_ports", _no_ports)
    spawner = Recorder()
    result = asyncio.run(
        launch(parse_args(["--inspect-all"]), _config(), stdin=TTYStream(), spawner=spawner, temp_dir=tmp_path)
    )
    assert result is None
    assert spawner.calls == []
    assert PORTS_NOT_FOUND_MESSAGE in capsys.readouterr().err


def test_prof_startup_appends_profiling_flags(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        return list(range(start, start + count))

    collected: List[Any] = []

    async def _collect(plan: Any, process: Any, **kwargs: Any) -> None:
        collected.append((plan, kwargs["dev_build"]))

    monkeypatch.setattr("codecli.profiling.find_free_ports", _ports)
    monkeypatch.setattr(launch_module, "collect_startup_profiles", _collect)
    spawner = Recorder()
    asyncio.run(
        launch(
            parse_args(["--prof-startup"]),
            _config(),
            stdin=TTYStream(),
            environ={},
            spawner=spawner,
            home_dir=tmp_path,
        )
    )
    args = spawner.calls[0]["args"]
    plan = collected[0][0]
    assert args[1:4] == ["--inspect-brk=9222", "--remote-debugging-port=9223", "--inspect-brk-extensions=9224"]
    assert args[4:6] == ["--prof-startup-prefix", str(plan.prefix)]
    assert args[-1] == "--no-cached-data"
    assert plan.prefix.read_text(encoding="utf-8") == "|".join(args[-6:])
    assert collected[0][1] is False


def test_resolve_executable_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(launch_module.shutil, "which", lambda name: None)
    config = LauncherConfig(product=ProductConfig(executable=None, application_name="code-oss"))
    with pytest.raises(LaunchError):
        resolve_executable(config)


def test_resolve_executable_from_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(launch_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    config = LauncherConfig(product=ProductConfig(executable=None, application_name="code-oss"))
    assert resolve_executable(config) == "/usr/bin/code-oss"


def test_is_reading_from_stdin() -> None:
    assert is_reading_from_stdin(parse_args([]), io.BytesIO(b""))
    assert not is_reading_from_stdin(parse_args([]), TTYStream())
    assert not is_reading_from_stdin(parse_args(["x"]), io.BytesIO(b""))
    assert not is_reading_from_stdin(parse_args([]), None)
    assert not is_reading_from_stdin(parse_args([]), object())


def _never_exits(process: FakeProcess, args: List[str]) -> None:
    asyncio.get_running_loop().call_later(0.05, _marker_from(args).unlink)


def test_wait_verbose_returns_on_marker_deletion(tmp_path: Path) -> None:
    spawner = Recorder(_never_exits)

    async def _run() -> None:
        await asyncio.wait_for(
            launch(
                parse_args(["--wait", "--verbose", "f.txt"]),
                _config(),
                stdin=TTYStream(),
                spawner=spawner,
                temp_dir=tmp_path,
            ),
            timeout=2,
        )

    asyncio.run(_run())
    assert spawner.calls[0]["streams"] == STREAMS_PIPE
    assert spawner.process is not None and spawner.process.returncode is None


def test_wait_inspect_all_returns_on_marker_deletion(short_tmp: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        return list(range(start, start + count))

    monkeypatch.setattr("codecli.inspect_all.find_free_ports", _ports)
    spawner = Recorder(_never_exits)

    async def _run() -> None:
        await asyncio.wait_for(
            launch(
                parse_args(["--wait", "--inspect-all", "f.txt"]),
                _config(),
                stdin=TTYStream(),
                spawner=spawner,
                temp_dir=short_tmp,
            ),
            timeout=2,
        )

    asyncio.run(_run())
    args = spawner.calls[0]["args"]
    ipc_path = Path(next(arg for arg in args if arg.startswith("--inspect-all-ipc=")).split("=", 1)[1])
    assert not ipc_path.exists()
    assert list(short_tmp.iterdir()) == []


@pytest.mark.skipif(os.name == "nt", reason="pipe streaming uses the POSIX event loop")
def test_piped_stdin_is_streamed_while_child_runs(tmp_path: Path) -> None:
    read_fd, write_fd = os.pipe()
    source = os.fdopen(read_fd, "rb", buffering=0)
    seen: Dict[str, bytes] = {}
    editors: List["asyncio.Task[None]"] = []

    async def _editor(args: List[str]) -> None:
        stdin_path = Path(args[0])
        seen["at_spawn"] = stdin_path.read_bytes()
        os.write(write_fd, b"first\n")
        await asyncio.sleep(0.02)
        os.write(write_fd, b"second\n")
        for _ in range(200):
            if stdin_path.read_bytes() == b"first\nsecond\n":
                break
            await asyncio.sleep(0.01)
        seen["streamed"] = stdin_path.read_bytes()
        # the producer never closes its end, like `tail -f`
        _marker_from(args).unlink()

    def _on_spawn(process: FakeProcess, args: List[str]) -> None:
        editors.append(asyncio.get_running_loop().create_task(_editor(args)))

    spawner = Recorder(_on_spawn)

    async def _run() -> None:
        await asyncio.wait_for(
            launch(parse_args([]), _config(), stdin=source, spawner=spawner, temp_dir=tmp_path),
            timeout=5,
        )

    try:
        asyncio.run(_run())
    finally:
        os.close(write_fd)
        source.close()

    args = spawner.calls[0]["args"]
    assert args[1:3] == ["--wait", "--skip-add-to-recently-opened"]
    assert seen == {"at_spawn": b"", "streamed": b"first\nsecond\n"}
    assert not Path(args[0]).exists()


def test_port_abort_removes_scratch_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _no_ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        raise PortNotFoundError(start, attempts)

    monkeypatch.setattr("codecli.profiling.find_free_ports", _no_ports)
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    for argv, stdin in ((["--wait", "--prof-startup", "f.txt"], TTYStream()), (["--prof-startup"], io.BytesIO(b"piped"))):
        spawner = Recorder()
        result = asyncio.run(
            launch(parse_args(argv), _config(), stdin=stdin, spawner=spawner, temp_dir=scratch, home_dir=tmp_path)
        )
        assert result is None
        assert spawner.calls == []
        assert list(scratch.iterdir()) == []


def test_spawn_failure_removes_scratch_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _ports(count: int, start: int, attempts: int = 10, timeout: float = 6.0, **kwargs: Any) -> List[int]:
        return list(range(start, start + count))

    async def _failing_spawner(executable: str, args: Sequence[str], env: ChildEnvironment, streams: str) -> FakeProcess:
        raise LaunchError("cannot start")

    monkeypatch.setattr("codecli.profiling.find_free_ports", _ports)
    scratch = tmp_path / "scratch"
    profiles = tmp_path / "profiles"
    scratch.mkdir()
    profiles.mkdir()

    with pytest.raises(LaunchError):
        asyncio.run(
            launch(
                parse_args(["--prof-startup"]),
                _config(),
                stdin=io.BytesIO(b"piped"),
                spawner=_failing_spawner,
                temp_dir=scratch,
                home_dir=profiles,
            )
        )
    assert list(scratch.iterdir()) == []
    assert list(profiles.iterdir()) == []
