"""Spawning the application as a detached process.

``launch`` assembles the child's argv and environment for the requested
developer options, spawns the executable, then runs the post-spawn tasks
(output relay, stdin streaming, startup profiling, IPC teardown) alongside
the optional ``--wait``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import shutil
import stat
import subprocess
import sys
from pathlib import Path
from typing import Any, Awaitable, BinaryIO, Callable, Dict, List, Optional, Sequence

from interfaces.tempfiles import capture_stdin, create_stdin_file, create_wait_marker
from interfaces.watch import wait_for_first, when_deleted

from .cli.args import LaunchArgs
from .colors import echo, echo_error
from .config import LauncherConfig
from .environment import ChildEnvironment, build_child_environment, is_dev_build
from .errors import LaunchError, PortNotFoundError
from .inspect_all import start_inspect_all
from .profiling import collect_startup_profiles, prepare_startup_profile

__all__ = [
    "PORTS_NOT_FOUND_MESSAGE",
    "PostSpawnTask",
    "STREAMS_IGNORE",
    "STREAMS_INHERIT",
    "STREAMS_PIPE",
    "Spawner",
    "is_reading_from_stdin",
    "launch",
    "relay_output",
    "resolve_executable",
    "spawn_detached",
    "stream_stdin",
]

_LOGGER = logging.getLogger("codecli.launch")

PORTS_NOT_FOUND_MESSAGE = "Failed to find free ports for profiler to connect to do."

STREAMS_IGNORE = "ignore"
STREAMS_PIPE = "pipe"
STREAMS_INHERIT = "inherit"

PostSpawnTask = Callable[[Any], Awaitable[Any]]
Spawner = Callable[[str, Sequence[str], ChildEnvironment, str], Awaitable[Any]]


def resolve_executable(config: LauncherConfig) -> str:
    """Return the application executable to spawn.

    ``CODECLI_EXECUTABLE`` is folded into ``config.product.executable`` by the
    configuration loader; otherwise the application name is looked up on PATH.
    """

    product = config.product
    if product.executable:
        return product.executable
    found = shutil.which(product.application_name)
    if found:
        return found
    raise LaunchError(
        f"Cannot find the {product.name_long} executable; set CODECLI_EXECUTABLE "
        f"or put '{product.application_name}' on PATH."
    )


def _detach_kwargs() -> Dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


async def spawn_detached(
    executable: str,
    args: Sequence[str],
    env: ChildEnvironment,
    streams: str,
) -> asyncio.subprocess.Process:
    # the launcher owns stdin
    kwargs = _detach_kwargs()
    kwargs["stdin"] = subprocess.DEVNULL
    if streams == STREAMS_IGNORE:
        kwargs.update(stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    elif streams == STREAMS_PIPE:
        kwargs.update(stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    _LOGGER.debug("Spawning %s %s", executable, " ".join(args))
    try:
        return await asyncio.create_subprocess_exec(
            executable, *args, env=env.as_dict(), **kwargs
        )
    except OSError as exc:
        raise LaunchError(f"Failed to start {executable}: {exc}") from exc


async def relay_output(process: Any) -> None:
    """Post-spawn task: echo the child's stdout/stderr until it exits."""

    async def _pump(stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                return
            echo(chunk.decode("utf-8", errors="replace").strip())

    await asyncio.gather(_pump(process.stdout), _pump(process.stderr))
    await process.wait()

def is_reading_from_stdin(args: LaunchArgs, stdin: Optional[Any]) -> bool:
    if args.paths or stdin is None:
        return False
    try:
        return not stdin.isatty()
    except (AttributeError, OSError, ValueError):
        return False


def _default_stdin() -> Optional[BinaryIO]:
    if sys.stdin is None:
        return None
    return getattr(sys.stdin, "buffer", sys.stdin)


def _is_pipe(stdin: Any) -> bool:
    if os.name == "nt":
        return False
    try:
        mode = os.fstat(stdin.fileno()).st_mode
    except (AttributeError, OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode)


async def stream_stdin(source: Any, target: Path) -> None:
    """Append everything read from the pipe ``source`` to ``target`` until EOF."""

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), source
    )
    try:
        with target.open("ab") as handle:
            while True:
                chunk = await reader.read(65536)
                if not chunk:
                    break
                handle.write(chunk)
                handle.flush()
    finally:
        transport.close()
    _LOGGER.debug("stdin fully copied to %s", target)


def _stdin_follower(source: Any, target: Path) -> PostSpawnTask:
    async def _follow(process: Any) -> None:
        await wait_for_first(stream_stdin(source, target), process.wait())

    return _follow


def _discard(*paths: Optional[Path]) -> None:
    for path in paths:
        if path is not None:
            path.unlink(missing_ok=True)


async def _stop_followers(followers: List["asyncio.Future[Any]"]) -> None:
    for follower in followers:
        follower.cancel()
    results = await asyncio.gather(*followers, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            _LOGGER.warning("Post-spawn task failed: %s", result)


async def launch(
    args: LaunchArgs,
    config: LauncherConfig,
    *,
    stdin: Optional[Any] = None,
    environ: Optional[Dict[str, str]] = None,
    spawner: Spawner = spawn_detached,
    temp_dir: Optional[Path] = None,
    home_dir: Optional[Path] = None,
) -> Optional[Any]:
    """Spawn the application for ``args`` and wait as requested.

    Returns the spawned process handle, or None when the launch was aborted
    because the profiling ports could not be reserved. Scratch files created
    for an aborted launch are removed.

    With ``--wait`` the launcher returns on the first of child exit or
    marker deletion; output relay, stdin streaming and IPC teardown are
    cancelled at that point while startup profiling still runs to its end.
    """

    executable = resolve_executable(config)
    env = build_child_environment(environ, verbose=args.verbose)
    dev_build = is_dev_build(env.variables)
    child_args: List[str] = list(args.argv)
    # tasks run to completion; followers end with the wait
    tasks: List[PostSpawnTask] = []
    followers: List[PostSpawnTask] = []
    wait = args.wait

    if args.verbose:
        followers.append(relay_output)

    if stdin is None:
        stdin = _default_stdin()
    stdin_file: Optional[Path] = None
    if is_reading_from_stdin(args, stdin):
        try:
            if _is_pipe(stdin):
                stdin_file = create_stdin_file(temp_dir)
                followers.append(_stdin_follower(stdin, stdin_file))
            else:
                stdin_file = capture_stdin(stdin, temp_dir)
        except OSError as exc:
            _LOGGER.debug("stdin capture failed", exc_info=True)
            if args.verbose:
                echo_error(f"Failed to create file to read via stdin: {exc}")
        else:
            # --wait keeps the file around until the editor has read it
            child_args.extend([str(stdin_file), "--wait", "--skip-add-to-recently-opened"])
            wait = True
            if args.verbose:
                echo(f"Reading from stdin via: {stdin_file}")

    marker: Optional[Path] = None
    if wait:
        try:
            marker = create_wait_marker(temp_dir)
        except OSError as exc:
            _LOGGER.debug("wait marker creation failed", exc_info=True)
            if args.verbose:
                echo_error(f"Failed to create marker file for --wait: {exc}")
        else:
            child_args.extend(["--waitMarkerFilePath", str(marker)])
            if args.verbose:
                echo(f"Marker file for --wait created: {marker}")

    plan = None
    inspect_session = None
    process = None
    try:
        if args.prof_startup:
            try:
                plan = await prepare_startup_profile(config.profiling, home_dir=home_dir)
            except PortNotFoundError as exc:
                _LOGGER.debug("%s", exc)
                echo_error(PORTS_NOT_FOUND_MESSAGE)
                return None
            child_args.extend(plan.child_args())
            tasks.append(
                functools.partial(
                    collect_startup_profiles,
                    plan,
                    dev_build=dev_build,
                    config=config.profiling,
                    watch=config.watch,
                )
            )

        if args.inspect_all:
            try:
                inspect_session = await start_inspect_all(config.profiling, directory=temp_dir)
            except PortNotFoundError as exc:
                _LOGGER.debug("%s", exc)
                echo_error(PORTS_NOT_FOUND_MESSAGE)
                return None
            child_args.extend(inspect_session.child_args())
            inspect_session.announce()
            followers.append(inspect_session.dispose_on_exit)

        if args.verbose:
            streams = STREAMS_PIPE
        elif args.inspect_all:
            streams = STREAMS_INHERIT
        else:
            streams = STREAMS_IGNORE

        process = await spawner(executable, child_args, env, streams)
    finally:
        if process is None:
            _discard(stdin_file, marker, plan.prefix if plan is not None else None)
            if inspect_session is not None:
                await inspect_session.server.dispose()

    if not wait or marker is None:
        await asyncio.gather(*(task(process) for task in tasks + followers))
        return process

    running = [asyncio.ensure_future(task(process)) for task in followers]
    try:
        await asyncio.gather(
            wait_for_first(process.wait(), when_deleted(marker, interval=config.watch.poll_interval)),
            *(task(process) for task in tasks),
        )
    finally:
        await _stop_followers(running)
        _discard(stdin_file, marker)
    return process
