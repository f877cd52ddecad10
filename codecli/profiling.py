"""Developer CPU-profiling modes: ``--cpu-profile`` and ``--prof-startup``."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from interfaces.tempfiles import profile_prefix
from interfaces.watch import wait_for_first, when_deleted

from .colors import echo
from .config import ProfilingConfig, WatchConfig
from .ports import find_free_ports
from .profiler import ProfilingSession, rewrite_absolute_paths, start_profiling, write_profile

__all__ = [
    "PII_REPLACEMENT",
    "StartupProfilePlan",
    "collect_startup_profiles",
    "prepare_startup_profile",
    "profile_suffix",
    "run_cpu_profile",
    "wait_for_interrupt",
]

_LOGGER = logging.getLogger("codecli.profiling")

PII_REPLACEMENT = "piiRemoved"

StartProfiling = Callable[..., Awaitable[ProfilingSession]]


def profile_suffix(dev_build: bool) -> str:
    # .txt makes the scrubbed profiles attachable to issue reports
    return "" if dev_build else ".txt"


def _finalize(profile: Dict[str, Any], dev_build: bool) -> Dict[str, Any]:
    if dev_build:
        return profile
    return rewrite_absolute_paths(profile, PII_REPLACEMENT)


async def wait_for_interrupt() -> None:
    """Block until SIGINT is delivered to this process."""

    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupted.set)
        uses_loop_handler = True
    except (NotImplementedError, RuntimeError):
        previous = signal.signal(
            signal.SIGINT, lambda *_: loop.call_soon_threadsafe(interrupted.set)
        )
        uses_loop_handler = False
    try:
        await interrupted.wait()
    finally:
        if uses_loop_handler:
            loop.remove_signal_handler(signal.SIGINT)
        else:
            signal.signal(signal.SIGINT, previous)


async def run_cpu_profile(
    port: int,
    *,
    wait: bool,
    dev_build: bool,
    config: Optional[ProfilingConfig] = None,
    start: StartProfiling = start_profiling,
    interrupted: Optional[Callable[[], Awaitable[None]]] = None,
    home_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Profile the process listening on ``port`` until interrupted.

    Without ``wait`` the profiler is attached and released straight away and
    nothing is written. With ``wait`` the profile is written to
    ``<home>/<xxxx>-main.cpuprofile[.txt]`` once SIGINT arrives and that path
    is returned.
    """

    config = config or ProfilingConfig()
    session = await start(port, retry_interval=config.attach_retry_interval)
    prefix = profile_prefix(home_dir)

    if not wait:
        await session.close()
        return None

    await (interrupted or wait_for_interrupt)()

    profile = _finalize(await session.stop(), dev_build)
    target = Path(f"{prefix}-main.cpuprofile{profile_suffix(dev_build)}")
    write_profile(profile, target)
    echo()
    echo(f"CPU Profile written to {target}")
    return target


@dataclass(frozen=True)
class StartupProfilePlan:
    """Ports and file locations for one ``--prof-startup`` run."""

    prefix: Path
    main_port: int
    renderer_port: int
    exthost_port: int

    def child_args(self) -> List[str]:
        return [
            f"--inspect-brk={self.main_port}",
            f"--remote-debugging-port={self.renderer_port}",
            f"--inspect-brk-extensions={self.exthost_port}",
            "--prof-startup-prefix",
            str(self.prefix),
            "--no-cached-data",
        ]

    def output_path(self, process: str, dev_build: bool) -> Path:
        return Path(f"{self.prefix}-{process}.cpuprofile{profile_suffix(dev_build)}")


async def prepare_startup_profile(
    config: ProfilingConfig,
    *,
    home_dir: Optional[Path] = None,
) -> StartupProfilePlan:
    """Reserve the three debug ports and write the prefix marker file.

    Raises ``PortNotFoundError`` before touching the filesystem when any of
    the ports cannot be found.
    """

    main_port, renderer_port, exthost_port = await find_free_ports(
        3, config.base_port, config.probe_attempts, config.probe_timeout
    )
    plan = StartupProfilePlan(
        prefix=profile_prefix(home_dir),
        main_port=main_port,
        renderer_port=renderer_port,
        exthost_port=exthost_port,
    )
    plan.prefix.write_text("|".join(plan.child_args()), encoding="utf-8")
    _LOGGER.debug("Startup profiling prefix %s", plan.prefix)
    return plan


async def collect_startup_profiles(
    plan: StartupProfilePlan,
    process: Any,
    *,
    dev_build: bool,
    config: Optional[ProfilingConfig] = None,
    watch: Optional[WatchConfig] = None,
    start: StartProfiling = start_profiling,
) -> List[Path]:
    """Profile main, renderer and extension host until startup finishes.

    Startup is over when the child exits or deletes the prefix marker file.
    """

    config = config or ProfilingConfig()
    watch = watch or WatchConfig()
    interval = config.attach_retry_interval

    sessions = {
        "main": await start(plan.main_port, retry_interval=interval),
        "renderer": await start(plan.renderer_port, tries=200, retry_interval=interval),
        "exthost": await start(plan.exthost_port, tries=300, retry_interval=interval),
    }

    await wait_for_first(process.wait(), when_deleted(plan.prefix, interval=watch.poll_interval))

    profiles = {name: await session.stop() for name, session in sessions.items()}

    written: List[Path] = []
    for name, profile in profiles.items():
        target = plan.output_path(name, dev_build)
        write_profile(_finalize(profile, dev_build), target)
        written.append(target)
    _LOGGER.debug("Startup profiles written: %s", ", ".join(str(p) for p in written))
    return written
