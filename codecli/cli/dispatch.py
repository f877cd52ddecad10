"""Top-level launcher: pick one mode for the parsed command line and run it."""

from __future__ import annotations

import asyncio
import logging
import platform
import sys
import traceback
from typing import Optional, Sequence

from .. import extensions
from ..colors import echo, echo_error
from ..config import LauncherConfig, ProductConfig, get_runtime_config
from ..environment import is_dev_build
from ..errors import ArgumentError
from ..launch import launch
from ..profiling import run_cpu_profile
from .args import LaunchArgs, build_help_message, parse_args

__all__ = [
    "MODE_CPU_PROFILE",
    "MODE_EXTENSIONS",
    "MODE_HELP",
    "MODE_LAUNCH",
    "MODE_VERSION",
    "main",
    "run",
    "select_mode",
    "version_lines",
]

_LOGGER = logging.getLogger("codecli.cli")

MODE_HELP = "help"
MODE_VERSION = "version"
MODE_CPU_PROFILE = "cpu-profile"
MODE_EXTENSIONS = "extensions"
MODE_LAUNCH = "launch"

_ARCH_NAMES = {
    "x86_64": "x64",
    "amd64": "x64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
}


def select_mode(args: LaunchArgs) -> str:
    if args.help:
        return MODE_HELP
    if args.version:
        return MODE_VERSION
    if args.cpu_profile:
        return MODE_CPU_PROFILE
    if args.wants_extension_cli:
        return MODE_EXTENSIONS
    return MODE_LAUNCH


def _arch() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine or "unknown")


def version_lines(product: ProductConfig) -> Sequence[str]:
    return (product.version, product.commit, _arch())


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def run(argv: Sequence[str], *, config: Optional[LauncherConfig] = None) -> int:
    config = config or get_runtime_config()
    try:
        args = parse_args(argv, prog=config.product.application_name)
    except ArgumentError as exc:
        echo_error(str(exc))
        return 0

    _configure_logging(args.verbose)
    mode = select_mode(args)
    _LOGGER.debug("Running in %s mode", mode)

    if mode == MODE_HELP:
        echo(build_help_message(config.product))
    elif mode == MODE_VERSION:
        for line in version_lines(config.product):
            echo(line)
    elif mode == MODE_CPU_PROFILE:
        await run_cpu_profile(
            args.cpu_profile,
            wait=args.wait,
            dev_build=is_dev_build(),
            config=config.profiling,
        )
    elif mode == MODE_EXTENSIONS:
        extensions.main(args, config)
    else:
        await launch(args, config)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(argv) if argv is not None else sys.argv[1:]
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except Exception:
        traceback.print_exc(file=sys.stderr)
        return 1
