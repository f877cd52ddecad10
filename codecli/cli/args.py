"""Argument parser and parsed-argument record for the launcher CLI."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Tuple

from ..config import ProductConfig
from ..errors import ArgumentError

__all__ = ["LaunchArgs", "build_help_message", "build_parser", "parse_args"]


def _port_arg(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port


# (flags, argparse options, help text, metavar shown in --help)
_OPTIONS: List[Tuple[Tuple[str, ...], Dict[str, Any], str, str]] = [
    (("-d", "--diff"), {"action": "store_true"}, "Compare two files with each other.", ""),
    (("-g", "--goto"), {"action": "store_true"}, "Open a file at the path on the specified line and character position.", ""),
    (("-n", "--new-window"), {"action": "store_true"}, "Force a new instance.", ""),
    (("-r", "--reuse-window"), {"action": "store_true"}, "Force opening a file or folder in the last active window.", ""),
    (("-w", "--wait"), {"action": "store_true"}, "Wait for the files to be closed before returning.", ""),
    (("--locale",), {}, "The locale to use (e.g. en-US or zh-TW).", "<locale>"),
    (("--user-data-dir",), {}, "Specifies the directory that user data is kept in.", "<dir>"),
    (("-v", "--version"), {"action": "store_true"}, "Print version.", ""),
    (("-h", "--help"), {"action": "store_true"}, "Print usage.", ""),
    (("--extensions-dir",), {}, "Set the root path for extensions.", "<dir>"),
    (("--list-extensions",), {"action": "store_true"}, "List the installed extensions.", ""),
    (("--show-versions",), {"action": "store_true"}, "Show versions of installed extensions, when using --list-extensions.", ""),
    (("--install-extension",), {"action": "append", "default": []}, "Installs an extension from a .vsix file or an unpacked folder.", "<ext>"),
    (("--uninstall-extension",), {"action": "append", "default": []}, "Uninstalls an extension.", "<ext>"),
    (("--install-source",), {}, "Records how the application was installed.", "<source>"),
    (("--disable-extensions",), {"action": "store_true"}, "Disable all installed extensions.", ""),
    (("--verbose",), {"action": "store_true"}, "Print verbose output and relay the application's output.", ""),
    (("--cpu-profile",), {"type": _port_arg}, "Write a CPU profile of the process debugging on <port>; stops on Ctrl+C with --wait.", "<port>"),
    (("--prof-startup",), {"action": "store_true"}, "Run CPU profiler during startup.", ""),
    (("--inspect-all",), {"action": "store_true"}, "Open debug ports for all application processes.", ""),
]


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ArgumentError(message)


@dataclass(frozen=True)
class LaunchArgs:
    """Parsed command line; built once by ``parse_args`` and never mutated."""

    argv: Tuple[str, ...] = ()
    paths: Tuple[str, ...] = ()
    unknown: Tuple[str, ...] = ()
    help: bool = False
    version: bool = False
    wait: bool = False
    verbose: bool = False
    cpu_profile: Optional[int] = None
    install_source: Optional[str] = None
    list_extensions: bool = False
    show_versions: bool = False
    install_extension: Tuple[str, ...] = ()
    uninstall_extension: Tuple[str, ...] = ()
    extensions_dir: Optional[str] = None
    user_data_dir: Optional[str] = None
    prof_startup: bool = False
    inspect_all: bool = False

    @property
    def wants_extension_cli(self) -> bool:
        return bool(
            self.install_source
            or self.list_extensions
            or self.install_extension
            or self.uninstall_extension
        )


def build_parser(prog: str = "code-oss") -> argparse.ArgumentParser:
    parser = _Parser(prog=prog, add_help=False, allow_abbrev=False)
    for flags, options, help_text, metavar in _OPTIONS:
        if metavar:
            options = dict(options, metavar=metavar)
        parser.add_argument(*flags, help=help_text, **options)
    parser.add_argument("paths", nargs="*")
    return parser


def parse_args(argv: Sequence[str], *, prog: str = "code-oss") -> LaunchArgs:
    """Parse ``argv`` (without the program name); raises ``ArgumentError``."""

    raw = list(argv)
    ns, extras = build_parser(prog).parse_known_args(raw)
    paths = list(ns.paths)
    unknown: List[str] = []
    for token in extras:
        if token.startswith("-") and token != "-":
            unknown.append(token)
        else:
            paths.append(token)
    return LaunchArgs(
        argv=tuple(raw),
        paths=tuple(paths),
        unknown=tuple(unknown),
        help=ns.help,
        version=ns.version,
        wait=ns.wait,
        verbose=ns.verbose,
        cpu_profile=ns.cpu_profile,
        install_source=ns.install_source,
        list_extensions=ns.list_extensions,
        show_versions=ns.show_versions,
        install_extension=tuple(ns.install_extension),
        uninstall_extension=tuple(ns.uninstall_extension),
        extensions_dir=ns.extensions_dir,
        user_data_dir=ns.user_data_dir,
        prof_startup=ns.prof_startup,
        inspect_all=ns.inspect_all,
    )


def build_help_message(product: ProductConfig) -> str:
    lines = [
        f"{product.name_long} {product.version}",
        "",
        f"Usage: {product.application_name} [options] [paths...]",
        "",
        "Options:",
    ]
    for flags, _, help_text, metavar in _OPTIONS:
        label = ", ".join(flags)
        if metavar:
            label = f"{label} {metavar}"
        lines.append(f"  {label:<32} {help_text}")
    return "\n".join(lines)
