"""Extension-management mode of the launcher (``--list-extensions`` and friends)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from interfaces.paths import (
    resolve_extensions_dir,
    resolve_install_source_path,
    resolve_user_data_dir,
)

from ..cli.args import LaunchArgs
from ..colors import echo
from ..config import LauncherConfig
from ..errors import ExtensionError
from .manager import Extension, ExtensionManager, read_manifest

__all__ = ["main"]

_LOGGER = logging.getLogger("codecli.extensions")

INSTALL_SOURCE_MAX_LENGTH = 30


def _is_local_source(candidate: str) -> bool:
    return candidate.lower().endswith(".vsix") or Path(candidate).expanduser().is_dir()


def _set_install_source(source: str, config: LauncherConfig, user_data_dir: Optional[str]) -> None:
    data_dir = resolve_user_data_dir(config.product.name_long, user_data_dir)
    target = resolve_install_source_path(data_dir)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(source[:INSTALL_SOURCE_MAX_LENGTH], encoding="utf-8")
    _LOGGER.debug("Install source written to %s", target)


def _list(manager: ExtensionManager, show_versions: bool) -> None:
    for extension in manager.list_installed():
        echo(extension.label(show_version=show_versions))


def _install(manager: ExtensionManager, candidate: str) -> None:
    if not _is_local_source(candidate):
        # no marketplace: ids can only be resolved from local packages
        echo(f"Extension '{candidate}' not found.")
        return

    source = Path(candidate).expanduser().resolve()
    if not source.exists():
        raise ExtensionError(f"Extension '{candidate}' not found.")
    incoming = Extension.from_manifest(read_manifest(source))
    existing = manager.find(incoming.identifier)
    if existing is not None and existing.version == incoming.version:
        echo(f"Extension '{incoming.identifier}' is already installed.")
        return

    manager.install(source)
    echo(f"Extension '{source.name}' was successfully installed!")


def _uninstall(manager: ExtensionManager, identifier: str) -> None:
    echo(f"Uninstalling {identifier}...")
    manager.uninstall(identifier)
    echo(f"Extension '{identifier}' was successfully uninstalled!")


def main(args: LaunchArgs, config: LauncherConfig) -> None:
    """Run the one extension operation requested by ``args``.

    Raises ``ExtensionError`` for failures that should end the launcher with
    a non-zero exit code.
    """

    if args.install_source:
        _set_install_source(args.install_source, config, args.user_data_dir)
        return

    manager = ExtensionManager(
        resolve_extensions_dir(config.product.data_folder_name, args.extensions_dir)
    )

    if args.list_extensions:
        _list(manager, args.show_versions)
    elif args.install_extension:
        for candidate in args.install_extension:
            _install(manager, candidate)
    elif args.uninstall_extension:
        for identifier in args.uninstall_extension:
            _uninstall(manager, identifier)
