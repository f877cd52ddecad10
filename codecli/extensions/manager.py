"""Local extensions directory: listing, installing and removing extensions.

Each installed extension lives in ``<extensions-dir>/<publisher>.<name>-<version>``
with its ``package.json`` manifest at the folder root. ``.vsix`` packages are
zip archives carrying the extension under an ``extension/`` prefix.
"""

from __future__ import annotations

import json
import logging
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

from ..errors import ExtensionError

__all__ = ["Extension", "ExtensionManager", "read_manifest"]

_LOGGER = logging.getLogger("codecli.extensions")

MANIFEST_NAME = "package.json"
VSIX_PREFIX = "extension/"


@dataclass(frozen=True)
class Extension:
    publisher: str
    name: str
    version: str
    location: Optional[Path] = None
    display_name: Optional[str] = None

    @property
    def identifier(self) -> str:
        return f"{self.publisher}.{self.name}"

    @property
    def folder_name(self) -> str:
        return f"{self.identifier}-{self.version}".lower()

    def label(self, *, show_version: bool = False) -> str:
        return f"{self.identifier}@{self.version}" if show_version else self.identifier

    def matches(self, identifier: str) -> bool:
        return self.identifier.lower() == identifier.strip().lower()

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any], location: Optional[Path] = None) -> "Extension":
        missing = [key for key in ("publisher", "name", "version") if not manifest.get(key)]
        if missing:
            raise ExtensionError(f"Extension manifest is missing: {', '.join(missing)}")
        return cls(
            publisher=str(manifest["publisher"]),
            name=str(manifest["name"]),
            version=str(manifest["version"]),
            location=location,
            display_name=manifest.get("displayName"),
        )


def _parse_manifest(raw: bytes, source: Path) -> Dict[str, Any]:
    try:
        manifest = json.loads(raw.decode("utf-8-sig"))
    except ValueError as exc:
        raise ExtensionError(f"Invalid extension manifest in {source}: {exc}") from exc
    if not isinstance(manifest, dict):
        raise ExtensionError(f"Invalid extension manifest in {source}")
    return manifest


def read_manifest(source: Path) -> Dict[str, Any]:
    """Read ``package.json`` from an unpacked extension folder or a ``.vsix``."""

    if source.is_dir():
        manifest_path = source / MANIFEST_NAME
        if not manifest_path.is_file():
            raise ExtensionError(f"{source} does not contain a {MANIFEST_NAME}")
        return _parse_manifest(manifest_path.read_bytes(), source)
    try:
        with zipfile.ZipFile(source) as archive:
            try:
                raw = archive.read(VSIX_PREFIX + MANIFEST_NAME)
            except KeyError:
                raise ExtensionError(f"{source} is not a valid extension package") from None
    except zipfile.BadZipFile as exc:
        raise ExtensionError(f"{source} is not a valid extension package") from exc
    return _parse_manifest(raw, source)


def _extract_vsix(source: Path, target: Path) -> None:
    with zipfile.ZipFile(source) as archive:
        for member in archive.infolist():
            if not member.filename.startswith(VSIX_PREFIX) or member.is_dir():
                continue
            relative = PurePosixPath(member.filename[len(VSIX_PREFIX):])
            if relative.is_absolute() or ".." in relative.parts:
                raise ExtensionError(f"{source} contains an unsafe path: {member.filename}")
            destination = target.joinpath(*relative.parts)
            destination.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as src, destination.open("wb") as dst:
                shutil.copyfileobj(src, dst)


class ExtensionManager:
    """Manage the extensions installed under one directory."""

    def __init__(self, extensions_dir: Path) -> None:
        self.extensions_dir = extensions_dir

    def list_installed(self) -> List[Extension]:
        if not self.extensions_dir.is_dir():
            return []
        found: List[Extension] = []
        for folder in self.extensions_dir.iterdir():
            if not folder.is_dir() or folder.name.startswith("."):
                continue
            try:
                found.append(Extension.from_manifest(read_manifest(folder), folder))
            except (ExtensionError, OSError) as exc:
                _LOGGER.debug("Skipping %s: %s", folder, exc)
        return sorted(found, key=lambda ext: (ext.identifier.lower(), ext.version))

    def find(self, identifier: str) -> Optional[Extension]:
        for extension in self.list_installed():
            if extension.matches(identifier):
                return extension
        return None

    def install(self, source: Path) -> Extension:
        """Install ``source`` (a ``.vsix`` or an unpacked folder).

        Any other installed version of the same extension is replaced.
        """

        extension = Extension.from_manifest(read_manifest(source))
        target = self.extensions_dir / extension.folder_name
        staging = self.extensions_dir / f".{extension.folder_name}.staging"
        self.extensions_dir.mkdir(parents=True, exist_ok=True)
        shutil.rmtree(staging, ignore_errors=True)
        try:
            if source.is_dir():
                shutil.copytree(source, staging)
            else:
                _extract_vsix(source, staging)
            previous = self.find(extension.identifier)
            if previous is not None and previous.location is not None:
                shutil.rmtree(previous.location)
            if target.exists():
                shutil.rmtree(target)
            staging.rename(target)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        _LOGGER.debug("Installed %s into %s", extension.label(show_version=True), target)
        return Extension.from_manifest(read_manifest(target), target)

    def uninstall(self, identifier: str) -> Extension:
        extension = self.find(identifier)
        if extension is None or extension.location is None:
            raise ExtensionError(f"Extension '{identifier}' is not installed.")
        shutil.rmtree(extension.location)
        _LOGGER.debug("Removed %s", extension.location)
        return extension
