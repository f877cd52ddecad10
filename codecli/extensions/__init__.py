"""Extension management delegate for the launcher CLI."""

from __future__ import annotations

from .cli import main
from .manager import Extension, ExtensionManager, read_manifest

__all__ = ["Extension", "ExtensionManager", "main", "read_manifest"]
