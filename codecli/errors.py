"""Exception hierarchy shared by the launcher modes."""

from __future__ import annotations

__all__ = [
    "ArgumentError",
    "CodeCliError",
    "ExtensionError",
    "LaunchError",
    "PortNotFoundError",
    "ProfilerError",
]


class CodeCliError(Exception):
    """Base class for launcher failures."""


class ArgumentError(CodeCliError):
    """Raised when the command line cannot be parsed."""


class LaunchError(CodeCliError):
    """Raised when the application process cannot be started."""


class PortNotFoundError(CodeCliError):
    """Raised when no free debug port is found within the probe budget."""

    def __init__(self, start_port: int, attempts: int) -> None:
        super().__init__(f"No free port found in {attempts} attempts starting at {start_port}")
        self.start_port = start_port
        self.attempts = attempts


class ProfilerError(CodeCliError):
    """Raised when a CPU profiler cannot attach to or talk with a debug target."""


class ExtensionError(CodeCliError):
    """Raised by extension management operations."""
