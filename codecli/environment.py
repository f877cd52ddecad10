"""Environment record handed to the spawned application process."""

from __future__ import annotations

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional

__all__ = [
    "CLI_LAUNCH_ENV",
    "ChildEnvironment",
    "DEV_BUILD_ENV",
    "ENABLE_LOGGING_ENV",
    "NO_ATTACH_CONSOLE_ENV",
    "RUN_AS_NODE_ENV",
    "build_child_environment",
    "is_dev_build",
]

CLI_LAUNCH_ENV = "VSCODE_CLI"
NO_ATTACH_CONSOLE_ENV = "ELECTRON_NO_ATTACH_CONSOLE"
ENABLE_LOGGING_ENV = "ELECTRON_ENABLE_LOGGING"
RUN_AS_NODE_ENV = "ELECTRON_RUN_AS_NODE"
DEV_BUILD_ENV = "VSCODE_DEV"


@dataclass(frozen=True)
class ChildEnvironment:
    """Read-only view over the variables passed to the child process."""

    variables: Mapping[str, str]

    def __getitem__(self, key: str) -> str:
        return self.variables[key]

    def __contains__(self, key: object) -> bool:
        return key in self.variables

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(key, default)

    def as_dict(self) -> Dict[str, str]:
        return dict(self.variables)


def build_child_environment(
    base: Optional[Mapping[str, str]] = None,
    *,
    verbose: bool = False,
) -> ChildEnvironment:
    """Overlay the launch markers onto ``base`` (defaults to ``os.environ``).

    ``ELECTRON_RUN_AS_NODE`` is stripped so the child does not mistake itself
    for a plain Node runtime.
    """

    variables = dict(os.environ if base is None else base)
    variables[CLI_LAUNCH_ENV] = "1"
    variables[NO_ATTACH_CONSOLE_ENV] = "1"
    variables.pop(RUN_AS_NODE_ENV, None)
    if verbose:
        variables[ENABLE_LOGGING_ENV] = "1"
    return ChildEnvironment(MappingProxyType(variables))


def is_dev_build(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return bool(env.get(DEV_BUILD_ENV))
