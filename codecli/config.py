"""Runtime configuration loader for the codecli launcher."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .version import __version__

__all__ = [
    "LauncherConfig",
    "ProductConfig",
    "ProfilingConfig",
    "WatchConfig",
    "get_runtime_config",
    "reload_config",
]

_CONFIG_ENV = "CODECLI_CONFIG"
_EXECUTABLE_ENV = "CODECLI_EXECUTABLE"
_BASE_PORT_ENV = "CODECLI_BASE_PORT"

_LOGGER = logging.getLogger("codecli.config")


def _global_config_roots() -> List[Path]:
    roots: List[Path] = []
    env_root = os.getenv("CODECLI_CONFIG_HOME")
    if env_root:
        roots.append(Path(env_root).expanduser())
    home = Path.home()
    if sys.platform == "win32":
        base = Path(os.getenv("APPDATA", home / "AppData" / "Roaming"))
        roots.append(base / "codecli")
    elif sys.platform == "darwin":
        roots.append(home / "Library/Application Support" / "codecli")
    else:
        xdg = Path(os.getenv("XDG_CONFIG_HOME", home / ".config"))
        roots.extend([xdg / "codecli", home / ".config/codecli"])
    deduped: List[Path] = []
    for root in roots:
        expanded = root.expanduser()
        if expanded not in deduped:
            deduped.append(expanded)
    return deduped


def _default_config_locations() -> List[Path]:
    locations = [Path("config/product.json"), Path("product.json")]
    for root in _global_config_roots():
        locations.append(root / "product.json")
    seen: List[Path] = []
    for candidate in locations:
        if candidate not in seen:
            seen.append(candidate)
    return seen


@dataclass(frozen=True, slots=True)
class ProductConfig:
    name_long: str = "Code - OSS"
    application_name: str = "code-oss"
    version: str = __version__
    commit: str = "unknown"
    data_folder_name: str = ".vscode-oss"
    executable: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ProfilingConfig:
    base_port: int = 9222
    probe_attempts: int = 10
    probe_timeout: float = 6.0
    attach_retry_interval: float = 0.05


@dataclass(frozen=True, slots=True)
class WatchConfig:
    poll_interval: float = 1.0


@dataclass(frozen=True, slots=True)
class LauncherConfig:
    product: ProductConfig = field(default_factory=ProductConfig)
    profiling: ProfilingConfig = field(default_factory=ProfilingConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LauncherConfig":
        if not isinstance(data, dict):
            return cls()

        defaults = ProductConfig()
        product = ProductConfig(
            name_long=str(data.get("nameLong") or defaults.name_long),
            application_name=str(data.get("applicationName") or defaults.application_name),
            version=str(data.get("version") or defaults.version),
            commit=str(data.get("commit") or defaults.commit),
            data_folder_name=str(data.get("dataFolderName") or defaults.data_folder_name),
            executable=str(data["executable"]) if data.get("executable") else None,
        )

        profiling_data = data.get("profiling")
        if not isinstance(profiling_data, dict):
            profiling_data = {}
        base = ProfilingConfig()
        profiling = ProfilingConfig(
            base_port=int(profiling_data.get("basePort", base.base_port)),
            probe_attempts=int(profiling_data.get("probeAttempts", base.probe_attempts)),
            probe_timeout=float(profiling_data.get("probeTimeout", base.probe_timeout)),
            attach_retry_interval=float(
                profiling_data.get("attachRetryInterval", base.attach_retry_interval)
            ),
        )

        watch_data = data.get("watch")
        if not isinstance(watch_data, dict):
            watch_data = {}
        watch = WatchConfig(
            poll_interval=float(watch_data.get("pollInterval", WatchConfig().poll_interval))
        )
        return cls(product=product, profiling=profiling, watch=watch)


def _candidate_paths(explicit: Optional[Path]) -> Iterable[Path]:
    if explicit is not None:
        yield explicit
    env_path = os.getenv(_CONFIG_ENV)
    if env_path:
        yield Path(env_path)
    yield from _default_config_locations()


def _apply_env_overrides(config: LauncherConfig) -> LauncherConfig:
    executable = os.getenv(_EXECUTABLE_ENV)
    if executable and not config.product.executable:
        config = replace(config, product=replace(config.product, executable=executable))
    base_port = os.getenv(_BASE_PORT_ENV)
    if base_port:
        try:
            port = int(base_port)
        except ValueError:
            _LOGGER.warning("Ignoring non-numeric %s=%r", _BASE_PORT_ENV, base_port)
        else:
            config = replace(config, profiling=replace(config.profiling, base_port=port))
    return config


def _load_config(path: Optional[Path] = None) -> LauncherConfig:
    for candidate in _candidate_paths(path):
        try:
            if candidate.exists():
                data = json.loads(candidate.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    _LOGGER.debug("Loaded product configuration from %s", candidate)
                    return _apply_env_overrides(LauncherConfig.from_dict(data))
        except (OSError, TypeError, ValueError) as exc:
            _LOGGER.debug("Skipping configuration %s: %s", candidate, exc)
            continue
    return _apply_env_overrides(LauncherConfig())


@lru_cache(maxsize=1)
def get_runtime_config() -> LauncherConfig:
    """Return the cached runtime configuration."""

    return _load_config(None)


def reload_config(path: Optional[Path] = None) -> LauncherConfig:
    """Reload configuration from disk, bypassing the cache."""

    get_runtime_config.cache_clear()  # type: ignore[attr-defined]
    return get_runtime_config() if path is None else _load_config(path)
