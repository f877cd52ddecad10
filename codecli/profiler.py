"""CPU profiling of inspector-enabled processes over the DevTools protocol.

A target process started with ``--inspect``/``--inspect-brk`` (or a Chromium
renderer started with ``--remote-debugging-port``) exposes its targets at
``http://127.0.0.1:<port>/json/list``. ``start_profiling`` connects to the
first target's websocket, starts the sampling profiler and releases a process
paused at startup; ``ProfilingSession.stop`` returns the captured profile.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ntpath
import posixpath
import re
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp

from .errors import ProfilerError

__all__ = [
    "ProfilingSession",
    "rewrite_absolute_paths",
    "start_profiling",
    "write_profile",
]

_LOGGER = logging.getLogger("codecli.profiler")

LOCALHOST = "127.0.0.1"
_URL_WITH_SCHEME = re.compile(r"^\w[\w\d+.-]*:/{2,3}")


class ProfilingSession:
    """An open DevTools connection with the profiler running."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        target: Dict[str, Any],
    ) -> None:
        self._http = http
        self._ws = ws
        self.target = target
        self._next_id = 0

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._next_id += 1
        request_id = self._next_id
        await self._ws.send_json({"id": request_id, "method": method, "params": params or {}})
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                data = json.loads(msg.data)
                if data.get("id") != request_id:
                    # protocol event or a reply to an earlier request
                    continue
                if "error" in data:
                    error = data["error"]
                    detail = error.get("message") if isinstance(error, dict) else error
                    raise ProfilerError(f"{method} failed: {detail}")
                return data.get("result") or {}
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                raise ProfilerError(f"Debug connection closed while waiting for {method}")

    async def stop(self) -> Dict[str, Any]:
        """Stop profiling, close the connection and return the profile."""

        try:
            result = await self.send("Profiler.stop")
        finally:
            await self.close()
        profile = result.get("profile")
        if not isinstance(profile, dict):
            raise ProfilerError("Profiler.stop returned no profile")
        return profile

    async def close(self) -> None:
        await self._ws.close()
        await self._http.close()


async def _list_targets(http: aiohttp.ClientSession, host: str, port: int) -> list:
    url = f"http://{host}:{port}/json/list"
    async with http.get(url, timeout=aiohttp.ClientTimeout(total=2)) as resp:
        resp.raise_for_status()
        targets = await resp.json(content_type=None)
    return targets if isinstance(targets, list) else []


async def _find_target(
    http: aiohttp.ClientSession,
    host: str,
    port: int,
    tries: int,
    retry_interval: float,
) -> Dict[str, Any]:
    for attempt in range(max(tries, 1)):
        try:
            targets = await _list_targets(http, host, port)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            _LOGGER.debug("Debug port %s not ready (attempt %d): %s", port, attempt + 1, exc)
        else:
            for target in targets:
                if isinstance(target, dict) and target.get("webSocketDebuggerUrl"):
                    return target
        await asyncio.sleep(retry_interval)
    raise ProfilerError(f"No debug target on port {port} after {tries} tries")


async def start_profiling(
    port: int,
    *,
    host: str = LOCALHOST,
    tries: int = 10,
    retry_interval: float = 0.05,
) -> ProfilingSession:
    """Attach to the debug target on ``port`` and start CPU profiling."""

    http = aiohttp.ClientSession()
    try:
        target = await _find_target(http, host, port, tries, retry_interval)
        ws = await http.ws_connect(target["webSocketDebuggerUrl"], max_msg_size=0)
    except BaseException:
        await http.close()
        raise
    session = ProfilingSession(http, ws, target)
    try:
        await session.send("Profiler.enable")
        await session.send("Profiler.start")
        await session.send("Runtime.runIfWaitingForDebugger")
    except BaseException:
        await session.close()
        raise
    _LOGGER.debug("Profiling %s on port %s", target.get("title") or target.get("id"), port)
    return session


def _is_absolute(url: str) -> bool:
    return posixpath.isabs(url) or ntpath.isabs(url) or bool(_URL_WITH_SCHEME.match(url))


def _basename(url: str) -> str:
    return re.split(r"[\\/]", url.rstrip("/\\"))[-1]


def rewrite_absolute_paths(
    profile: Dict[str, Any],
    replace: str = "noAbsolutePaths",
) -> Dict[str, Any]:
    """Replace absolute script locations in ``profile`` with ``<replace>/<basename>``.

    The profile is modified in place and returned.
    """

    for node in profile.get("nodes") or []:
        frame = node.get("callFrame") if isinstance(node, dict) else None
        if not isinstance(frame, dict):
            continue
        url = frame.get("url")
        if url and _is_absolute(url):
            frame["url"] = posixpath.join(replace, _basename(url))
    return profile


def write_profile(profile: Dict[str, Any], path: Path) -> Path:
    path.write_text(json.dumps(profile), encoding="utf-8")
    return path
