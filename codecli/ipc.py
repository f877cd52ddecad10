"""Local request/response IPC over HTTP on a Unix domain socket.

Each request carries one JSON object in its body and receives one JSON
object back. The server is meant for a handful of cooperating processes on
the same machine; it is not exposed on any network interface.
"""

from __future__ import annotations

import json
import logging
import random
import socket
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from aiohttp import web

from interfaces.paths import resolve_temp_dir

from .errors import CodeCliError

__all__ = [
    "IPCError",
    "IPCServer",
    "MessageHandler",
    "create_server",
    "generate_random_pipe_name",
    "send_request",
]

_LOGGER = logging.getLogger("codecli.ipc")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class IPCError(CodeCliError):
    """A request could not be served; ``status`` is the HTTP status sent back."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


def generate_random_pipe_name(name: str, directory: Optional[Path] = None) -> Path:
    base = directory if directory is not None else resolve_temp_dir()
    return base / f"{name}-{random.getrandbits(48):012x}.sock"


class IPCServer:
    """Handle to a running IPC server."""

    def __init__(self, runner: web.AppRunner, path: Path) -> None:
        self._runner = runner
        self.ipc_handle_path = path
        self._disposed = False

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self._runner.cleanup()
        self.ipc_handle_path.unlink(missing_ok=True)
        _LOGGER.debug("IPC server on %s disposed", self.ipc_handle_path)

    async def __aenter__(self) -> "IPCServer":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()


def _build_app(handler: MessageHandler) -> web.Application:
    async def _dispatch(request: web.Request) -> web.Response:
        try:
            message = await request.json()
        except ValueError:
            return web.json_response({"error": "request body is not JSON"}, status=400)
        if not isinstance(message, dict):
            return web.json_response({"error": "request body must be a JSON object"}, status=400)
        try:
            payload = await handler(message)
        except IPCError as exc:
            return web.json_response({"error": str(exc)}, status=exc.status)
        return web.json_response(payload)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", _dispatch)
    return app


async def create_server(
    name: str,
    handler: MessageHandler,
    *,
    directory: Optional[Path] = None,
) -> IPCServer:
    """Start serving ``handler`` on a fresh socket named after ``name``."""

    if not hasattr(socket, "AF_UNIX"):
        raise CodeCliError("IPC servers require Unix domain socket support")

    path = generate_random_pipe_name(name, directory)
    runner = web.AppRunner(_build_app(handler), access_log=None)
    await runner.setup()
    site = web.UnixSite(runner, str(path))
    try:
        await site.start()
    except OSError:
        await runner.cleanup()
        raise
    _LOGGER.debug("IPC server %s listening on %s", name, path)
    return IPCServer(runner, path)


async def send_request(
    path: Path,
    message: Dict[str, Any],
    *,
    timeout: float = 10.0,
) -> Dict[str, Any]:
    """Send ``message`` to the server at ``path`` and return its JSON reply.

    Raises ``IPCError`` when the server answers with an error status.
    """

    connector = aiohttp.UnixConnector(path=str(path))
    async with aiohttp.ClientSession(connector=connector) as session:
        async with session.post(
            "http://localhost/",
            data=json.dumps(message),
            headers={"Content-Type": "application/json"},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            payload = await resp.json(content_type=None)
            if resp.status >= 400:
                detail = payload.get("error") if isinstance(payload, dict) else None
                raise IPCError(detail or f"HTTP {resp.status}", status=resp.status)
    if not isinstance(payload, dict):
        raise IPCError("IPC response is not a JSON object", status=502)
    return payload
