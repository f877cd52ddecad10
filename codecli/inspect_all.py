"""``--inspect-all``: debug ports for every process of the application.

The launcher reserves ports for the main, renderer, extension host and
search processes up front. Processes started later ask the launcher's IPC
server for a port with ``{"type": "getDebugPort", "processName": ...}`` and
are answered with ``{"debugPort": <port>}``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .colors import echo
from .config import ProfilingConfig
from .errors import PortNotFoundError
from .ipc import IPCError, IPCServer, MessageHandler, create_server, send_request
from .ports import find_free_port, find_free_ports

__all__ = [
    "DebugPortAllocator",
    "GET_DEBUG_PORT",
    "IPC_SERVER_NAME",
    "InspectAllSession",
    "make_request_handler",
    "request_debug_port",
    "start_inspect_all",
]

_LOGGER = logging.getLogger("codecli.inspect_all")

IPC_SERVER_NAME = "vscode-inspect-all"
GET_DEBUG_PORT = "getDebugPort"

PortFinder = Callable[[int, int, float], Awaitable[int]]


class DebugPortAllocator:
    """Hands out free ports above the last one assigned, one request at a time."""

    def __init__(
        self,
        last_port: int,
        *,
        attempts: int = 10,
        timeout: float = 6.0,
        finder: PortFinder = find_free_port,
    ) -> None:
        self._last_port = last_port
        self._attempts = attempts
        self._timeout = timeout
        self._finder = finder
        self._lock = asyncio.Lock()

    @property
    def last_port(self) -> int:
        return self._last_port

    async def allocate(self) -> int:
        """Return the next free port; raises ``PortNotFoundError`` when exhausted.

        A failed allocation leaves ``last_port`` untouched.
        """

        async with self._lock:
            port = await self._finder(self._last_port + 1, self._attempts, self._timeout)
            self._last_port = port
            return port


def make_request_handler(allocator: DebugPortAllocator) -> MessageHandler:
    async def _handle(message: Dict[str, Any]) -> Dict[str, Any]:
        if message.get("type") != GET_DEBUG_PORT:
            raise IPCError("unknown request type", status=400)
        try:
            port = await allocator.allocate()
        except PortNotFoundError as exc:
            raise IPCError(str(exc), status=503) from exc
        echo(f"{message.get('processName') or 'Unknown'} process debug port: {port}")
        return {"debugPort": port}

    return _handle


@dataclass
class InspectAllSession:
    main_port: int
    renderer_port: int
    exthost_port: int
    search_port: int
    server: IPCServer
    allocator: DebugPortAllocator

    def child_args(self) -> List[str]:
        return [
            f"--inspect={self.main_port}",
            f"--remote-debugging-port={self.renderer_port}",
            f"--inspect-extensions={self.exthost_port}",
            f"--inspect-search={self.search_port}",
            f"--inspect-all-ipc={self.server.ipc_handle_path}",
        ]

    def announce(self) -> None:
        echo(f"Main process debug port: {self.main_port}")
        echo(f"Renderer process debug port: {self.renderer_port}")
        echo(f"Extension host process debug port: {self.exthost_port}")
        echo(f"Search process debug port: {self.search_port}")

    async def dispose_on_exit(self, process: Any) -> None:
        """Post-spawn task: tear the IPC server down once the child exits."""

        try:
            await process.wait()
        finally:
            await self.server.dispose()


async def start_inspect_all(
    config: ProfilingConfig,
    *,
    directory: Optional[Path] = None,
) -> InspectAllSession:
    """Reserve the four fixed ports and start the port-request server.

    Raises ``PortNotFoundError`` before the server is started when any port
    is missing.
    """

    main_port, renderer_port, exthost_port, search_port = await find_free_ports(
        4, config.base_port, config.probe_attempts, config.probe_timeout
    )
    allocator = DebugPortAllocator(
        search_port,
        attempts=config.probe_attempts,
        timeout=config.probe_timeout,
    )
    server = await create_server(
        IPC_SERVER_NAME, make_request_handler(allocator), directory=directory
    )
    _LOGGER.debug("inspect-all IPC listening on %s", server.ipc_handle_path)
    return InspectAllSession(
        main_port=main_port,
        renderer_port=renderer_port,
        exthost_port=exthost_port,
        search_port=search_port,
        server=server,
        allocator=allocator,
    )


async def request_debug_port(ipc_path: Path, process_name: str, *, timeout: float = 10.0) -> int:
    """Client side used by child processes started with ``--inspect-all-ipc``."""

    reply = await send_request(
        ipc_path, {"type": GET_DEBUG_PORT, "processName": process_name}, timeout=timeout
    )
    port = reply.get("debugPort")
    if not isinstance(port, int):
        raise IPCError("reply carries no debug port", status=502)
    return port
