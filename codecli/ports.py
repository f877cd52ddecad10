"""Free-port probing for debug and inspector ports."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from .errors import PortNotFoundError

__all__ = ["find_free_port", "find_free_ports", "probe_port"]

_LOGGER = logging.getLogger("codecli.ports")

LOCALHOST = "127.0.0.1"


async def probe_port(port: int, host: str = LOCALHOST) -> bool:
    """Return True when nothing accepts connections on ``host:port``.

    A refused connection means the port is free. A successful connection or
    any other socket error means it is taken or unusable.
    """

    try:
        _, writer = await asyncio.open_connection(host, port)
    except ConnectionRefusedError:
        return True
    except OSError as exc:
        _LOGGER.debug("Port %s unusable: %s", port, exc)
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return False


async def _scan(start_port: int, attempts: int, host: str) -> int:
    port = start_port
    for _ in range(attempts):
        if await probe_port(port, host):
            return port
        port += 1
    raise PortNotFoundError(start_port, attempts)


async def find_free_port(
    start_port: int,
    attempts: int = 10,
    timeout: float = 6.0,
    *,
    host: str = LOCALHOST,
) -> int:
    """Return the first free port in ``[start_port, start_port + attempts)``.

    Raises ``PortNotFoundError`` when every candidate is taken or the whole
    scan exceeds ``timeout`` seconds.
    """

    try:
        port = await asyncio.wait_for(_scan(start_port, attempts, host), timeout)
    except asyncio.TimeoutError:
        raise PortNotFoundError(start_port, attempts) from None
    _LOGGER.debug("Found free port %s (scan started at %s)", port, start_port)
    return port


async def find_free_ports(
    count: int,
    start_port: int,
    attempts: int = 10,
    timeout: float = 6.0,
    *,
    host: str = LOCALHOST,
) -> List[int]:
    """Reserve ``count`` strictly increasing ports with sequential probes.

    Each probe starts one above the port found by the previous one.
    """

    ports: List[int] = []
    next_port = start_port
    for _ in range(count):
        port = await find_free_port(next_port, attempts, timeout, host=host)
        ports.append(port)
        next_port = port + 1
    return ports
