"""Waiting helpers: marker-deletion polling and first-of races."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable

__all__ = ["DEFAULT_POLL_INTERVAL", "wait_for_first", "when_deleted"]

DEFAULT_POLL_INTERVAL = 1.0

_LOGGER = logging.getLogger("codecli.watch")


async def when_deleted(path: Path, *, interval: float = DEFAULT_POLL_INTERVAL) -> None:
    """Return once ``path`` no longer exists, checking every ``interval`` seconds."""

    while path.exists():
        await asyncio.sleep(interval)
    _LOGGER.debug("Marker %s deleted", path)


async def wait_for_first(*aws: Awaitable[Any]) -> None:
    """Return as soon as any awaitable finishes; cancel the others.

    A waiter that fails counts as finished, matching a marker watcher whose
    file vanished together with its directory.
    """

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.debug("Waiter finished with %r", task.exception())
