"""
Shared async task utilities.

Periodic background tasks (connection keepalive) and cancellable waits
(funding watcher poll cadence).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from loguru import logger


async def run_periodic_task(
    name: str,
    callback: Callable[[], Coroutine[Any, Any, None]],
    interval: float,
    initial_delay: float = 0.0,
    running_check: Callable[[], bool] | None = None,
) -> None:
    """
    Run a callback periodically until cancelled or running_check returns False.

    Args:
        name: Human-readable task name for logging
        callback: Async function to call each interval
        interval: Seconds between invocations
        initial_delay: Seconds to wait before first invocation
        running_check: Optional callable returning False to stop the task
    """
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)

    while running_check is None or running_check():
        try:
            await asyncio.sleep(interval)
            if running_check is not None and not running_check():
                break
            await callback()
        except asyncio.CancelledError:
            logger.debug(f"{name} task cancelled")
            break
        except Exception as e:
            logger.warning(f"Error in {name}: {e}")

    logger.debug(f"{name} task stopped")


async def wait_for_stop(stop_event: asyncio.Event, delay: float) -> bool:
    """
    Sleep for up to `delay` seconds, waking early if stop_event is set.

    Returns:
        True if the event was set (the caller should stop), False on timeout
    """
    if stop_event.is_set():
        return True
    if delay <= 0:
        await asyncio.sleep(0)
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


def parse_server_address(server: str, default_port: int = 50002) -> tuple[str, int]:
    """
    Parse an Electrum server address string into host and port.

    Args:
        server: Server address in "host:port" or "host" format
        default_port: Port to use if not specified (default: 50002, TLS)

    Returns:
        Tuple of (host, port)
    """
    host, sep, port = server.strip().rpartition(":")
    if not sep:
        return port, default_port
    return host, int(port)
