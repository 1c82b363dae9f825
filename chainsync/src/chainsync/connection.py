"""
Shared Electrum connection management.

ConnectionManager owns the one live connection to the index server. It is
created once and handed to every consumer (queries, subscriptions, watchers).

Connection lifecycle:
    Disconnected -> Connecting -> Connected -> (link failure) -> Disconnected

Concurrent callers of get_connection() while no connection exists share a
single in-flight connect attempt. A failed attempt is not cached: all of its
waiters see the failure and the next call starts a fresh attempt. When the
live connection drops, the cached reference is cleared so the next caller
reconnects transparently.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from chainsync.network import ElectrumConnection, open_electrum_connection
from chainsync.tasks import run_periodic_task

Connector = Callable[[], Awaitable[ElectrumConnection]]
ConnectListener = Callable[[ElectrumConnection], None]
DisconnectListener = Callable[[ElectrumConnection], None]


class ConnectionManager:
    """Single-flight owner of the shared Electrum connection."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 50002,
        use_tls: bool = True,
        tls_verify: bool = False,
        timeout: float = 30.0,
        keepalive_interval: float = 60.0,
        connector: Connector | None = None,
    ):
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.tls_verify = tls_verify
        self.timeout = timeout
        self.keepalive_interval = keepalive_interval
        self._connector = connector or self._open
        self._connection: ElectrumConnection | None = None
        self._in_flight: asyncio.Task[ElectrumConnection] | None = None
        self._lock = asyncio.Lock()
        self._keepalive_task: asyncio.Task[None] | None = None
        self._connect_listeners: list[ConnectListener] = []
        self._disconnect_listeners: list[DisconnectListener] = []
        self._notification_listeners: dict[str, list[Callable[[list[Any]], None]]] = {}
        self._closed = False
        self.connect_attempts = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current(self) -> ElectrumConnection | None:
        """The live connection, or None if not connected."""
        if self._connection is not None and self._connection.is_connected():
            return self._connection
        return None

    async def get_connection(self) -> ElectrumConnection:
        """
        Return the live connection, connecting if needed.

        Raises:
            ConnectionFailure: If the (shared) connect attempt fails
        """
        connection = self.current
        if connection is not None:
            return connection

        async with self._lock:
            connection = self.current
            if connection is not None:
                return connection
            if self._closed:
                raise RuntimeError("ConnectionManager is closed")
            if self._in_flight is None:
                self._in_flight = asyncio.create_task(self._connect())
            in_flight = self._in_flight

        # Shielded so one waiter giving up does not abort the attempt for the others
        return await asyncio.shield(in_flight)

    async def _connect(self) -> ElectrumConnection:
        self.connect_attempts += 1
        try:
            connection = await self._connector()
        except Exception as e:
            logger.warning(f"Connect attempt to {self.host}:{self.port} failed: {e}")
            raise
        finally:
            self._in_flight = None

        connection.add_disconnect_listener(self._on_disconnect)
        connection.add_notification_listener(self._dispatch_notification)
        self._connection = connection
        self._start_keepalive(connection)

        for listener in list(self._connect_listeners):
            try:
                listener(connection)
            except Exception as e:
                logger.error(f"Connect listener failed: {e}")
        return connection

    async def _open(self) -> ElectrumConnection:
        return await open_electrum_connection(
            self.host,
            self.port,
            use_tls=self.use_tls,
            tls_verify=self.tls_verify,
            timeout=self.timeout,
        )

    def _on_disconnect(self, connection: ElectrumConnection) -> None:
        # A late event from an already replaced connection must not reset the new one
        if self._connection is not connection:
            return
        logger.info(f"Electrum connection to {self.host}:{self.port} lost, will reconnect on demand")
        self._connection = None
        self._in_flight = None
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

        for listener in list(self._disconnect_listeners):
            try:
                listener(connection)
            except Exception as e:
                logger.error(f"Disconnect listener failed: {e}")

    def _start_keepalive(self, connection: ElectrumConnection) -> None:
        if self.keepalive_interval <= 0:
            return

        async def ping() -> None:
            try:
                await connection.request("server.ping")
            except Exception as e:
                logger.warning(f"Keepalive ping failed, dropping connection: {e}")
                await connection.close()

        self._keepalive_task = asyncio.create_task(
            run_periodic_task(
                name="electrum-keepalive",
                callback=ping,
                interval=self.keepalive_interval,
                running_check=connection.is_connected,
            )
        )

    def add_connect_listener(self, listener: ConnectListener) -> Callable[[], None]:
        """Call `listener(connection)` after every successful (re)connect."""
        self._connect_listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._connect_listeners.remove(listener)

        return remove

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        """
        Call `listener(connection)` when the live connection is lost.

        Not called for connections dropped by close().
        """
        self._disconnect_listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._disconnect_listeners.remove(listener)

        return remove

    def add_notification_listener(
        self, method: str, listener: Callable[[list[Any]], None]
    ) -> Callable[[], None]:
        """
        Register a handler for server notifications of `method`.

        Handlers are kept across reconnects.
        """
        self._notification_listeners.setdefault(method, []).append(listener)

        def remove() -> None:
            listeners = self._notification_listeners.get(method, [])
            with contextlib.suppress(ValueError):
                listeners.remove(listener)

        return remove

    def _dispatch_notification(self, method: str, params: list[Any]) -> None:
        for listener in list(self._notification_listeners.get(method, [])):
            try:
                listener(params)
            except Exception as e:
                logger.error(f"Notification handler for {method} failed: {e}")

    async def close(self) -> None:
        self._closed = True
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._keepalive_task
            self._keepalive_task = None
        if self._in_flight is not None:
            self._in_flight.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._in_flight
        connection = self._connection
        self._connection = None
        if connection is not None:
            await connection.close()
