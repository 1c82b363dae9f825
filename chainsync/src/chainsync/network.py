"""
Electrum JSON-RPC connection over TCP/TLS.

One ElectrumConnection multiplexes concurrent requests over a single socket:
responses are matched to requests by id, and server-pushed notifications are
handed to registered listeners. A background read loop owns the reader; when
it stops for any reason the connection is dead for good.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import ssl
from collections.abc import Callable
from typing import Any

from loguru import logger

from chainsync.constants import DEFAULT_MAX_MESSAGE_SIZE, ELECTRUM_PROTOCOL_VERSION
from chainsync.version import CLIENT_NAME

NotificationListener = Callable[[str, list[Any]], None]
DisconnectListener = Callable[["ElectrumConnection"], None]


class ConnectionFailure(Exception):
    """The link to the Electrum server could not be opened or was lost."""


class ElectrumError(Exception):
    """The server answered a request with an error object (or garbage)."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class ElectrumConnection:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        request_timeout: float = 30.0,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        label: str = "electrum",
    ):
        self.reader = reader
        self.writer = writer
        self.request_timeout = request_timeout
        self.max_message_size = max_message_size
        self.label = label
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._notification_listeners: list[NotificationListener] = []
        self._disconnect_listeners: list[DisconnectListener] = []
        self._connected = True
        self._send_lock = asyncio.Lock()
        self._read_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start the background read loop."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(
                self._read_loop(), name=f"electrum-reader-{self.label}"
            )

    def is_connected(self) -> bool:
        return self._connected

    def add_notification_listener(self, listener: NotificationListener) -> None:
        self._notification_listeners.append(listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._disconnect_listeners.append(listener)

    async def request(self, method: str, *params: Any, timeout: float | None = None) -> Any:
        """
        Send a JSON-RPC request and wait for its result.

        Raises:
            ConnectionFailure: If the link is down or drops before the reply
            ElectrumError: If the server returns an error object
        """
        if not self._connected:
            raise ConnectionFailure(f"Connection to {self.label} is closed")

        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send(json.dumps(payload).encode() + b"\n")
            logger.trace(f"{self.label} -> {method} #{request_id}")
            return await asyncio.wait_for(future, timeout or self.request_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionFailure(f"{method} timed out on {self.label}") from e
        finally:
            self._pending.pop(request_id, None)

    async def _send(self, data: bytes) -> None:
        async with self._send_lock:
            if not self._connected:
                raise ConnectionFailure(f"Connection to {self.label} is closed")
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (BrokenPipeError, ConnectionResetError, OSError) as e:
                self._mark_disconnected(f"send failed: {e}")
                raise ConnectionFailure(f"Send failed: {e}") from e

    async def _read_loop(self) -> None:
        reason = "closed by peer"
        try:
            while self._connected:
                line = await self.reader.readuntil(b"\n")
                if len(line) > self.max_message_size:
                    reason = f"message too large ({len(line)} bytes)"
                    break
                self._handle_line(line)
        except asyncio.IncompleteReadError:
            reason = "closed by peer"
        except asyncio.LimitOverrunError:
            reason = f"message too large (>{self.max_message_size} bytes)"
        except (ConnectionResetError, OSError) as e:
            reason = f"read failed: {e}"
        except asyncio.CancelledError:
            reason = "reader cancelled"
        finally:
            self._mark_disconnected(reason)

    def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"{self.label}: dropping non-JSON line ({len(line)} bytes)")
            return
        if not isinstance(message, dict):
            logger.warning(f"{self.label}: dropping unexpected message {message!r}")
            return

        message_id = message.get("id")
        if message_id is None:
            method = message.get("method")
            if method:
                self._dispatch_notification(method, message.get("params") or [])
            return

        future = self._pending.get(message_id)
        if future is None or future.done():
            logger.debug(f"{self.label}: response for unknown request #{message_id}")
            return

        error = message.get("error")
        if error:
            if isinstance(error, dict):
                future.set_exception(ElectrumError(str(error.get("message")), error.get("code")))
            else:
                future.set_exception(ElectrumError(str(error)))
        else:
            future.set_result(message.get("result"))

    def _dispatch_notification(self, method: str, params: list[Any]) -> None:
        logger.trace(f"{self.label} <- notification {method}")
        for listener in list(self._notification_listeners):
            try:
                listener(method, params)
            except Exception as e:
                logger.error(f"Notification listener failed for {method}: {e}")

    def _mark_disconnected(self, reason: str) -> None:
        if not self._connected:
            return
        self._connected = False
        logger.info(f"Disconnected from {self.label}: {reason}")

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionFailure(f"Connection lost: {reason}"))
        self._pending.clear()

        with contextlib.suppress(Exception):
            self.writer.close()

        for listener in list(self._disconnect_listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Disconnect listener failed: {e}")

    async def close(self) -> None:
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
        self._mark_disconnected("closed locally")
        with contextlib.suppress(Exception):
            await self.writer.wait_closed()


def _make_ssl_context(verify: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        # Most public Fulcrum servers use self-signed certificates
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def open_electrum_connection(
    host: str,
    port: int,
    use_tls: bool = True,
    tls_verify: bool = False,
    timeout: float = 30.0,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    client_name: str = CLIENT_NAME,
    protocol_version: str = ELECTRUM_PROTOCOL_VERSION,
) -> ElectrumConnection:
    """Open a connection, start its reader and perform the server.version handshake."""
    label = f"{host}:{port}"
    try:
        logger.info(f"Connecting to Electrum server {label} (tls={use_tls})")
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                host,
                port,
                ssl=_make_ssl_context(tls_verify) if use_tls else None,
                limit=max_message_size,
            ),
            timeout=timeout,
        )
    except Exception as e:
        logger.error(f"Failed to connect to {label}: {e}")
        raise ConnectionFailure(f"Electrum connection failed: {e}") from e

    connection = ElectrumConnection(
        reader,
        writer,
        request_timeout=timeout,
        max_message_size=max_message_size,
        label=label,
    )
    connection.start()

    try:
        server_version = await connection.request("server.version", client_name, protocol_version)
    except Exception as e:
        await connection.close()
        raise ConnectionFailure(f"Electrum handshake with {label} failed: {e}") from e

    logger.info(f"Connected to {label} ({server_version})")
    return connection
