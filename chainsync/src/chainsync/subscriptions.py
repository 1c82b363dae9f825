"""
Push-based address subscriptions.

Electrum notifications carry only a status hash, so every notification is
treated as a trigger: each active subscription of the notified script hash
re-runs its UTXO query and hands the fresh set to its handler.

Server-side subscriptions die with the connection. While any subscription is
live the registry reconnects on its own after a link drop, re-subscribes
every script hash and re-queries, so changes made while offline still reach
the handlers.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from chainsync.address import address_to_scripthash
from chainsync.connection import ConnectionManager
from chainsync.constants import DEFAULT_POLL_INTERVAL
from chainsync.models import Utxo
from chainsync.network import ElectrumConnection
from chainsync.utxo import UtxoQuery

SUBSCRIBE_METHOD = "blockchain.scripthash.subscribe"
UNSUBSCRIBE_METHOD = "blockchain.scripthash.unsubscribe"

UtxoHandler = Callable[[list[Utxo]], None]
Unsubscribe = Callable[[], None]


@dataclass(eq=False)
class Subscription:
    address: str
    scripthash: str
    handler: UtxoHandler
    active: bool = True
    # Set once the initial UTXO set was delivered
    synced: bool = False
    # Serializes refreshes so the handler sees results in order
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SubscriptionRegistry:
    def __init__(
        self,
        connections: ConnectionManager,
        query: UtxoQuery,
        reconnect_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.connections = connections
        self.query = query
        self.reconnect_interval = reconnect_interval
        self._subscriptions: dict[str, list[Subscription]] = {}
        # Script hashes subscribed on the current server connection
        self._server_subscribed: set[str] = set()
        # In-flight subscribe requests, shared by concurrent callers
        self._server_pending: dict[tuple[ElectrumConnection, str], asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closed = False
        self._remove_listeners = [
            connections.add_notification_listener(SUBSCRIBE_METHOD, self._on_notification),
            connections.add_connect_listener(self._on_connect),
            connections.add_disconnect_listener(self._on_disconnect),
        ]

    def subscriptions_for(self, scripthash: str) -> list[Subscription]:
        return list(self._subscriptions.get(scripthash, []))

    async def subscribe(self, address: str, on_update: UtxoHandler) -> Unsubscribe:
        """
        Watch an address for on-chain changes.

        `on_update` is called with the current UTXO set before this returns,
        then again after every server notification for the address and after
        every reconnect.

        Raises:
            InvalidAddressError: Before any network call, for malformed addresses
            ConnectionFailure / ElectrumError: If the initial query fails
        """
        scripthash = address_to_scripthash(address, self.query.network)
        subscription = Subscription(address=address, scripthash=scripthash, handler=on_update)
        self._subscriptions.setdefault(scripthash, []).append(subscription)

        try:
            async with subscription.lock:
                utxos = await self.query.fetch(address)
                subscription.handler(utxos)
                subscription.synced = True
            await self._ensure_server_subscription(scripthash)
        except BaseException:
            self._remove(subscription)
            raise

        logger.info(f"Subscribed to {address}")
        return lambda: self._unsubscribe(subscription)

    async def _ensure_server_subscription(self, scripthash: str) -> None:
        connection = await self.connections.get_connection()
        if scripthash in self._server_subscribed:
            return
        key = (connection, scripthash)
        pending = self._server_pending.get(key)
        if pending is None:
            pending = asyncio.create_task(self._server_subscribe(connection, scripthash))
            self._server_pending[key] = pending
            pending.add_done_callback(lambda _: self._server_pending.pop(key, None))
        # Shielded so one caller giving up does not abort the request for the others
        await asyncio.shield(pending)

    async def _server_subscribe(self, connection: ElectrumConnection, scripthash: str) -> None:
        await connection.request(SUBSCRIBE_METHOD, scripthash)
        # A reply from an already replaced connection says nothing about the new one
        if connection is self.connections.current:
            self._server_subscribed.add(scripthash)

    def _on_notification(self, params: list[Any]) -> None:
        if not params:
            return
        scripthash = params[0]
        subscriptions = self.subscriptions_for(scripthash)
        if not subscriptions:
            logger.debug(f"Notification for unwatched script hash {scripthash}")
            return
        for subscription in subscriptions:
            self._spawn(self._refresh(subscription))

    async def _refresh(self, subscription: Subscription) -> None:
        async with subscription.lock:
            if not subscription.active:
                return
            try:
                utxos = await self.query.fetch(subscription.address)
            except Exception as e:
                logger.warning(f"Refresh failed for {subscription.address}: {e}")
                return
            # The fetch cannot be cancelled, only its effect
            if not subscription.active:
                return
            try:
                subscription.handler(utxos)
            except Exception as e:
                logger.error(f"Subscription handler for {subscription.address} failed: {e}")

    def _on_connect(self, connection: ElectrumConnection) -> None:
        # Server-side subscriptions die with the old connection
        self._server_subscribed.clear()
        for scripthash in list(self._subscriptions):
            self._spawn(self._resubscribe(scripthash))

    def _on_disconnect(self, connection: ElectrumConnection) -> None:
        if self._closed or not self._subscriptions:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())
        self._tasks.add(self._reconnect_task)
        self._reconnect_task.add_done_callback(self._tasks.discard)

    async def _reconnect(self) -> None:
        attempt = 0
        while not self._closed and self._subscriptions and not self.connections.closed:
            attempt += 1
            try:
                await self.connections.get_connection()
            except Exception as e:
                if self.connections.closed:
                    return
                logger.warning(
                    f"Reconnect attempt {attempt} failed, retrying in "
                    f"{self.reconnect_interval}s: {e}"
                )
                await asyncio.sleep(self.reconnect_interval)
            else:
                logger.info(f"Reconnected after {attempt} attempt(s)")
                return

    async def _resubscribe(self, scripthash: str) -> None:
        # Subscriptions still in their initial subscribe() do their own setup
        subscriptions = [s for s in self.subscriptions_for(scripthash) if s.synced]
        if not subscriptions:
            return
        try:
            await self._ensure_server_subscription(scripthash)
            logger.debug(f"Re-subscribed {scripthash} after reconnect")
        except Exception as e:
            logger.warning(f"Failed to re-subscribe {scripthash}: {e}")
            return
        for subscription in subscriptions:
            self._spawn(self._refresh(subscription))

    def _unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        self._remove(subscription)
        logger.info(f"Unsubscribed from {subscription.address}")

    def _remove(self, subscription: Subscription) -> None:
        subscription.active = False
        remaining = self._subscriptions.get(subscription.scripthash, [])
        with contextlib.suppress(ValueError):
            remaining.remove(subscription)
        if remaining:
            return

        self._subscriptions.pop(subscription.scripthash, None)
        if subscription.scripthash in self._server_subscribed:
            self._server_subscribed.discard(subscription.scripthash)
            connection = self.connections.current
            if connection is not None:
                self._spawn(self._server_unsubscribe(connection, subscription.scripthash))

    async def _server_unsubscribe(self, connection: ElectrumConnection, scripthash: str) -> None:
        # Not every server implements unsubscribe; stale notifications are ignored anyway
        try:
            await connection.request(UNSUBSCRIBE_METHOD, scripthash)
        except Exception as e:
            logger.debug(f"Server unsubscribe for {scripthash} failed: {e}")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        self._closed = True
        for remove in self._remove_listeners:
            remove()
        for subscriptions in list(self._subscriptions.values()):
            for subscription in subscriptions:
                subscription.active = False
        self._subscriptions.clear()
        self._server_subscribed.clear()
        tasks = [*self._tasks, *self._server_pending.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
