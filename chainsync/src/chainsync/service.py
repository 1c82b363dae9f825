"""
ChainSyncService: the public entry points of the sync engine.

Composes the shared ConnectionManager with UTXO queries, push
subscriptions and funding watchers. Build one per process (or per server)
and share it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from loguru import logger

from chainsync.address import is_address_like
from chainsync.connection import ConnectionManager
from chainsync.constants import (
    DEFAULT_EXPLORER_URLS,
    DEFAULT_FUNDING_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    SATS_PER_BCH,
)
from chainsync.funding import FundingWatcher, StatusCallback
from chainsync.models import FundingStatus, NetworkType, Utxo
from chainsync.subscriptions import SubscriptionRegistry, Unsubscribe, UtxoHandler
from chainsync.utxo import UtxoQuery

if TYPE_CHECKING:
    from chainsync.settings import ChainSyncSettings


class ChainSyncService:
    def __init__(
        self,
        connections: ConnectionManager,
        network: NetworkType = NetworkType.MAINNET,
        explorer_url: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        funding_timeout: float = DEFAULT_FUNDING_TIMEOUT,
        accept_unconfirmed: bool = True,
    ):
        self.network = NetworkType(network)
        self.connections = connections
        self.explorer_url = (explorer_url or DEFAULT_EXPLORER_URLS[self.network]).rstrip("/")
        self.poll_interval = poll_interval
        self.funding_timeout = funding_timeout
        self.accept_unconfirmed = accept_unconfirmed
        self.query = UtxoQuery(connections, self.network)
        self.subscriptions = SubscriptionRegistry(
            connections, self.query, reconnect_interval=poll_interval
        )

    @classmethod
    def from_settings(cls, settings: ChainSyncSettings) -> ChainSyncService:
        host, port = settings.get_electrum_server()
        connections = ConnectionManager(
            host=host,
            port=port,
            use_tls=settings.electrum.use_tls,
            tls_verify=settings.electrum.tls_verify,
            timeout=settings.electrum.request_timeout,
            keepalive_interval=settings.electrum.keepalive_interval,
        )
        return cls(
            connections,
            network=settings.network_config.network,
            explorer_url=settings.get_explorer_url(),
            poll_interval=settings.funding.poll_interval,
            funding_timeout=settings.funding.timeout,
            accept_unconfirmed=settings.funding.accept_unconfirmed,
        )

    async def fetch_utxos(self, address: str) -> list[Utxo]:
        """One-shot UTXO query. Errors propagate."""
        return await self.query.fetch(address)

    async def fetch_balance(self, address: str) -> int:
        return await self.query.fetch_balance(address)

    async def subscribe_to_address(self, address: str, on_update: UtxoHandler) -> Unsubscribe:
        return await self.subscriptions.subscribe(address, on_update)

    def watch_funding(
        self,
        address: str,
        required_amount: int,
        timeout: float | None = None,
    ) -> FundingWatcher:
        """Create a watcher without starting it (see FundingWatcher.watch / run)."""
        return FundingWatcher(
            self.query,
            address,
            required_amount,
            timeout=timeout if timeout is not None else self.funding_timeout,
            poll_interval=self.poll_interval,
            accept_unconfirmed=self.accept_unconfirmed,
        )

    async def poll_for_funding(
        self,
        address: str,
        required_amount: int,
        on_update: StatusCallback | None = None,
        timeout: float | None = None,
    ) -> FundingStatus:
        """
        Wait until `address` holds at least `required_amount` sats.

        Intermediate statuses go to on_update. Cancelling the awaiting task
        stops the watcher.

        Returns:
            The confirmed FundingStatus

        Raises:
            FundingTimeoutError, FundingFailedError
        """
        watcher = self.watch_funding(address, required_amount, timeout=timeout)
        return await watcher.run(on_update)

    def get_explorer_link(self, value: str) -> str:
        """Explorer URL for an address or a transaction id."""
        value = value.strip()
        kind = "address" if is_address_like(value) else "tx"
        return f"{self.explorer_url}/{kind}/{value}"

    def payment_uri(self, address: str, amount_sats: int, label: str | None = None) -> str:
        """BIP-21 style payment request, e.g. for a QR code."""
        amount = (Decimal(amount_sats) / SATS_PER_BCH).normalize()
        uri = f"{address}?amount={amount:f}"
        if label:
            uri += f"&label={quote(label)}"
        return uri

    async def close(self) -> None:
        await self.subscriptions.close()
        await self.connections.close()
        logger.debug("ChainSyncService closed")

    async def __aenter__(self) -> ChainSyncService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
