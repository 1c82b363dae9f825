"""
UTXO queries against the Electrum index.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import ValidationError

from chainsync.address import address_to_scripthash
from chainsync.connection import ConnectionManager
from chainsync.models import NetworkType, Utxo, total_value
from chainsync.network import ElectrumError


class UtxoQuery:
    """
    Fetch and normalize the unspent outputs of an address.

    Errors propagate to the caller. Polling loops are expected to catch and
    log them; one-shot callers see them directly.
    """

    def __init__(self, connections: ConnectionManager, network: NetworkType = NetworkType.MAINNET):
        self.connections = connections
        self.network = NetworkType(network)

    async def fetch(self, address: str) -> list[Utxo]:
        # Digest first: a malformed address must fail before any network call
        scripthash = address_to_scripthash(address, self.network)
        connection = await self.connections.get_connection()
        raw = await connection.request("blockchain.scripthash.listunspent", scripthash)
        utxos = parse_listunspent(raw)
        logger.debug(f"Found {len(utxos)} UTXOs ({total_value(utxos)} sats) for {address}")
        return utxos

    async def fetch_balance(self, address: str) -> int:
        return total_value(await self.fetch(address))


def parse_listunspent(raw: Any) -> list[Utxo]:
    """Map a blockchain.scripthash.listunspent result to Utxo records."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ElectrumError(f"Unexpected listunspent result: {raw!r}")

    utxos: list[Utxo] = []
    for entry in raw:
        try:
            utxos.append(
                Utxo(
                    txid=entry["tx_hash"],
                    vout=entry["tx_pos"],
                    value=entry["value"],
                    height=entry.get("height", 0),
                )
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise ElectrumError(f"Malformed listunspent entry {entry!r}: {e}") from e
    return utxos
