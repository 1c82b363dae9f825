"""
Testnet faucet client.

Not part of the sync engine itself: callers use it to get coins sent to an
address they then watch with a FundingWatcher.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from chainsync.address import AddressType, InvalidAddressError, decode_address, encode_cashaddr
from chainsync.constants import CASHADDR_PREFIX, DEFAULT_FAUCET_URL
from chainsync.models import NetworkType


class FaucetError(Exception):
    """The faucet could not be reached or refused the request outright."""


@dataclass
class FaucetResult:
    txid: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class FaucetClient:
    def __init__(
        self,
        url: str = DEFAULT_FAUCET_URL,
        network: NetworkType = NetworkType.CHIPNET,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.network = NetworkType(network)
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def normalize_address(self, address: str) -> str:
        """
        Return the prefixed CashAddr form the faucet expects.

        Raises:
            InvalidAddressError: Malformed address
            FaucetError: P2SH address (faucets only pay to P2PKH)
        """
        decoded = decode_address(address, self.network)
        if decoded.address_type != AddressType.P2PKH:
            raise FaucetError(
                "Faucet only supports P2PKH (wallet) addresses; fund contracts from a wallet"
            )
        prefix = decoded.prefix or CASHADDR_PREFIX[self.network]
        return encode_cashaddr(prefix, decoded.address_type, decoded.hash, decoded.token_aware)

    async def request_funds(self, address: str) -> FaucetResult:
        try:
            cashaddr = self.normalize_address(address)
        except InvalidAddressError as e:
            raise FaucetError(f"Invalid address format: {e}") from e

        logger.info(f"Requesting faucet funds for {cashaddr}")
        try:
            response = await self.client.post(self.url, json={"cashaddr": cashaddr})
        except httpx.HTTPError as e:
            logger.error(f"Faucet unreachable: {e}")
            raise FaucetError(f"Faucet unreachable: {e}") from e

        logger.debug(f"Faucet response {response.status_code}: {response.text[:200]}")
        if response.status_code == 405:
            # This faucet answers 405 for addresses it does not accept
            return FaucetResult(error="Faucet rejected the address (expects a P2PKH testnet address)")

        try:
            data = response.json()
        except ValueError:
            return FaucetResult(error=f"Faucet returned non-JSON response ({response.status_code})")

        if not isinstance(data, dict):
            return FaucetResult(error=f"Unexpected faucet response: {data!r}")
        if data.get("txId"):
            logger.info(f"Faucet sent funds: {data['txId']}")
            return FaucetResult(txid=data["txId"])
        if data.get("error"):
            return FaucetResult(error=str(data["error"]))
        if response.is_error:
            return FaucetResult(error=f"Faucet error: HTTP {response.status_code}")
        # Accepted without a txid: the payment shows up on the next poll
        return FaucetResult()

    async def close(self) -> None:
        await self.client.aclose()
