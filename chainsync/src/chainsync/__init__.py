"""
chainsync - Bitcoin Cash UTXO sync over Electrum

Address digests, a shared Electrum connection, UTXO queries, push
subscriptions and bounded-time funding watchers.
"""

from chainsync.version import __version__

from chainsync.address import InvalidAddressError, address_to_scripthash
from chainsync.connection import ConnectionManager
from chainsync.funding import (
    FundingError,
    FundingFailedError,
    FundingStoppedError,
    FundingTimeoutError,
    FundingWatcher,
)
from chainsync.models import FundingState, FundingStatus, NetworkType, Utxo
from chainsync.network import ConnectionFailure, ElectrumError
from chainsync.service import ChainSyncService

__all__ = [
    "__version__",
    "ChainSyncService",
    "ConnectionManager",
    "ConnectionFailure",
    "ElectrumError",
    "FundingError",
    "FundingFailedError",
    "FundingState",
    "FundingStatus",
    "FundingStoppedError",
    "FundingTimeoutError",
    "FundingWatcher",
    "InvalidAddressError",
    "NetworkType",
    "Utxo",
    "address_to_scripthash",
]
