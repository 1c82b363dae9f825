"""
Network constants shared across chainsync modules.
"""

from __future__ import annotations

from chainsync.models import NetworkType

SATS_PER_BCH = 100_000_000

# CashAddr human-readable prefixes
CASHADDR_PREFIX: dict[NetworkType, str] = {
    NetworkType.MAINNET: "bitcoincash",
    NetworkType.CHIPNET: "bchtest",
    NetworkType.TESTNET4: "bchtest",
    NetworkType.REGTEST: "bchreg",
}

KNOWN_CASHADDR_PREFIXES = frozenset(CASHADDR_PREFIX.values())

# Legacy base58check version bytes (same values as Bitcoin)
LEGACY_P2PKH_VERSIONS = frozenset({0x00, 0x6F})
LEGACY_P2SH_VERSIONS = frozenset({0x05, 0xC4})

# Default Electrum (Fulcrum) servers: (host, TLS port)
DEFAULT_ELECTRUM_SERVERS: dict[NetworkType, tuple[str, int]] = {
    NetworkType.MAINNET: ("bch.imaginary.cash", 50002),
    NetworkType.CHIPNET: ("chipnet.imaginary.cash", 50002),
    NetworkType.TESTNET4: ("testnet4.imaginary.cash", 50002),
    NetworkType.REGTEST: ("127.0.0.1", 50001),
}

DEFAULT_EXPLORER_URLS: dict[NetworkType, str] = {
    NetworkType.MAINNET: "https://explorer.bitcoinunlimited.info",
    NetworkType.CHIPNET: "https://chipnet.imaginary.cash",
    NetworkType.TESTNET4: "https://testnet4.imaginary.cash",
    NetworkType.REGTEST: "http://127.0.0.1:3000",
}

ELECTRUM_PROTOCOL_VERSION = "1.4"

DEFAULT_FAUCET_URL = "https://rest-unstable.mainnet.cash/faucet/get_testnet_bch"

# Funding watcher defaults (seconds)
DEFAULT_POLL_INTERVAL = 1.5
DEFAULT_FUNDING_TIMEOUT = 300.0

# 2MB, matches the largest listunspent replies seen on busy addresses
DEFAULT_MAX_MESSAGE_SIZE = 2097152
