"""
Address decoding and Electrum script hash derivation.

This module provides:
- CashAddr encoding/decoding (P2PKH, P2SH20, P2SH32, token-aware variants)
- Legacy base58check decoding
- Locking bytecode construction
- Script hash derivation (the key Electrum servers index addresses by)

Uses external libraries for the generic parts:
- bech32: 5-bit/8-bit regrouping (convertbits)
- base58: Base58Check decoding

Everything here is pure: no I/O and no shared state.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

import base58
import bech32 as bech32_lib

from chainsync.constants import (
    CASHADDR_PREFIX,
    KNOWN_CASHADDR_PREFIXES,
    LEGACY_P2PKH_VERSIONS,
    LEGACY_P2SH_VERSIONS,
)
from chainsync.models import NetworkType

CASHADDR_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_MAP = {c: i for i, c in enumerate(CASHADDR_CHARSET)}
_POLYMOD_GENERATORS = (
    0x98F2BC8E61,
    0x79B76D99E2,
    0xF33E5FB3C4,
    0xAE2EABE2A8,
    0x1E4F43E470,
)
_CHECKSUM_LENGTH = 8

# Version byte size bits -> hash length in bytes
_HASH_SIZES = (20, 24, 28, 32, 40, 48, 56, 64)


class InvalidAddressError(ValueError):
    """Raised when an address string cannot be decoded into a locking script."""


class AddressType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"


# CashAddr type bits -> (address type, token aware)
_CASHADDR_TYPES: dict[int, tuple[AddressType, bool]] = {
    0: (AddressType.P2PKH, False),
    1: (AddressType.P2SH, False),
    2: (AddressType.P2PKH, True),
    3: (AddressType.P2SH, True),
}


@dataclass(frozen=True)
class DecodedAddress:
    """Decoded form of an address."""

    address_type: AddressType
    hash: bytes
    prefix: str | None = None  # None for legacy addresses
    token_aware: bool = False

    @property
    def is_p2pkh(self) -> bool:
        return self.address_type == AddressType.P2PKH


# =============================================================================
# CashAddr
# =============================================================================


def _polymod(values: list[int]) -> int:
    c = 1
    for d in values:
        c0 = c >> 35
        c = ((c & 0x07FFFFFFFF) << 5) ^ d
        for i, generator in enumerate(_POLYMOD_GENERATORS):
            if (c0 >> i) & 1:
                c ^= generator
    return c ^ 1


def _prefix_values(prefix: str) -> list[int]:
    return [ord(ch) & 0x1F for ch in prefix] + [0]


def _create_checksum(prefix: str, payload: list[int]) -> list[int]:
    mod = _polymod(_prefix_values(prefix) + payload + [0] * _CHECKSUM_LENGTH)
    return [(mod >> (5 * (7 - i))) & 0x1F for i in range(_CHECKSUM_LENGTH)]


def encode_cashaddr(
    prefix: str,
    address_type: AddressType | str,
    payload_hash: bytes,
    token_aware: bool = False,
) -> str:
    """
    Encode a hash as a CashAddr string.

    Args:
        prefix: Network prefix (bitcoincash, bchtest, bchreg)
        address_type: p2pkh or p2sh
        payload_hash: 20 or 32 byte hash (any CashAddr size is accepted)
        token_aware: Use the token-aware type bits

    Returns:
        Prefixed CashAddr string
    """
    address_type = AddressType(address_type)
    if len(payload_hash) not in _HASH_SIZES:
        raise InvalidAddressError(f"Unsupported hash length: {len(payload_hash)}")

    type_bits = (0 if address_type == AddressType.P2PKH else 1) + (2 if token_aware else 0)
    version = (type_bits << 3) | _HASH_SIZES.index(len(payload_hash))

    payload = bech32_lib.convertbits([version, *payload_hash], 8, 5, True)
    if payload is None:
        raise InvalidAddressError("Failed to regroup CashAddr payload")
    checksum = _create_checksum(prefix, payload)
    return f"{prefix}:" + "".join(CASHADDR_CHARSET[d] for d in payload + checksum)


def decode_cashaddr(address: str, default_prefix: str = "bitcoincash") -> DecodedAddress:
    """
    Decode a CashAddr string, with or without its prefix.

    Args:
        address: CashAddr string
        default_prefix: Prefix assumed when the address has none

    Returns:
        DecodedAddress

    Raises:
        InvalidAddressError: On any charset, case, checksum or length problem
    """
    if address.lower() != address and address.upper() != address:
        raise InvalidAddressError(f"Mixed case CashAddr: {address}")
    address = address.lower()

    if ":" in address:
        prefix, _, body = address.partition(":")
    else:
        prefix, body = default_prefix, address

    if not prefix or not body:
        raise InvalidAddressError(f"Malformed CashAddr: {address}")

    try:
        data = [_CHARSET_MAP[c] for c in body]
    except KeyError as e:
        raise InvalidAddressError(f"Invalid CashAddr character {e} in {address}") from e

    if len(data) <= _CHECKSUM_LENGTH:
        raise InvalidAddressError(f"CashAddr too short: {address}")
    if _polymod(_prefix_values(prefix) + data) != 0:
        raise InvalidAddressError(f"Invalid CashAddr checksum: {address}")

    decoded = bech32_lib.convertbits(data[:-_CHECKSUM_LENGTH], 5, 8, False)
    if not decoded:
        raise InvalidAddressError(f"Invalid CashAddr padding: {address}")

    version, payload_hash = decoded[0], bytes(decoded[1:])
    if version & 0x80:
        raise InvalidAddressError(f"Reserved CashAddr version bit set: {address}")

    type_bits = (version >> 3) & 0x0F
    if type_bits not in _CASHADDR_TYPES:
        raise InvalidAddressError(f"Unknown CashAddr type {type_bits}: {address}")
    expected_size = _HASH_SIZES[version & 0x07]
    if len(payload_hash) != expected_size:
        raise InvalidAddressError(
            f"CashAddr hash length {len(payload_hash)} does not match version ({expected_size})"
        )

    address_type, token_aware = _CASHADDR_TYPES[type_bits]
    return DecodedAddress(
        address_type=address_type,
        hash=payload_hash,
        prefix=prefix,
        token_aware=token_aware,
    )


# =============================================================================
# Legacy base58
# =============================================================================


def decode_legacy_address(address: str) -> DecodedAddress:
    """Decode a legacy base58check P2PKH/P2SH address."""
    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid base58 address: {address}") from e

    if len(decoded) != 21:
        raise InvalidAddressError(f"Invalid legacy address length: {address}")

    version, payload = decoded[0], decoded[1:]
    if version in LEGACY_P2PKH_VERSIONS:
        return DecodedAddress(address_type=AddressType.P2PKH, hash=payload)
    if version in LEGACY_P2SH_VERSIONS:
        return DecodedAddress(address_type=AddressType.P2SH, hash=payload)

    raise InvalidAddressError(f"Unknown address version: {version}")


# =============================================================================
# Locking bytecode and script hash
# =============================================================================


def decode_address(address: str, network: NetworkType | str = NetworkType.MAINNET) -> DecodedAddress:
    """
    Decode any supported address form.

    CashAddr is tried first (prefixed or bare, bare addresses use the
    network's prefix), then legacy base58check.
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError("Empty address")
    address = address.strip()
    default_prefix = CASHADDR_PREFIX[NetworkType(network)]

    if ":" in address:
        return decode_cashaddr(address, default_prefix=default_prefix)

    try:
        return decode_cashaddr(address, default_prefix=default_prefix)
    except InvalidAddressError:
        return decode_legacy_address(address)


def locking_bytecode(decoded: DecodedAddress) -> bytes:
    """Build the locking script paying to a decoded address."""
    if decoded.address_type == AddressType.P2PKH:
        if len(decoded.hash) != 20:
            raise InvalidAddressError(f"P2PKH hash must be 20 bytes, got {len(decoded.hash)}")
        # OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + decoded.hash + bytes([0x88, 0xAC])

    if len(decoded.hash) == 20:
        # OP_HASH160 <20> OP_EQUAL
        return bytes([0xA9, 0x14]) + decoded.hash + bytes([0x87])
    if len(decoded.hash) == 32:
        # OP_HASH256 <32> OP_EQUAL
        return bytes([0xAA, 0x20]) + decoded.hash + bytes([0x87])

    raise InvalidAddressError(f"Unsupported P2SH hash length: {len(decoded.hash)}")


def address_to_locking_bytecode(
    address: str, network: NetworkType | str = NetworkType.MAINNET
) -> bytes:
    return locking_bytecode(decode_address(address, network))


def address_to_scripthash(address: str, network: NetworkType | str = NetworkType.MAINNET) -> str:
    """
    Derive the Electrum script hash for an address.

    SHA256 of the locking bytecode, byte-reversed, hex encoded.

    Args:
        address: CashAddr or legacy address
        network: Network used to resolve bare CashAddr strings

    Returns:
        64-char hex script hash

    Raises:
        InvalidAddressError: If the address cannot be decoded
    """
    script = address_to_locking_bytecode(address, network)
    return hashlib.sha256(script).digest()[::-1].hex()


def is_address_like(value: str) -> bool:
    """
    Classify a string as address-shaped by prefix alone.

    Prefixed CashAddr strings and bare ones (q/p/z/r, which are not hex
    digits and so never start a txid) count as addresses.
    """
    value = value.strip().lower()
    prefix, sep, _ = value.partition(":")
    if sep:
        return prefix in KNOWN_CASHADDR_PREFIXES
    return value[:1] in ("q", "p", "z", "r")
