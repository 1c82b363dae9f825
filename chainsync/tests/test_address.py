"""
Tests for chainsync.address
"""

from __future__ import annotations

import pytest
from _chainsync_test_helpers import (
    CHIPNET_P2PKH,
    CHIPNET_P2SH,
    CHIPNET_P2SH32,
    CHIPNET_P2SH32_SCRIPT,
    CHIPNET_P2SH32_SCRIPTHASH,
    MAINNET_P2PKH,
    MAINNET_P2PKH_11,
    MAINNET_P2PKH_LEGACY,
    MAINNET_P2PKH_SCRIPT,
    MAINNET_P2PKH_SCRIPTHASH,
    TXID_A,
)

from chainsync.address import (
    AddressType,
    DecodedAddress,
    InvalidAddressError,
    address_to_locking_bytecode,
    address_to_scripthash,
    decode_address,
    decode_cashaddr,
    encode_cashaddr,
    is_address_like,
    locking_bytecode,
)
from chainsync.models import NetworkType


class TestScripthash:
    def test_p2pkh_cashaddr(self):
        assert address_to_locking_bytecode(MAINNET_P2PKH).hex() == MAINNET_P2PKH_SCRIPT
        assert address_to_scripthash(MAINNET_P2PKH) == MAINNET_P2PKH_SCRIPTHASH

    def test_p2sh32_cashaddr(self):
        script = address_to_locking_bytecode(CHIPNET_P2SH32, NetworkType.CHIPNET)
        assert script.hex() == CHIPNET_P2SH32_SCRIPT
        assert address_to_scripthash(CHIPNET_P2SH32, NetworkType.CHIPNET) == (
            CHIPNET_P2SH32_SCRIPTHASH
        )

    def test_legacy_matches_cashaddr(self):
        assert address_to_scripthash(MAINNET_P2PKH_LEGACY) == MAINNET_P2PKH_SCRIPTHASH

    def test_bare_cashaddr_uses_network_prefix(self):
        bare = MAINNET_P2PKH.split(":", 1)[1]
        assert address_to_scripthash(bare, NetworkType.MAINNET) == MAINNET_P2PKH_SCRIPTHASH

    def test_bare_cashaddr_wrong_network_rejected(self):
        bare = MAINNET_P2PKH.split(":", 1)[1]
        with pytest.raises(InvalidAddressError):
            address_to_scripthash(bare, NetworkType.CHIPNET)

    def test_uppercase_accepted(self):
        assert address_to_scripthash(MAINNET_P2PKH.upper()) == MAINNET_P2PKH_SCRIPTHASH

    def test_deterministic(self):
        assert address_to_scripthash(CHIPNET_P2SH32) == address_to_scripthash(CHIPNET_P2SH32)

    def test_output_format(self):
        digest = address_to_scripthash(CHIPNET_P2PKH)
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)


class TestInvalidAddresses:
    @pytest.mark.parametrize(
        "address",
        [
            "",
            "   ",
            "not-an-address",
            "bitcoincash:",
            MAINNET_P2PKH[:-1] + ("q" if MAINNET_P2PKH[-1] != "q" else "p"),
            "bitcoincash:qpm2qsznhks23z7629mms6s4cwef74vcwvy22gdx6A",
            "bitcoincash:qpm2qsznhks23z7629mms6s4cwef74vcwvy22gdx6b",
            "bitcoincash:qpm2qsznhks23z7629mms6s4cwef74vcwvy22gdx6i",
            "1BpEi6DfDAUFd7GtittLSdBeYJvcoaVggv",
        ],
    )
    def test_rejected(self, address):
        with pytest.raises(InvalidAddressError):
            address_to_scripthash(address)

    def test_error_is_value_error(self):
        assert issubclass(InvalidAddressError, ValueError)

    def test_wrong_prefix_checksum_fails(self):
        body = MAINNET_P2PKH.split(":", 1)[1]
        with pytest.raises(InvalidAddressError):
            decode_cashaddr(f"bchtest:{body}")


class TestCashAddrCodec:
    def test_encode_known_vectors(self):
        h = bytes([0x11] * 20)
        assert encode_cashaddr("bchtest", AddressType.P2PKH, h) == CHIPNET_P2PKH
        assert encode_cashaddr("bitcoincash", "p2pkh", h) == MAINNET_P2PKH_11
        assert encode_cashaddr("bchtest", AddressType.P2SH, h) == CHIPNET_P2SH

    def test_decode_p2sh32(self):
        decoded = decode_cashaddr(CHIPNET_P2SH32)
        assert decoded.address_type == AddressType.P2SH
        assert decoded.prefix == "bchtest"
        assert len(decoded.hash) == 32
        assert not decoded.token_aware

    def test_token_aware_same_script(self):
        decoded = decode_cashaddr(CHIPNET_P2PKH)
        token_addr = encode_cashaddr("bchtest", decoded.address_type, decoded.hash, True)
        assert token_addr.startswith("bchtest:z")

        token_decoded = decode_cashaddr(token_addr)
        assert token_decoded.token_aware
        assert locking_bytecode(token_decoded) == locking_bytecode(decoded)

    def test_unsupported_hash_length(self):
        with pytest.raises(InvalidAddressError):
            encode_cashaddr("bitcoincash", AddressType.P2PKH, b"\x00" * 21)

    def test_p2pkh_requires_20_bytes(self):
        decoded = DecodedAddress(address_type=AddressType.P2PKH, hash=b"\x00" * 32)
        with pytest.raises(InvalidAddressError):
            locking_bytecode(decoded)

    def test_legacy_decode(self):
        decoded = decode_address(MAINNET_P2PKH_LEGACY)
        assert decoded.is_p2pkh
        assert decoded.prefix is None
        assert decoded.hash.hex() == MAINNET_P2PKH_SCRIPT[6:46]


class TestIsAddressLike:
    @pytest.mark.parametrize(
        "value",
        [MAINNET_P2PKH, CHIPNET_P2SH32, "bchreg:qqg3zy", "qpm2qsznhks23z7629mms6s4cwef74vcwvy"],
    )
    def test_addresses(self, value):
        assert is_address_like(value)

    @pytest.mark.parametrize("value", [TXID_A, "0" * 64, "foo:bar"])
    def test_not_addresses(self, value):
        assert not is_address_like(value)
