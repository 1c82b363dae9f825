"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    CHIPNET = "chipnet"
    TESTNET4 = "testnet4"
    REGTEST = "regtest"


class FundingState(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    CONFIRMED = "confirmed"
    TIMEOUT = "timeout"
    ERROR = "error"


TERMINAL_STATES = frozenset({FundingState.CONFIRMED, FundingState.TIMEOUT, FundingState.ERROR})


class Utxo(BaseModel):
    """An unspent output as reported by the index server.

    height == 0 means the output is still in the mempool.
    """

    model_config = ConfigDict(frozen=True)

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    vout: int = Field(..., ge=0, le=0xFFFFFFFF)
    value: int = Field(..., ge=0)
    height: int = Field(default=0, ge=0)

    @field_validator("txid", mode="before")
    @classmethod
    def normalize_txid(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v

    @field_validator("height", mode="before")
    @classmethod
    def normalize_height(cls, v: int | None) -> int:
        # Electrum uses -1 for mempool txs with unconfirmed parents
        if v is None or (isinstance(v, int) and v < 0):
            return 0
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def confirmations(self) -> int:
        return 1 if self.height > 0 else 0

    @property
    def is_confirmed(self) -> bool:
        return self.height > 0

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


class FundingStatus(BaseModel):
    """Snapshot of a funding watch. A new value is produced for every emission."""

    model_config = ConfigDict(frozen=True)

    status: FundingState = FundingState.IDLE
    utxos: tuple[Utxo, ...] = ()
    total_value: int = Field(default=0, ge=0)
    confirmed_value: int = Field(default=0, ge=0)
    unconfirmed_value: int = Field(default=0, ge=0)
    txid: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @classmethod
    def from_utxos(
        cls,
        status: FundingState,
        utxos: Iterable[Utxo],
        error: str | None = None,
    ) -> FundingStatus:
        """Build a status with totals computed from a UTXO set."""
        utxo_tuple = tuple(utxos)
        confirmed, unconfirmed = split_by_confirmation(utxo_tuple)
        confirmed_value = total_value(confirmed)
        unconfirmed_value = total_value(unconfirmed)
        return cls(
            status=status,
            utxos=utxo_tuple,
            total_value=confirmed_value + unconfirmed_value,
            confirmed_value=confirmed_value,
            unconfirmed_value=unconfirmed_value,
            txid=utxo_tuple[0].txid if utxo_tuple else None,
            error=error,
        )


def total_value(utxos: Iterable[Utxo]) -> int:
    return sum(u.value for u in utxos)


def split_by_confirmation(utxos: Iterable[Utxo]) -> tuple[list[Utxo], list[Utxo]]:
    """Partition a UTXO set into (confirmed, unconfirmed)."""
    confirmed: list[Utxo] = []
    unconfirmed: list[Utxo] = []
    for utxo in utxos:
        (confirmed if utxo.is_confirmed else unconfirmed).append(utxo)
    return confirmed, unconfirmed
