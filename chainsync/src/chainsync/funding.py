"""
Bounded-time funding watcher.

A FundingWatcher polls the UTXO set of one address on a fixed cadence until
the accumulated value reaches a required amount or an overall deadline
passes. Each poll produces one FundingStatus; the last one is terminal
(confirmed, timeout or error) and nothing is emitted after it.

Two ways to consume it:
- ``async for status in watcher.watch()``: the raw status stream
- ``await watcher.run(on_update)``: progress via callback, terminal outcome
  as return value (confirmed) or exception (timeout / error)

Cancellation is cooperative. stop() sets an event that wakes the inter-poll
wait; a fetch already in flight still completes but its result is dropped.

The deadline is hard: each fetch is bounded by the time left, so a hanging
connect or request ends the watch with a timeout status on schedule.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator, Callable
from typing import Protocol

from loguru import logger

from chainsync.address import InvalidAddressError
from chainsync.constants import DEFAULT_FUNDING_TIMEOUT, DEFAULT_POLL_INTERVAL
from chainsync.models import (
    FundingState,
    FundingStatus,
    Utxo,
    split_by_confirmation,
    total_value,
)
from chainsync.tasks import wait_for_stop

TIMEOUT_MESSAGE = "Funding timeout - please verify manually"

StatusCallback = Callable[[FundingStatus], None]


class UtxoSource(Protocol):
    async def fetch(self, address: str) -> list[Utxo]: ...


class FundingError(Exception):
    """A funding watch ended without reaching the required amount."""

    def __init__(self, status: FundingStatus):
        super().__init__(status.error or f"Funding ended with status {status.status.value}")
        self.status = status


class FundingTimeoutError(FundingError):
    pass


class FundingFailedError(FundingError):
    pass


class FundingStoppedError(FundingError):
    pass


class FundingWatcher:
    def __init__(
        self,
        query: UtxoSource,
        address: str,
        required_amount: int,
        timeout: float = DEFAULT_FUNDING_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        accept_unconfirmed: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            query: Anything with an async fetch(address) -> list[Utxo]
            address: Address to watch
            required_amount: Minimum total value in satoshis
            timeout: Overall deadline in seconds, measured from watch start
            poll_interval: Seconds between polls
            accept_unconfirmed: Count mempool (0-conf) value toward the
                threshold. Convenient for test networks and demos; set to
                False where a reorg or double spend would matter.
            clock: Monotonic time source (injectable for tests)
        """
        if required_amount < 0:
            raise ValueError(f"Required amount cannot be negative, got {required_amount}")
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")

        self.query = query
        self.address = address
        self.required_amount = required_amount
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.accept_unconfirmed = accept_unconfirmed
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._started = False
        self.status = FundingStatus()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def active(self) -> bool:
        return self._started and not self.stopped and not self.status.is_terminal

    def stop(self) -> None:
        """Stop the watcher. No status is emitted after this call."""
        if not self._stop_event.is_set():
            logger.debug(f"Stopping funding watcher for {self.address}")
        self._stop_event.set()

    def evaluate(self, utxos: list[Utxo]) -> FundingStatus:
        """Build the status for one poll result."""
        confirmed, unconfirmed = split_by_confirmation(utxos)
        counted = total_value(confirmed)
        if self.accept_unconfirmed:
            counted += total_value(unconfirmed)
        state = FundingState.CONFIRMED if counted >= self.required_amount else FundingState.MONITORING
        return FundingStatus.from_utxos(state, utxos)

    def _emit(self, status: FundingStatus) -> FundingStatus:
        self.status = status
        if status.is_terminal:
            logger.info(
                f"Funding watch for {self.address} finished: {status.status.value} "
                f"({status.total_value}/{self.required_amount} sats)"
            )
        else:
            logger.debug(
                f"Funding poll for {self.address}: {len(status.utxos)} UTXOs, "
                f"{status.total_value}/{self.required_amount} sats"
            )
        return status

    async def watch(self) -> AsyncIterator[FundingStatus]:
        """Poll until a terminal status, yielding every status in order."""
        if self._started:
            raise RuntimeError("A FundingWatcher can only be started once")
        self._started = True
        self.status = FundingStatus(status=FundingState.MONITORING)

        start = self._clock()
        last_utxos: list[Utxo] = []
        logger.info(
            f"Watching {self.address} for {self.required_amount} sats "
            f"(timeout {self.timeout:.0f}s, every {self.poll_interval}s)"
        )

        while not self.stopped:
            remaining = self.timeout - (self._clock() - start)
            if remaining <= 0:
                break

            try:
                utxos = await asyncio.wait_for(self.query.fetch(self.address), remaining)
            except asyncio.TimeoutError:
                logger.warning(f"Funding poll for {self.address} still pending at the deadline")
                break
            except InvalidAddressError as e:
                if self.stopped:
                    return
                yield self._emit(FundingStatus.from_utxos(FundingState.ERROR, [], error=str(e)))
                return
            except Exception as e:
                logger.warning(f"Funding poll for {self.address} failed, retrying: {e}")
                if self.stopped:
                    return
                yield self._emit(
                    FundingStatus.from_utxos(FundingState.MONITORING, last_utxos, error=str(e))
                )
            else:
                if self.stopped:
                    return
                last_utxos = utxos
                status = self._emit(self.evaluate(utxos))
                yield status
                if status.is_terminal:
                    return

            remaining = self.timeout - (self._clock() - start)
            if remaining <= 0:
                break
            if await wait_for_stop(self._stop_event, min(self.poll_interval, remaining)):
                return

        if self.stopped:
            return
        yield self._emit(
            FundingStatus.from_utxos(FundingState.TIMEOUT, last_utxos, error=TIMEOUT_MESSAGE)
        )

    async def run(self, on_update: StatusCallback | None = None) -> FundingStatus:
        """
        Run the watcher to completion.

        Every status (including the terminal one) is passed to on_update.

        Returns:
            The confirmed status

        Raises:
            FundingTimeoutError: Deadline passed before the amount was reached
            FundingFailedError: Non-transient failure (e.g. invalid address)
            FundingStoppedError: stop() was called first
        """
        try:
            async with contextlib.aclosing(self.watch()) as statuses:
                async for status in statuses:
                    if on_update is None:
                        continue
                    try:
                        on_update(status)
                    except Exception as e:
                        logger.error(f"Funding update callback failed: {e}")
        finally:
            self.stop()

        final = self.status
        if final.status == FundingState.CONFIRMED:
            return final
        if final.status == FundingState.TIMEOUT:
            raise FundingTimeoutError(final)
        if final.status == FundingState.ERROR:
            raise FundingFailedError(final)
        raise FundingStoppedError(final)
