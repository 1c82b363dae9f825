"""
Tests for chainsync.funding
"""

from __future__ import annotations

import asyncio

import pytest
from _chainsync_test_helpers import FakeClock, ScriptedSource, make_utxo

from chainsync.address import InvalidAddressError
from chainsync.funding import (
    TIMEOUT_MESSAGE,
    FundingFailedError,
    FundingStoppedError,
    FundingTimeoutError,
    FundingWatcher,
)
from chainsync.models import FundingState, FundingStatus
from chainsync.network import ElectrumError
from chainsync.utxo import UtxoQuery

ADDRESS = "bchtest:qqg3zyg3zyg3zyg3zyg3zyg3zyg3zyg3zyarjfagm9"


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    """Fake clock; the inter-poll wait advances it instead of sleeping."""
    fake = FakeClock()

    async def fake_wait_for_stop(stop_event: asyncio.Event, delay: float) -> bool:
        await asyncio.sleep(0)
        if stop_event.is_set():
            return True
        fake.advance(delay)
        return False

    monkeypatch.setattr("chainsync.funding.wait_for_stop", fake_wait_for_stop)
    return fake


def make_watcher(source, clock, required=1000, **kwargs) -> FundingWatcher:
    return FundingWatcher(source, ADDRESS, required, clock=clock, **kwargs)


async def collect(watcher: FundingWatcher) -> list[FundingStatus]:
    return [status async for status in watcher.watch()]


@pytest.mark.asyncio
async def test_confirms_on_third_poll(clock):
    source = ScriptedSource(
        [[], [make_utxo(500)], [make_utxo(500), make_utxo(600, vout=1)]]
    )
    statuses = await collect(make_watcher(source, clock))

    assert [s.status for s in statuses] == [
        FundingState.MONITORING,
        FundingState.MONITORING,
        FundingState.CONFIRMED,
    ]
    assert statuses[-1].total_value == 1100
    assert statuses[-1].txid == make_utxo(1).txid
    assert clock.now == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_timeout_after_deadline(clock):
    source = ScriptedSource([[]])
    watcher = make_watcher(source, clock, timeout=300, poll_interval=1.5)
    statuses = await collect(watcher)

    assert len(statuses) == 201
    assert all(s.status == FundingState.MONITORING for s in statuses[:-1])
    assert statuses[-1].status == FundingState.TIMEOUT
    assert statuses[-1].error == TIMEOUT_MESSAGE
    assert source.fetches == 200


@pytest.mark.asyncio
async def test_timeout_keeps_last_utxos(clock):
    source = ScriptedSource([[make_utxo(10)]])
    statuses = await collect(make_watcher(source, clock, timeout=3, poll_interval=1))

    assert statuses[-1].status == FundingState.TIMEOUT
    assert statuses[-1].total_value == 10


@pytest.mark.asyncio
async def test_transient_error_keeps_polling(clock):
    source = ScriptedSource([[], ElectrumError("busy"), [], [make_utxo(1000)]])
    statuses = await collect(make_watcher(source, clock))

    assert [s.status for s in statuses] == [
        FundingState.MONITORING,
        FundingState.MONITORING,
        FundingState.MONITORING,
        FundingState.CONFIRMED,
    ]
    assert statuses[1].error == "busy"
    assert statuses[2].error is None


@pytest.mark.asyncio
async def test_invalid_address_is_terminal_error(clock):
    source = ScriptedSource([InvalidAddressError("bad checksum")])
    statuses = await collect(make_watcher(source, clock))

    assert [s.status for s in statuses] == [FundingState.ERROR]
    assert statuses[0].error == "bad checksum"
    assert source.fetches == 1


@pytest.mark.asyncio
async def test_zero_amount_confirms_immediately(clock):
    statuses = await collect(make_watcher(ScriptedSource([[]]), clock, required=0))
    assert [s.status for s in statuses] == [FundingState.CONFIRMED]


@pytest.mark.asyncio
async def test_unconfirmed_policy(clock):
    steps = [[make_utxo(2000, height=0)], [make_utxo(2000, height=0)], [make_utxo(2000, height=5)]]

    lenient = await collect(make_watcher(ScriptedSource(steps), clock))
    assert [s.status for s in lenient] == [FundingState.CONFIRMED]
    assert lenient[0].unconfirmed_value == 2000

    strict = await collect(
        make_watcher(ScriptedSource(steps), clock, accept_unconfirmed=False)
    )
    assert [s.status for s in strict] == [
        FundingState.MONITORING,
        FundingState.MONITORING,
        FundingState.CONFIRMED,
    ]


@pytest.mark.asyncio
async def test_stop_suppresses_further_statuses(clock):
    watcher = make_watcher(ScriptedSource([[]]), clock)
    statuses = []

    async for status in watcher.watch():
        statuses.append(status)
        if len(statuses) == 2:
            watcher.stop()

    assert len(statuses) == 2
    assert watcher.stopped
    assert not watcher.active


@pytest.mark.asyncio
async def test_stop_during_fetch_drops_result(clock):
    release = asyncio.Event()

    class SlowSource:
        async def fetch(self, address):
            await release.wait()
            return [make_utxo(5000)]

    watcher = make_watcher(SlowSource(), clock)
    updates = []
    task = asyncio.create_task(watcher.run(updates.append))
    await asyncio.sleep(0)

    watcher.stop()
    release.set()
    with pytest.raises(FundingStoppedError):
        await task
    assert updates == []


@pytest.mark.asyncio
async def test_run_returns_confirmed(clock):
    source = ScriptedSource([[], [make_utxo(1500)]])
    updates = []
    result = await make_watcher(source, clock).run(updates.append)

    assert result.status == FundingState.CONFIRMED
    assert [u.status for u in updates] == [FundingState.MONITORING, FundingState.CONFIRMED]


@pytest.mark.asyncio
async def test_run_raises_on_timeout(clock):
    updates = []
    watcher = make_watcher(ScriptedSource([[]]), clock, timeout=3, poll_interval=1)
    with pytest.raises(FundingTimeoutError) as exc_info:
        await watcher.run(updates.append)

    assert exc_info.value.status.status == FundingState.TIMEOUT
    assert str(exc_info.value) == TIMEOUT_MESSAGE
    assert updates[-1] is exc_info.value.status
    assert watcher.stopped


@pytest.mark.asyncio
async def test_hanging_fetch_times_out_at_deadline():
    class HangingSource:
        def __init__(self):
            self.fetches = 0

        async def fetch(self, address):
            self.fetches += 1
            await asyncio.Event().wait()

    source = HangingSource()
    updates = []
    watcher = FundingWatcher(source, ADDRESS, 1000, timeout=0.05, poll_interval=0.01)
    with pytest.raises(FundingTimeoutError) as exc_info:
        await asyncio.wait_for(watcher.run(updates.append), timeout=1)

    assert source.fetches == 1
    assert exc_info.value.status.utxos == ()
    assert [u.status for u in updates] == [FundingState.TIMEOUT]


@pytest.mark.asyncio
async def test_run_raises_on_invalid_address(clock, connections, connector):
    watcher = FundingWatcher(UtxoQuery(connections), "bitcoincash:nonsense", 1000, clock=clock)
    with pytest.raises(FundingFailedError):
        await watcher.run()
    assert connector.created == []


@pytest.mark.asyncio
async def test_callback_error_does_not_abort(clock):
    def broken(status):
        raise RuntimeError("ui bug")

    source = ScriptedSource([[], [make_utxo(1000)]])
    result = await make_watcher(source, clock).run(broken)
    assert result.status == FundingState.CONFIRMED


@pytest.mark.asyncio
async def test_cancelling_run_stops_watcher():
    watcher = FundingWatcher(ScriptedSource([[]]), ADDRESS, 1000, poll_interval=10)
    task = asyncio.create_task(watcher.run())
    await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert watcher.stopped


@pytest.mark.asyncio
async def test_stop_wakes_real_wait():
    watcher = FundingWatcher(ScriptedSource([[]]), ADDRESS, 1000, poll_interval=60)
    task = asyncio.create_task(watcher.run())
    await asyncio.sleep(0.01)

    watcher.stop()
    with pytest.raises(FundingStoppedError):
        await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_single_use(clock):
    watcher = make_watcher(ScriptedSource([[make_utxo(1000)]]), clock)
    await collect(watcher)
    with pytest.raises(RuntimeError):
        await collect(watcher)


@pytest.mark.parametrize("kwargs", [{"required_amount": -1}, {"timeout": 0}])
def test_rejects_bad_arguments(kwargs):
    params = {"required_amount": 1000, "timeout": 300.0, **kwargs}
    with pytest.raises(ValueError):
        FundingWatcher(ScriptedSource([[]]), ADDRESS, **params)
