"""Unit tests for the reconciler event loop."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

import pytest

from blockrecon.comparator import Comparator
from blockrecon.engine import Deadline, Reconciler
from blockrecon.errors import DeadlineReached, ReferenceQueryError, StreamConnectionError, StreamEnded
from blockrecon.report import Report
from blockrecon.session import UpdateSender
from blockrecon.sources.base import BlockEvent, OtherEvent, PingEvent, StreamEvent

from fakes import FakeChannel, FakeClock, FakeReferenceSource


async def _events(items: list[StreamEvent]) -> AsyncIterator[StreamEvent]:
    for item in items:
        yield item


def _reconciler(report: Report, counts: dict, deadline: Deadline) -> Reconciler:
    return Reconciler(report, Comparator(FakeReferenceSource(counts), report), deadline)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Deadline ────────────────────────────────────────────────────────────

def test_deadline_tracks_fake_clock(clock: FakeClock) -> None:
    deadline = Deadline(10.0, clock=clock)
    assert not deadline.expired()
    clock.advance(4.0)
    assert deadline.remaining() == pytest.approx(6.0)
    clock.advance(6.0)
    assert deadline.expired()
    assert deadline.remaining() == 0.0


def test_zero_duration_deadline_is_expired_immediately(clock: FakeClock) -> None:
    assert Deadline(0.0, clock=clock).expired()


# ── consume ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_block_count_ignores_ping_and_other(clock: FakeClock) -> None:
    report = Report()
    reconciler = _reconciler(report, {1: 3, 2: 4, 3: 0}, Deadline(60.0, clock=clock))
    channel = FakeChannel([])
    events = [
        PingEvent(1), BlockEvent(1, 3), OtherEvent("slot"), BlockEvent(2, 4),
        PingEvent(2), OtherEvent("transaction"), BlockEvent(3, 0),
    ]

    with pytest.raises(StreamEnded):
        await reconciler.consume(_events(events), UpdateSender(channel))
    await reconciler.drain()

    assert report.total_blocks == 3
    assert report.total_stream_txs == 7
    assert report.total_rpc_txs == 7
    assert report.mismatched_blocks == 0
    assert channel.sent == [{"pong": {"id": 1}}, {"pong": {"id": 2}}]


@pytest.mark.asyncio
async def test_failed_pong_does_not_stop_loop(clock: FakeClock) -> None:
    report = Report()
    reconciler = _reconciler(report, {5: 1}, Deadline(60.0, clock=clock))
    sender = UpdateSender(FakeChannel([], fail_send=True))

    with pytest.raises(StreamEnded):
        await reconciler.consume(_events([PingEvent(1), BlockEvent(5, 1)]), sender)
    await reconciler.drain()
    assert report.total_blocks == 1


@pytest.mark.asyncio
async def test_comparator_failure_does_not_abort_loop(clock: FakeClock) -> None:
    report = Report()
    counts = {1: ReferenceQueryError("down", slot=1), 2: RuntimeError("bug"), 3: 2}
    reconciler = _reconciler(report, counts, Deadline(60.0, clock=clock))

    with pytest.raises(StreamEnded):
        await reconciler.consume(
            _events([BlockEvent(1, 1), BlockEvent(2, 1), BlockEvent(3, 2)]),
            UpdateSender(FakeChannel([])),
        )
    await reconciler.drain()

    assert report.total_blocks == 3
    assert report.total_stream_txs == 4
    assert report.total_rpc_txs == 2
    assert report.mismatched_blocks == 0
    assert reconciler.in_flight == 0


@pytest.mark.asyncio
async def test_deadline_checked_before_processing_event(clock: FakeClock) -> None:
    report = Report()
    deadline = Deadline(10.0, clock=clock)
    reconciler = _reconciler(report, {1: 1, 2: 2}, deadline)

    async def events() -> AsyncIterator[StreamEvent]:
        yield BlockEvent(1, 1)
        clock.advance(11.0)
        yield BlockEvent(2, 2)

    with pytest.raises(DeadlineReached):
        await reconciler.consume(events(), UpdateSender(FakeChannel([])))
    await reconciler.drain()

    assert report.total_blocks == 1
    assert report.total_rpc_txs == 1


@pytest.mark.asyncio
async def test_idle_stream_stops_at_deadline() -> None:
    reconciler = _reconciler(Report(), {}, Deadline(0.05))

    async def silent() -> AsyncIterator[StreamEvent]:
        await asyncio.sleep(10)
        yield BlockEvent(0, 0)

    with pytest.raises(DeadlineReached):
        await reconciler.consume(silent(), UpdateSender(FakeChannel([])))


@pytest.mark.asyncio
async def test_expired_deadline_consumes_nothing(clock: FakeClock) -> None:
    report = Report()
    reconciler = _reconciler(report, {1: 1}, Deadline(0.0, clock=clock))
    with pytest.raises(DeadlineReached):
        await reconciler.consume(_events([BlockEvent(1, 1)]), UpdateSender(FakeChannel([])))
    assert report.total_blocks == 0


@pytest.mark.asyncio
async def test_drain_waits_for_slow_comparisons(clock: FakeClock) -> None:
    report = Report()
    reference = FakeReferenceSource({1: 4, 2: 5}, delay_s=0.02)
    reconciler = Reconciler(report, Comparator(reference, report), Deadline(60.0, clock=clock), max_concurrent=1)

    with pytest.raises(StreamEnded):
        await reconciler.consume(_events([BlockEvent(1, 4), BlockEvent(2, 1)]), UpdateSender(FakeChannel([])))
    assert report.total_blocks == 2
    assert reconciler.in_flight == 2

    await reconciler.drain()
    assert reconciler.in_flight == 0
    assert report.total_rpc_txs == 9
    assert report.mismatched_blocks == 1


def test_stream_connection_error_is_transient() -> None:
    assert StreamConnectionError.transient
    assert not DeadlineReached.transient


@pytest.mark.asyncio
async def test_backlog_warning_fires_once_per_overflow(clock: FakeClock) -> None:
    report = Report()
    reference = FakeReferenceSource({slot: 1 for slot in range(1, 6)}, delay_s=0.02)
    reconciler = Reconciler(report, Comparator(reference, report), Deadline(60.0, clock=clock), max_concurrent=1)
    sender = UpdateSender(FakeChannel([]))

    for slot in (1, 2, 3):
        await reconciler.handle(BlockEvent(slot, 1), sender)
    assert reconciler.in_flight == 3
    assert reconciler.backlog_warnings == 1

    await reconciler.drain()
    await reconciler.handle(BlockEvent(4, 1), sender)
    assert reconciler.backlog_warnings == 1
    await reconciler.handle(BlockEvent(5, 1), sender)
    assert reconciler.backlog_warnings == 2

    await reconciler.drain()
    assert report.total_rpc_txs == 5
