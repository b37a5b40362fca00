"""
Reconciler event loop.
Consumes one subscription's updates, counts blocks, dispatches comparisons and
stops once the observation window has elapsed.
"""
from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Callable

from shared.utils.logging import get_logger
from shared.utils.metrics import COMPARISONS, COMPARISONS_IN_FLIGHT, STREAM_UPDATES

from blockrecon.comparator import Comparator
from blockrecon.errors import DeadlineReached, ReferenceQueryError, StreamConnectionError, StreamEnded
from blockrecon.report import BlockObservation, Report
from blockrecon.session import UpdateSender
from blockrecon.sources.base import BlockEvent, PingEvent, StreamEvent

logger = get_logger(__name__)


class Deadline:
    """Observation window measured from construction on a monotonic clock."""

    def __init__(self, duration_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._duration = max(0.0, duration_s)
        self._start = clock()

    @property
    def duration_s(self) -> float:
        return self._duration

    def elapsed(self) -> float:
        return self._clock() - self._start

    def remaining(self) -> float:
        return max(0.0, self._duration - self.elapsed())

    def expired(self) -> bool:
        return self.elapsed() >= self._duration


class Reconciler:
    """
    Classifies stream events and feeds block observations to the Comparator.

    Comparisons run as separate tasks (at most ``max_concurrent`` querying at
    once) so a slow reference node never stalls the receive loop. The instance
    outlives individual connection attempts; ``drain()`` waits for every
    comparison dispatched so far.
    """

    def __init__(
        self,
        report: Report,
        comparator: Comparator,
        deadline: Deadline,
        max_concurrent: int = 16,
    ) -> None:
        self._report = report
        self._comparator = comparator
        self._deadline = deadline
        self._max_concurrent = max(1, max_concurrent)
        self._sem = asyncio.Semaphore(self._max_concurrent)
        self._in_flight: set[asyncio.Task[None]] = set()
        self._backlogged = False
        self.backlog_warnings = 0

    @property
    def deadline(self) -> Deadline:
        return self._deadline

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._in_flight if not task.done())

    async def consume(self, events: AsyncIterator[StreamEvent], sender: UpdateSender) -> None:
        """
        Process events until the window elapses or the sequence ends.

        Always raises: DeadlineReached when the run is over, StreamEnded when the
        remote closed the stream (the caller should reconnect).
        """
        iterator = events.__aiter__()
        while True:
            if self._deadline.expired():
                raise self._deadline_reached()
            try:
                event = await asyncio.wait_for(iterator.__anext__(), timeout=self._deadline.remaining())
            except StopAsyncIteration:
                raise StreamEnded("stream ended") from None
            except asyncio.TimeoutError:
                raise self._deadline_reached() from None

            if self._deadline.expired():
                raise self._deadline_reached()
            await self.handle(event, sender)

    async def handle(self, event: StreamEvent, sender: UpdateSender) -> None:
        if isinstance(event, BlockEvent):
            STREAM_UPDATES.labels(kind="block").inc()
            observation = BlockObservation(slot=event.slot, stream_tx_count=event.executed_transaction_count)
            await self._report.record_block(observation)
            self._dispatch(observation)
        elif isinstance(event, PingEvent):
            STREAM_UPDATES.labels(kind="ping").inc()
            try:
                await sender.pong(event.id)
            except StreamConnectionError as e:
                logger.warning("stream_pong_failed", ping_id=event.id, error=str(e))
        else:
            STREAM_UPDATES.labels(kind="other").inc()
            logger.debug("stream_update_ignored", kind=getattr(event, "kind", type(event).__name__))

    async def drain(self) -> None:
        """Wait for every dispatched comparison to finish."""
        while True:
            pending = [task for task in self._in_flight if not task.done()]
            if not pending:
                return
            logger.info("comparisons_draining", pending=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    def _dispatch(self, observation: BlockObservation) -> None:
        task = asyncio.create_task(self._compare_safely(observation), name=f"compare-{observation.slot}")
        self._in_flight.add(task)
        COMPARISONS_IN_FLIGHT.inc()
        task.add_done_callback(self._discard)
        self._check_backlog()

    def _check_backlog(self) -> None:
        """Warn once each time queued comparisons outgrow the concurrency limit."""
        pending = self.in_flight
        if pending <= self._max_concurrent:
            self._backlogged = False
            return
        if not self._backlogged:
            self._backlogged = True
            self.backlog_warnings += 1
            logger.warning("comparison_backlog_growing", in_flight=pending, max_concurrent=self._max_concurrent)

    def _discard(self, task: asyncio.Task[None]) -> None:
        self._in_flight.discard(task)
        COMPARISONS_IN_FLIGHT.dec()

    async def _compare_safely(self, observation: BlockObservation) -> None:
        async with self._sem:
            try:
                await self._comparator.compare(observation)
            except ReferenceQueryError as e:
                COMPARISONS.labels(result="error").inc()
                logger.error("rpc_comparison_error", slot=observation.slot, phase="compare", error=str(e))
            except Exception as e:
                COMPARISONS.labels(result="error").inc()
                logger.exception("rpc_comparison_failed", slot=observation.slot, phase="compare", error=str(e))

    def _deadline_reached(self) -> DeadlineReached:
        logger.info("observation_window_elapsed", duration_s=self._deadline.duration_s)
        return DeadlineReached("observation window elapsed")
