"""
Retry supervisor: resilience loop around subscription sessions.

States: CONNECTING -> SUBSCRIBING -> STREAMING -> RETRYING | COMPLETED | FAILED.
Transient failures reconnect after an exponential backoff; the observation
deadline completes the run; permanent failures stop it immediately.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from shared.utils.logging import get_logger

from blockrecon.backoff import BackoffPolicy
from blockrecon.engine import Reconciler
from blockrecon.errors import DeadlineReached, ReconcilerError
from blockrecon.session import SubscriptionSession
from blockrecon.sources.base import BlockFilter, StreamSource

logger = get_logger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED})


class RetrySupervisor:
    """Runs sessions until the deadline, a permanent error, or backoff exhaustion."""

    def __init__(
        self,
        source: StreamSource,
        reconciler: Reconciler,
        policy: Optional[BackoffPolicy] = None,
        block_filter: Optional[BlockFilter] = None,
        max_malformed_updates: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._reconciler = reconciler
        self._policy = policy or BackoffPolicy()
        self._filter = block_filter or BlockFilter()
        self._max_malformed = max_malformed_updates
        self._sleep = sleep
        self._deadline = reconciler.deadline
        self.state = SessionState.CONNECTING
        self.connection_attempts = 0
        self.delays: list[float] = []
        self.last_error: Optional[BaseException] = None

    async def run(self) -> SessionState:
        """Drive the state machine to a terminal state, then drain pending comparisons."""
        try:
            await self._loop()
        finally:
            await self._reconciler.drain()
        logger.info(
            "supervisor_finished",
            state=self.state.value,
            connection_attempts=self.connection_attempts,
            retries=len(self.delays),
        )
        return self.state

    async def _loop(self) -> None:
        attempt = 0
        cycle_started: Optional[float] = None

        while True:
            if self._deadline.expired():
                self._transition(SessionState.COMPLETED)
                return

            self._transition(SessionState.CONNECTING)
            self.connection_attempts += 1
            try:
                async with SubscriptionSession(self._source, self._filter, self._max_malformed) as session:
                    self._transition(SessionState.SUBSCRIBING)
                    sender, events = await session.subscribe()
                    self._transition(SessionState.STREAMING)
                    attempt = 0
                    cycle_started = None
                    await self._reconciler.consume(events, sender)
            except DeadlineReached:
                self._transition(SessionState.COMPLETED)
                return
            except ReconcilerError as e:
                self.last_error = e
                if not e.transient:
                    logger.error("stream_permanent_failure", phase=self.state.value, error=str(e))
                    self._transition(SessionState.FAILED)
                    return
                failed_phase = self.state
            else:
                # consume() returned without raising: same as a closed stream
                self.last_error = None
                failed_phase = self.state

            if cycle_started is None:
                cycle_started = self._deadline.elapsed()
            if self._policy.exhausted(self._deadline.elapsed() - cycle_started):
                logger.error(
                    "stream_retry_exhausted",
                    max_elapsed_s=self._policy.max_elapsed_s,
                    attempts=attempt,
                    error=str(self.last_error),
                )
                self._transition(SessionState.FAILED)
                return

            delay = self._policy.next_backoff(attempt)
            attempt += 1
            self._transition(SessionState.RETRYING)
            logger.warning(
                "stream_retry",
                phase=failed_phase.value,
                attempt=attempt,
                delay_s=round(delay, 3),
                error=str(self.last_error),
            )
            self.delays.append(delay)
            await self._sleep(min(delay, self._deadline.remaining()))

    def _transition(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("supervisor_transition", previous=self.state.value, state=state.value)
        self.state = state
