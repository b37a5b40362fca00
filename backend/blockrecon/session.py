"""
Subscription session: one connection attempt to the streaming source.
Connects, sends the block subscription and exposes classified updates as a lazy async sequence.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional, Union

from shared.utils.logging import get_logger
from shared.utils.metrics import STREAM_UPDATES

from blockrecon.errors import MalformedUpdateError, StreamConnectionError, SubscriptionError
from blockrecon.sources.base import (
    BlockEvent,
    BlockFilter,
    OtherEvent,
    PingEvent,
    StreamChannel,
    StreamEvent,
    StreamSource,
)

logger = get_logger(__name__)


def _non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise MalformedUpdateError(f"{field_name} is not an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedUpdateError(f"{field_name} is not an integer: {value!r}") from exc
    if number < 0:
        raise MalformedUpdateError(f"{field_name} is negative: {number}")
    return number


def decode_update(raw: Union[str, bytes]) -> dict[str, Any]:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedUpdateError(f"undecodable update: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedUpdateError("update is not a JSON object")
    return message


def parse_update(message: dict[str, Any]) -> StreamEvent:
    """Classify one decoded update. Unknown kinds become OtherEvent."""
    if "block" in message:
        block = message["block"]
        if not isinstance(block, dict) or "slot" not in block:
            raise MalformedUpdateError("block update without a slot")
        count = block.get("executedTransactionCount", block.get("executed_transaction_count", 0))
        return BlockEvent(
            slot=_non_negative_int(block["slot"], "slot"),
            executed_transaction_count=_non_negative_int(count, "executedTransactionCount"),
        )
    if "ping" in message:
        ping = message["ping"] or {}
        if not isinstance(ping, dict):
            raise MalformedUpdateError("ping update is not an object")
        return PingEvent(id=_non_negative_int(ping.get("id", 1), "ping id"))
    kinds = [k for k in message if k not in ("filters", "createdAt", "created_at")]
    return OtherEvent(kind=kinds[0] if kinds else "empty")


class UpdateSender:
    """Outbound half of a subscription: keepalive replies."""

    def __init__(self, channel: StreamChannel) -> None:
        self._channel = channel

    async def pong(self, ping_id: int) -> None:
        await self._channel.send({"pong": {"id": ping_id}})


class SubscriptionSession:
    """
    Async context manager owning one channel.

    The channel is closed on exit whatever happened inside the block; nothing
    from a session is reused by the next connection attempt.
    """

    def __init__(
        self,
        source: StreamSource,
        block_filter: Optional[BlockFilter] = None,
        max_malformed_updates: int = 3,
    ) -> None:
        self._source = source
        self._filter = block_filter or BlockFilter()
        self._max_malformed = max(1, max_malformed_updates)
        self._channel: Optional[StreamChannel] = None

    async def __aenter__(self) -> "SubscriptionSession":
        self._channel = await self._source.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.close()
        except Exception as e:
            logger.debug("stream_channel_close_error", endpoint=self._source.endpoint, error=str(e))

    async def subscribe(self) -> tuple[UpdateSender, AsyncIterator[StreamEvent]]:
        """Send the subscribe request and return (sender, event sequence)."""
        if self._channel is None:
            raise RuntimeError("SubscriptionSession not connected. Use 'async with'.")
        try:
            await self._channel.send(self._filter.to_request())
        except StreamConnectionError as exc:
            raise SubscriptionError(f"subscribe request failed: {exc}") from exc
        logger.info(
            "stream_subscribed",
            endpoint=self._source.endpoint,
            commitment=self._filter.commitment.value,
        )
        return UpdateSender(self._channel), self._events(self._channel)

    async def _events(self, channel: StreamChannel) -> AsyncIterator[StreamEvent]:
        malformed = 0
        while True:
            raw = await channel.recv()
            if raw is None:
                return
            try:
                event = parse_update(decode_update(raw))
            except MalformedUpdateError as exc:
                malformed += 1
                STREAM_UPDATES.labels(kind="malformed").inc()
                logger.warning("stream_update_malformed", error=str(exc), consecutive=malformed)
                if malformed >= self._max_malformed:
                    logger.warning("stream_malformed_limit_reached", limit=self._max_malformed)
                    return
                continue
            malformed = 0
            yield event
