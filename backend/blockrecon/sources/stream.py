"""
Websocket transport for the streaming block feed.
JSON messages in both directions; authenticates with the x-token header.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, InvalidURI, WebSocketException

from shared.utils.logging import get_logger
from shared.utils.metrics import STREAM_CONNECTIONS

from blockrecon.errors import PermanentStreamError, StreamConnectionError
from blockrecon.sources.base import StreamChannel, StreamSource

logger = get_logger(__name__)

# Handshake statuses that mean the credentials or endpoint are wrong, not flaky
PERMANENT_HANDSHAKE_STATUSES = frozenset({401, 403, 404})


class WebsocketStreamChannel(StreamChannel):
    def __init__(self, ws: Any) -> None:
        self._ws = ws

    async def send(self, message: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as exc:
            raise StreamConnectionError(f"send failed: {exc}") from exc

    async def recv(self) -> Optional[Union[str, bytes]]:
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            logger.info("stream_channel_closed", code=exc.rcvd.code if exc.rcvd else None)
            return None
        except OSError as exc:
            logger.warning("stream_channel_error", error=str(exc))
            return None

    async def close(self) -> None:
        await self._ws.close()


class WebsocketStreamSource(StreamSource):
    """Connects to a Geyser-style block stream over websockets."""

    def __init__(
        self,
        endpoint: str,
        x_token: str,
        connect_timeout_s: float = 10.0,
        ping_interval_s: Optional[float] = 20.0,
        max_message_bytes: int = 64 * 1024 * 1024,
    ) -> None:
        self._endpoint = endpoint
        self._x_token = x_token
        self._connect_timeout = connect_timeout_s
        self._ping_interval = ping_interval_s
        self._max_size = max_message_bytes

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def connect(self) -> StreamChannel:
        headers = {"x-token": self._x_token} if self._x_token else None
        try:
            ws = await websockets.connect(
                self._endpoint,
                additional_headers=headers,
                open_timeout=self._connect_timeout,
                ping_interval=self._ping_interval,
                max_size=self._max_size,
                compression=None,
            )
        except InvalidURI as exc:
            STREAM_CONNECTIONS.labels(outcome="rejected").inc()
            raise PermanentStreamError(f"invalid stream endpoint: {exc}") from exc
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in PERMANENT_HANDSHAKE_STATUSES:
                STREAM_CONNECTIONS.labels(outcome="rejected").inc()
                raise PermanentStreamError(f"stream handshake rejected with HTTP {status}") from exc
            STREAM_CONNECTIONS.labels(outcome="failed").inc()
            raise StreamConnectionError(f"stream handshake failed with HTTP {status}") from exc
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            STREAM_CONNECTIONS.labels(outcome="failed").inc()
            raise StreamConnectionError(f"cannot connect to {self._endpoint}: {exc}") from exc

        STREAM_CONNECTIONS.labels(outcome="connected").inc()
        logger.info("stream_connected", endpoint=self._endpoint)
        return WebsocketStreamChannel(ws)
