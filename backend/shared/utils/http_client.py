"""
Async JSON-RPC client wrapper for reference-node requests.
Includes timeout management, error decoding, and metrics collection.
"""
from __future__ import annotations

import itertools
import time
from typing import Any, Optional

import httpx

from shared.utils.logging import get_logger
from shared.utils.metrics import RPC_LATENCY, RPC_REQUESTS

logger = get_logger(__name__)


class JsonRpcError(Exception):
    """Error object returned in a JSON-RPC response."""

    def __init__(self, method: str, code: int, message: str, data: Any = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} failed with JSON-RPC error {code}: {message}")


class JsonRpcHTTPClient:
    """
    Async JSON-RPC 2.0 client over HTTP POST.
    One attempt per call; callers decide whether a failure is worth repeating.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout_s: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._name = name
        self._url = url
        self._timeout = timeout_s
        self._default_headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport
        self._ids = itertools.count(1)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        return self._url

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "JsonRpcHTTPClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Perform one JSON-RPC call and return its ``result`` member.

        Raises:
            JsonRpcError: The server answered with an error object.
            httpx.HTTPStatusError: Non-2xx HTTP response.
            httpx.HTTPError: Timeouts and transport failures.
            ValueError: The response body is not a JSON-RPC response.
        """
        if not self._client:
            raise RuntimeError("JsonRpcHTTPClient not started. Call start() first.")

        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        start_time = time.perf_counter()
        status = "unknown"

        try:
            resp = await self._client.post(self._url, json=payload)
            status = str(resp.status_code)
            resp.raise_for_status()
            body = resp.json()
            if not isinstance(body, dict):
                status = "invalid"
                raise ValueError(f"{method} returned a non-object JSON-RPC response")

            error = body.get("error")
            if error is not None:
                status = "rpc_error"
                if isinstance(error, dict):
                    raise JsonRpcError(method, int(error.get("code", 0)), str(error.get("message", "")), error.get("data"))
                raise JsonRpcError(method, 0, str(error))

            logger.debug(
                "rpc_request_success",
                client=self._name,
                method=method,
                request_id=request_id,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return body.get("result")

        except httpx.TimeoutException:
            status = "timeout"
            raise

        except httpx.HTTPStatusError as exc:
            logger.warning(
                "rpc_http_error",
                client=self._name,
                method=method,
                status=exc.response.status_code,
            )
            raise

        finally:
            RPC_REQUESTS.labels(method=method, status=status).inc()
            RPC_LATENCY.labels(method=method).observe(time.perf_counter() - start_time)
