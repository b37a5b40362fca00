"""
Reference source backed by a JSON-RPC node.
Counts a block's transactions from its signature list, never full transaction bodies.
"""
from __future__ import annotations

from typing import Any

import httpx
from shared.utils.http_client import JsonRpcError, JsonRpcHTTPClient
from shared.utils.logging import get_logger

from blockrecon.errors import ReferenceQueryError
from blockrecon.sources.base import Commitment, ReferenceSource

logger = get_logger(__name__)


def block_request_config(commitment: Commitment) -> dict[str, Any]:
    """getBlock config asking only for signatures."""
    return {
        "encoding": "json",
        "transactionDetails": "signatures",
        "rewards": False,
        "commitment": commitment.value,
        "maxSupportedTransactionVersion": 0,
    }


def count_signatures(block: Any) -> int:
    """Transaction count of a getBlock result; a missing signature list counts as zero."""
    if not isinstance(block, dict):
        raise ValueError("getBlock result is not an object")
    signatures = block.get("signatures")
    if signatures is None:
        return 0
    if not isinstance(signatures, list):
        raise ValueError("getBlock signatures is not a list")
    return len(signatures)


class JsonRpcReferenceSource(ReferenceSource):
    """Fetches per-slot transaction counts with getBlock."""

    def __init__(self, client: JsonRpcHTTPClient, commitment: Commitment = Commitment.FINALIZED) -> None:
        self._client = client
        self._commitment = commitment

    @property
    def endpoint(self) -> str:
        return self._client.url

    async def get_transaction_count(self, slot: int) -> int:
        try:
            block = await self._client.call("getBlock", [slot, block_request_config(self._commitment)])
        except JsonRpcError as exc:
            raise ReferenceQueryError(f"getBlock({slot}) returned error {exc.code}: {exc.message}", slot=slot) from exc
        except httpx.HTTPError as exc:
            raise ReferenceQueryError(f"getBlock({slot}) request failed: {exc!r}", slot=slot) from exc
        except ValueError as exc:
            raise ReferenceQueryError(f"getBlock({slot}) returned an invalid response: {exc}", slot=slot) from exc

        if block is None:
            raise ReferenceQueryError(f"getBlock({slot}) returned no block", slot=slot)
        try:
            return count_signatures(block)
        except ValueError as exc:
            raise ReferenceQueryError(f"getBlock({slot}): {exc}", slot=slot) from exc
