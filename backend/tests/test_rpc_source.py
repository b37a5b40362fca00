"""Unit tests for the JSON-RPC client and the getBlock reference source."""
from __future__ import annotations

import json

import httpx
import pytest

from blockrecon.errors import ReferenceQueryError
from blockrecon.sources.base import Commitment
from blockrecon.sources.rpc import JsonRpcReferenceSource, block_request_config, count_signatures
from shared.utils.http_client import JsonRpcError, JsonRpcHTTPClient

RPC_URL = "https://rpc.test"


def _client(handler) -> JsonRpcHTTPClient:
    return JsonRpcHTTPClient("reference", RPC_URL, timeout_s=5.0, transport=httpx.MockTransport(handler))


def _ok(result, request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


# ── count_signatures ────────────────────────────────────────────────────

def test_count_signatures() -> None:
    assert count_signatures({"signatures": ["a", "b", "c"]}) == 3


def test_missing_signatures_count_as_zero() -> None:
    assert count_signatures({"blockhash": "x"}) == 0
    assert count_signatures({"signatures": None}) == 0


def test_block_request_asks_for_signatures_only() -> None:
    config = block_request_config(Commitment.FINALIZED)
    assert config["transactionDetails"] == "signatures"
    assert config["commitment"] == "finalized"
    assert config["rewards"] is False
    assert config["maxSupportedTransactionVersion"] == 0


# ── JsonRpcReferenceSource ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_transaction_count_posts_get_block() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return _ok({"signatures": ["s1", "s2"]}, request)

    async with _client(handler) as client:
        count = await JsonRpcReferenceSource(client).get_transaction_count(321)

    assert count == 2
    assert seen[0]["method"] == "getBlock"
    assert seen[0]["params"][0] == 321
    assert seen[0]["params"][1]["transactionDetails"] == "signatures"


@pytest.mark.asyncio
async def test_rpc_error_becomes_reference_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "jsonrpc": "2.0", "id": body["id"],
            "error": {"code": -32007, "message": "Slot 5 was skipped"},
        })

    async with _client(handler) as client:
        with pytest.raises(ReferenceQueryError) as exc_info:
            await JsonRpcReferenceSource(client).get_transaction_count(5)
    assert exc_info.value.slot == 5
    assert isinstance(exc_info.value.__cause__, JsonRpcError)


@pytest.mark.asyncio
async def test_http_error_becomes_reference_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    async with _client(handler) as client:
        with pytest.raises(ReferenceQueryError):
            await JsonRpcReferenceSource(client).get_transaction_count(5)


@pytest.mark.asyncio
async def test_transport_error_becomes_reference_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(ReferenceQueryError):
            await JsonRpcReferenceSource(client).get_transaction_count(5)


@pytest.mark.asyncio
async def test_null_block_becomes_reference_query_error() -> None:
    async with _client(lambda request: _ok(None, request)) as client:
        with pytest.raises(ReferenceQueryError):
            await JsonRpcReferenceSource(client).get_transaction_count(5)


@pytest.mark.asyncio
async def test_client_requires_start() -> None:
    client = _client(lambda request: _ok(1, request))
    with pytest.raises(RuntimeError):
        await client.call("getSlot")
