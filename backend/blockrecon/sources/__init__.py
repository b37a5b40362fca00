from blockrecon.sources.base import (
    BlockEvent,
    BlockFilter,
    Commitment,
    OtherEvent,
    PingEvent,
    ReferenceSource,
    StreamChannel,
    StreamEvent,
    StreamSource,
)
from blockrecon.sources.rpc import JsonRpcReferenceSource
from blockrecon.sources.stream import WebsocketStreamSource

__all__ = [
    "BlockEvent",
    "BlockFilter",
    "Commitment",
    "OtherEvent",
    "PingEvent",
    "ReferenceSource",
    "StreamChannel",
    "StreamEvent",
    "StreamSource",
    "JsonRpcReferenceSource",
    "WebsocketStreamSource",
]
