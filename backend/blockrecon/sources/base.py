"""
Event schema and base source interfaces.
The streaming feed is normalized to BlockEvent / PingEvent / OtherEvent; the
reference feed answers with a transaction count per slot.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


class Commitment(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class BlockFilter:
    """Block-level subscription filter."""
    include_transactions: bool = True
    commitment: Commitment = Commitment.FINALIZED
    name: str = "client"

    def to_request(self) -> dict[str, Any]:
        """Subscribe request payload for this filter."""
        return {
            "blocks": {
                self.name: {
                    "accountInclude": [],
                    "includeTransactions": self.include_transactions,
                    "includeAccounts": False,
                    "includeEntries": False,
                },
            },
            "commitment": self.commitment.value,
        }


@dataclass(frozen=True)
class BlockEvent:
    slot: int
    executed_transaction_count: int


@dataclass(frozen=True)
class PingEvent:
    id: int = 1


@dataclass(frozen=True)
class OtherEvent:
    kind: str = "unknown"


StreamEvent = Union[BlockEvent, PingEvent, OtherEvent]


class StreamChannel(ABC):
    """Duplex channel for one connection attempt to the streaming source."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send one JSON message. Raises StreamConnectionError when the channel is gone."""

    @abstractmethod
    async def recv(self) -> Optional[Union[str, bytes]]:
        """Next raw message, or None once the remote closed the channel."""

    @abstractmethod
    async def close(self) -> None:
        pass


class StreamSource(ABC):
    """Factory for channels to the streaming source."""

    @property
    @abstractmethod
    def endpoint(self) -> str:
        pass

    @abstractmethod
    async def connect(self) -> StreamChannel:
        """
        Open a new channel.
        Raises StreamConnectionError (retryable) or PermanentStreamError.
        """


class ReferenceSource(ABC):
    """Authoritative per-slot transaction counts."""

    @property
    @abstractmethod
    def endpoint(self) -> str:
        pass

    @abstractmethod
    async def get_transaction_count(self, slot: int) -> int:
        """Transaction count of the block at ``slot``. Raises ReferenceQueryError."""
