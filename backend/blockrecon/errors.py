"""
Error taxonomy for the reconciler.
The supervisor retries errors whose ``transient`` flag is set and stops on the rest.
"""
from __future__ import annotations

from typing import Optional


class ReconcilerError(Exception):
    """Base error; ``transient`` decides whether the supervisor reconnects."""

    transient: bool = True


class StreamConnectionError(ReconcilerError):
    """Could not establish a connection to the streaming source."""


class SubscriptionError(ReconcilerError):
    """The subscribe request could not be delivered on an open channel."""


class StreamEnded(ReconcilerError):
    """The remote closed the channel or the stream stopped yielding decodable updates."""


class DeadlineReached(ReconcilerError):
    """The observation window elapsed; the run is over."""

    transient = False


class PermanentStreamError(ReconcilerError):
    """A streaming failure that reconnecting cannot fix (bad URI, rejected credentials)."""

    transient = False


class MalformedUpdateError(ReconcilerError):
    """A single update from the stream could not be decoded or classified."""


class ReferenceQueryError(ReconcilerError):
    """Fetching the reference transaction count for a slot failed."""

    def __init__(self, message: str, slot: Optional[int] = None):
        self.slot = slot
        super().__init__(message)
