"""
Discrepancy report shared by the event loop and in-flight comparisons.
One lock covers every counter and the detail list together.
"""
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, TextIO


class MatchResult(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class BlockObservation:
    """A block as reported by the streaming source."""
    slot: int
    stream_tx_count: int


@dataclass(frozen=True)
class ReferenceCount:
    """A block's transaction count as reported by the reference source."""
    slot: int
    rpc_tx_count: int


@dataclass(frozen=True)
class MismatchRecord:
    slot: int
    stream_count: int
    reference_count: int

    def __str__(self) -> str:
        return (
            f"Slot {self.slot} mismatch: stream tx count={self.stream_count} "
            f"rpc tx count={self.reference_count}"
        )


@dataclass(frozen=True)
class ReportSnapshot:
    total_blocks: int
    mismatched_blocks: int
    total_stream_txs: int
    total_rpc_txs: int
    details: tuple[MismatchRecord, ...]


@dataclass
class Report:
    """
    Running totals for one process.

    Mutate only through ``record_block`` and ``record_reference``. ``details``
    is append-only and ordered by comparison completion, not by slot.
    """

    total_blocks: int = 0
    mismatched_blocks: int = 0
    total_stream_txs: int = 0
    total_rpc_txs: int = 0
    details: list[MismatchRecord] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    async def record_block(self, observation: BlockObservation) -> None:
        async with self._lock:
            self.total_blocks += 1
            self.total_stream_txs += observation.stream_tx_count

    async def record_reference(self, observation: BlockObservation, reference: ReferenceCount) -> MatchResult:
        """Add the reference count and classify the block; appends a detail on disagreement."""
        if observation.slot != reference.slot:
            raise ValueError(f"reference slot {reference.slot} does not match observed slot {observation.slot}")
        async with self._lock:
            self.total_rpc_txs += reference.rpc_tx_count
            if observation.stream_tx_count == reference.rpc_tx_count:
                return MatchResult.MATCH
            self.mismatched_blocks += 1
            self.details.append(MismatchRecord(
                slot=observation.slot,
                stream_count=observation.stream_tx_count,
                reference_count=reference.rpc_tx_count,
            ))
            return MatchResult.MISMATCH

    async def snapshot(self) -> ReportSnapshot:
        async with self._lock:
            return ReportSnapshot(
                total_blocks=self.total_blocks,
                mismatched_blocks=self.mismatched_blocks,
                total_stream_txs=self.total_stream_txs,
                total_rpc_txs=self.total_rpc_txs,
                details=tuple(self.details),
            )


def render_report(snapshot: ReportSnapshot) -> str:
    lines = [
        "",
        "============== FINAL REPORT ==============",
        f"Total Blocks Received: {snapshot.total_blocks}",
        f"Total Stream Tx Count: {snapshot.total_stream_txs}",
        f"Total RPC Tx Count: {snapshot.total_rpc_txs}",
        f"Mismatched Blocks: {snapshot.mismatched_blocks}",
    ]
    if snapshot.details:
        lines.append("")
        lines.append("--- MISMATCH DETAILS ---")
        lines.extend(str(record) for record in snapshot.details)
    lines.append("===========================================")
    return "\n".join(lines)


async def print_report(report: Report, file: Optional[TextIO] = None) -> ReportSnapshot:
    """Print the final report and return the snapshot that was printed."""
    snapshot = await report.snapshot()
    print(render_report(snapshot), file=file or sys.stdout, flush=True)
    return snapshot
