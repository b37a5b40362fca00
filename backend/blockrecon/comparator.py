"""
Per-block comparison of the streamed transaction count against the reference source.
"""
from __future__ import annotations

from shared.utils.logging import get_logger
from shared.utils.metrics import COMPARISONS

from blockrecon.report import BlockObservation, MatchResult, ReferenceCount, Report
from blockrecon.sources.base import ReferenceSource

logger = get_logger(__name__)


class Comparator:
    """Queries the reference source once per observation and records the outcome."""

    def __init__(self, reference: ReferenceSource, report: Report) -> None:
        self._reference = reference
        self._report = report

    async def compare(self, observation: BlockObservation) -> MatchResult:
        """
        Fetch the reference count for ``observation.slot`` and classify the block.

        Raises ReferenceQueryError without touching the report when the query fails.
        """
        rpc_count = await self._reference.get_transaction_count(observation.slot)
        result = await self._report.record_reference(
            observation, ReferenceCount(slot=observation.slot, rpc_tx_count=rpc_count)
        )
        COMPARISONS.labels(result=result.value).inc()

        if result is MatchResult.MISMATCH:
            logger.warning(
                "MISMATCH slot %s → stream=%s rpc=%s",
                observation.slot, observation.stream_tx_count, rpc_count,
            )
        else:
            logger.info(
                "MATCH slot %s → stream=%s rpc=%s",
                observation.slot, observation.stream_tx_count, rpc_count,
            )
        return result
