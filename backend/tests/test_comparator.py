"""Unit tests for per-block comparison against the reference source."""
from __future__ import annotations

import asyncio

import pytest

from blockrecon.comparator import Comparator
from blockrecon.errors import ReferenceQueryError
from blockrecon.report import BlockObservation, MatchResult, Report

from fakes import FakeReferenceSource


@pytest.mark.asyncio
async def test_match_updates_rpc_total_only() -> None:
    report = Report()
    comparator = Comparator(FakeReferenceSource({100: 5}), report)
    result = await comparator.compare(BlockObservation(slot=100, stream_tx_count=5))
    assert result is MatchResult.MATCH
    assert report.total_rpc_txs == 5
    assert report.mismatched_blocks == 0
    assert report.details == []


@pytest.mark.asyncio
async def test_mismatch_records_detail() -> None:
    report = Report()
    comparator = Comparator(FakeReferenceSource({100: 9}), report)
    result = await comparator.compare(BlockObservation(slot=100, stream_tx_count=5))
    assert result is MatchResult.MISMATCH
    assert report.mismatched_blocks == 1
    assert len(report.details) == 1
    detail = report.details[0]
    assert (detail.slot, detail.stream_count, detail.reference_count) == (100, 5, 9)


@pytest.mark.asyncio
async def test_query_failure_leaves_report_untouched() -> None:
    report = Report()
    reference = FakeReferenceSource({100: ReferenceQueryError("boom", slot=100)})
    comparator = Comparator(reference, report)
    with pytest.raises(ReferenceQueryError):
        await comparator.compare(BlockObservation(slot=100, stream_tx_count=5))
    assert report.total_rpc_txs == 0
    assert report.total_blocks == 0
    assert report.mismatched_blocks == 0


@pytest.mark.asyncio
async def test_each_observation_queries_reference_once() -> None:
    reference = FakeReferenceSource({1: 1, 2: 2})
    comparator = Comparator(reference, Report())
    await comparator.compare(BlockObservation(slot=1, stream_tx_count=1))
    await comparator.compare(BlockObservation(slot=2, stream_tx_count=0))
    assert reference.queried == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_comparisons_sum_exactly() -> None:
    n = 50
    counts = {slot: slot * 3 + 1 for slot in range(n)}
    report = Report()
    comparator = Comparator(FakeReferenceSource(counts, delay_s=0.001), report)

    results = await asyncio.gather(*(
        comparator.compare(BlockObservation(slot=slot, stream_tx_count=counts[slot] if slot % 2 else 0))
        for slot in range(n)
    ))

    assert report.total_rpc_txs == sum(counts.values())
    assert report.mismatched_blocks == sum(1 for r in results if r is MatchResult.MISMATCH)
    assert report.mismatched_blocks == n // 2
    assert sorted(d.slot for d in report.details) == [s for s in range(n) if s % 2 == 0]
