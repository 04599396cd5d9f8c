"""Tests for automatic lookback selection."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.auto_range import AutoRangeDetector
from core.models import Lookback


def _counter(counts):
    """Count function returning the given values in candidate order."""
    return AsyncMock(side_effect=list(counts))


class TestAutoRangeDetector:

    @pytest.mark.asyncio
    async def test_stops_at_first_window_reaching_target(self):
        count_fn = _counter([50, 200, 15000, 5])
        detector = AutoRangeDetector(count_fn, target=10000)

        assert await detector.detect() == (Lookback.ONE_DAY, 15000)
        assert count_fn.await_count == 3
        assert [c.args[0] for c in count_fn.await_args_list] == [
            Lookback.FIVE_MINUTES, Lookback.ONE_HOUR, Lookback.ONE_DAY,
        ]

    @pytest.mark.asyncio
    async def test_picks_highest_count_when_target_missed(self):
        detector = AutoRangeDetector(_counter([0, 10, 30, 30, 20]), target=10000)
        assert await detector.detect() == (Lookback.ONE_DAY, 30)

    @pytest.mark.asyncio
    async def test_all_empty_returns_first_candidate(self):
        detector = AutoRangeDetector(_counter([0, 0, 0, 0, 0]), target=100)
        assert await detector.detect() == (Lookback.FIVE_MINUTES, 0)

    @pytest.mark.asyncio
    async def test_failed_counts_are_skipped(self):
        detector = AutoRangeDetector(
            _counter([RuntimeError("boom"), 5, RuntimeError("boom"), 8, 2]),
            target=100,
        )
        assert await detector.detect() == (Lookback.ONE_WEEK, 8)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        detector = AutoRangeDetector(_counter([1, asyncio.CancelledError()]), target=100)
        with pytest.raises(asyncio.CancelledError):
            await detector.detect()

    @pytest.mark.asyncio
    async def test_custom_candidates(self):
        detector = AutoRangeDetector(
            _counter([3, 7]),
            target=5,
            candidates=[Lookback.ONE_HOUR, Lookback.ALL],
        )
        assert await detector.detect() == (Lookback.ALL, 7)

    @pytest.mark.asyncio
    async def test_timed_out_counts_keep_best_so_far(self):
        detector = AutoRangeDetector(
            _counter([500, asyncio.TimeoutError(), asyncio.TimeoutError(),
                      asyncio.TimeoutError(), asyncio.TimeoutError()]),
            target=10000,
        )
        assert await detector.detect() == (Lookback.FIVE_MINUTES, 500)
