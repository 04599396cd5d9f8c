"""
Automatic lookback selection.

On startup the views pick the smallest time window that already holds a
useful amount of data, so a fresh install with only old data still shows
something and a busy cluster does not scan a week of documents.
"""

import asyncio
from typing import Awaitable, Callable, Sequence, Tuple

from common.pylogger import get_python_logger
from .config import AUTO_DETECT_TARGET
from .models import LOOKBACK_CANDIDATES, Lookback

logger = get_python_logger(__name__)

CountFunction = Callable[[Lookback], Awaitable[int]]


class AutoRangeDetector:
    """Searches ascending lookback windows for the first one with enough documents."""

    def __init__(self, count_fn: CountFunction, target: int = AUTO_DETECT_TARGET,
                 candidates: Sequence[Lookback] = LOOKBACK_CANDIDATES):
        self.count_fn = count_fn
        self.target = target
        self.candidates = tuple(candidates)

    async def detect(self) -> Tuple[Lookback, int]:
        """
        Count documents per candidate window and choose one.

        Stops at the first window whose count reaches the target. Otherwise
        returns the window with the highest count seen; failed counts are
        skipped as zero.

        Returns:
            Tuple of (lookback, observed document count)
        """
        best = self.candidates[0] if self.candidates else Lookback.FIVE_MINUTES
        best_count = 0

        for lookback in self.candidates:
            try:
                count = await self.count_fn(lookback)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Auto-detect count for {lookback.value} failed, skipping: {e}")
                continue

            logger.debug(f"Auto-detect {lookback.value}: {count} documents")
            if count > best_count:
                best, best_count = lookback, count

            if count >= self.target:
                return lookback, count

        return best, best_count
