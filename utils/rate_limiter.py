# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Rate Limiter - fixed spacing between provider calls issued in a loop
"""
import logging
import time
from typing import Callable, Iterator, Sequence, TypeVar

import config

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimiter:
    """
    Waits a fixed delay between consecutive calls, never after the last one.

    Call volume per invocation is bounded by the page size, so a plain gate
    is enough; this is not a token bucket.
    """

    def __init__(self, delay_ms: int = config.RATE_LIMIT_DELAY_MS,
                 sleep: Callable[[float], None] = time.sleep):
        self.delay_ms = delay_ms
        self._sleep = sleep

    def pace(self, index: int, total: int):
        """Sleep after item `index` of `total` unless it was the last one"""
        if self.delay_ms > 0 and index < total - 1:
            self._sleep(self.delay_ms / 1000.0)

    def iterate(self, items: Sequence[T]) -> Iterator[T]:
        """Yield items in order, pausing between them"""
        total = len(items)
        for index, item in enumerate(items):
            yield item
            self.pace(index, total)

    def wait(self, delay_ms: float):
        """Sleep for an arbitrary delay (used for retry backoff)"""
        if delay_ms > 0:
            logger.debug(f"Waiting {delay_ms:.0f}ms")
            self._sleep(delay_ms / 1000.0)
