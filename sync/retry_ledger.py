# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Ledger - bounded exponential-backoff retry of a channel's failed events
"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

import config
from models import Channel, SyncState
from utils.rate_limiter import RateLimiter
from utils.retry import compute_backoff_delay

logger = logging.getLogger(__name__)


@dataclass
class RetryOutcome:
    attempted: bool = False
    synced_count: int = 0
    recovered: List[str] = field(default_factory=list)
    still_failed: List[str] = field(default_factory=list)
    retry_count: int = 0

    def apply(self, state: SyncState) -> SyncState:
        """Fold this pass into the channel's sync state"""
        if not self.attempted:
            return state
        return state.transition(failed_events=self.still_failed, retry_count=self.retry_count)


class RetryLedger:
    """Re-runs the event mirror for event ids that failed in earlier batches"""

    def __init__(self, mirror, rate_limiter: RateLimiter,
                 max_retry: int = config.MAX_RETRY,
                 base_delay_ms: int = config.RETRY_BASE_DELAY_MS,
                 max_delay_ms: int = config.RETRY_MAX_DELAY_MS):
        self.mirror = mirror
        self.rate_limiter = rate_limiter
        self.max_retry = max_retry
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    def backoff_delay_ms(self, retry_count: int) -> float:
        return compute_backoff_delay(retry_count, self.base_delay_ms, self.max_delay_ms)

    def exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_retry

    def run(self, channel: Channel) -> RetryOutcome:
        """Retry pass over the backfill failures held in the channel's sync state"""
        state = channel.sync_state
        return self.retry(channel, state.failed_events, state.retry_count)

    def retry(self, channel: Channel, failed_events: Sequence[str], retry_count: int) -> RetryOutcome:
        """
        Retry every failed event once, after the backoff delay for this attempt.

        retry_count goes up whether or not anything recovers. Once it reaches
        max_retry the remaining ids are left alone and never block the
        channel.
        """
        if not failed_events or self.exhausted(retry_count):
            if failed_events:
                logger.info(
                    f"Retry limit reached for channel {channel.channel_id}: "
                    f"{len(failed_events)} event(s) left unsynced"
                )
            return RetryOutcome(still_failed=list(failed_events), retry_count=retry_count)

        delay_ms = self.backoff_delay_ms(retry_count)
        logger.info(
            f"🔁 Retrying {len(failed_events)} failed event(s) for channel {channel.channel_id} "
            f"(attempt {retry_count + 1}/{self.max_retry}) after {delay_ms:.0f}ms"
        )
        self.rate_limiter.wait(delay_ms)

        outcome = RetryOutcome(attempted=True, retry_count=retry_count + 1)
        for event_id in self.rate_limiter.iterate(list(failed_events)):
            result = self.mirror.mirror(channel.calendar_id, event_id, channel.target_calendar_id)
            if result.failed:
                outcome.still_failed.append(event_id)
            else:
                outcome.recovered.append(event_id)
                if result.synced:
                    outcome.synced_count += 1

        logger.info(
            f"Retry pass for channel {channel.channel_id}: {len(outcome.recovered)} recovered, "
            f"{len(outcome.still_failed)} still failing"
        )
        return outcome
