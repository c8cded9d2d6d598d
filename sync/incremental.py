# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Incremental Sync - applies the event delta for one channel on webhook delivery
"""
import logging
from dataclasses import dataclass
from typing import Optional

import config
from models import COMPLETE
from sync.fetcher import PageFetcher
from sync.mirror import EventMirror
from sync.retry_ledger import RetryLedger
from utils.logger import StructuredLogger
from utils.rate_limiter import RateLimiter
from utils.timezone import now_ms

logger = logging.getLogger(__name__)

SKIP_UNKNOWN = 'unknown_channel'
SKIP_PAUSED = 'paused'
SKIP_BACKFILLING = 'backfilling'


@dataclass
class IncrementalResult:
    channel_id: str
    processed: int = 0
    synced: int = 0
    recovered: int = 0
    failed: int = 0
    skipped: Optional[str] = None


class IncrementalSync:
    """Runs synchronously inside the webhook request"""

    def __init__(self, sync_store, clients, rate_limiter: Optional[RateLimiter] = None,
                 max_pages: int = config.MAX_INCREMENTAL_PAGES):
        self.store = sync_store
        self.clients = clients
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_pages = max_pages
        self.structured_logger = StructuredLogger(__name__)

    def handle_notification(self, channel_id: str) -> IncrementalResult:
        channel = self.store.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Webhook for unknown channel {channel_id}, ignoring")
            return IncrementalResult(channel_id, skipped=SKIP_UNKNOWN)
        if channel.paused:
            logger.info(f"⏸️ Channel {channel_id} is paused, ignoring webhook")
            return IncrementalResult(channel_id, skipped=SKIP_PAUSED)
        if channel.sync_state.status != COMPLETE:
            # The running backfill will pick these events up
            logger.info(f"Channel {channel_id} is still backfilling, ignoring webhook")
            return IncrementalResult(channel_id, skipped=SKIP_BACKFILLING)

        reader, writer = self.clients.for_user(channel.user_id)
        mirror = EventMirror(reader, writer, self.store)
        ledger = RetryLedger(mirror, self.rate_limiter)
        fetcher = PageFetcher(reader)
        stats = channel.stats

        result = IncrementalResult(channel_id)
        retry = ledger.retry(channel, stats.failed_events, stats.retry_count)
        result.recovered = len(retry.recovered)
        result.synced += retry.synced_count

        next_sync_token = None
        page_token = None
        new_failures = []

        for _ in range(self.max_pages):
            page = fetcher.fetch_page(channel, page_token=page_token)
            if page.sync_token_expired:
                channel.sync_token = None

            for event in self.rate_limiter.iterate(page.events):
                result.processed += 1
                outcome = mirror.mirror(channel.calendar_id, event['id'], channel.target_calendar_id)
                if outcome.synced:
                    result.synced += 1
                elif outcome.failed:
                    new_failures.append(outcome.source_event_id)

            if page.next_page_token:
                page_token = page.next_page_token
                continue
            next_sync_token = page.next_sync_token
            break
        else:
            logger.warning(f"⚠️ Channel {channel_id} delta exceeded {self.max_pages} pages, "
                           f"next notification will rescan")

        result.failed = len(new_failures)
        still_failed = retry.still_failed
        if still_failed and ledger.exhausted(retry.retry_count):
            logger.warning(f"Giving up on {len(still_failed)} event(s) for channel {channel_id} "
                           f"after {retry.retry_count} retries: {still_failed}")
            still_failed = []

        # The token always advances; failed ids are retried from the stats ledger
        stats.failed_events = list(dict.fromkeys(still_failed + new_failures))
        stats.retry_count = retry.retry_count if still_failed else 0
        stats.total_events_synced += result.synced
        stats.last_sync_time = now_ms()
        stats.last_sync_event_count = result.synced
        self.store.update_channel(channel_id, {
            'syncToken': next_sync_token,
            'stats': stats.to_dict(),
        })

        self.structured_logger.log_sync_event('incremental_sync_completed', {
            'channel_id': channel_id,
            'processed': result.processed,
            'synced': result.synced,
            'recovered': result.recovered,
            'failed': result.failed,
            'pending_retries': len(stats.failed_events),
            'caught_up': next_sync_token is not None,
        })
        return result
