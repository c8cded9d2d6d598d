# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Batch Processor - advances one channel's backfill by exactly one page

pending -> syncing -> {complete | failed}; syncing is re-entered on every
batch until the scan reaches its last page.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import config
from cal_ops.errors import ConfigurationError, ResourceNotFoundError
from models import Channel, SyncState, SYNCING, COMPLETE, FAILED
from sync.fetcher import PageFetcher
from sync.mirror import EventMirror
from sync.retry_ledger import RetryLedger
from utils.logger import StructuredLogger
from utils.rate_limiter import RateLimiter
from utils.timezone import now_ms, horizon_from_now

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    channel_id: str
    status: str
    synced_count: int = 0
    failed_count: int = 0
    has_more: bool = False
    skipped: bool = False


class BatchProcessor:
    """
    Runs one batch for a channel: retry pass, page fetch, per-event mirror,
    checkpoint, then decide whether the channel continues, completes or fails.
    """

    def __init__(self, sync_store, clients, rate_limiter: Optional[RateLimiter] = None,
                 continuation: Optional[Callable[[Channel], None]] = None):
        self.store = sync_store
        self.clients = clients
        self.rate_limiter = rate_limiter or RateLimiter()
        self.continuation = continuation
        self.structured_logger = StructuredLogger(__name__)

    def process(self, channel_id: str) -> BatchResult:
        channel = self.store.get_channel(channel_id)
        if channel is None:
            raise ConfigurationError(f"Channel {channel_id} not found")

        state = channel.sync_state
        if state.status == COMPLETE:
            logger.info(f"Sync already complete for channel {channel_id}")
            return BatchResult(channel_id, COMPLETE, skipped=True)
        if state.status == FAILED:
            # Failed channels need an operator restart; they are never re-driven here
            logger.warning(f"Channel {channel_id} is failed, skipping batch")
            return BatchResult(channel_id, FAILED, skipped=True)

        if not channel.target_calendar_id or not channel.user_id:
            cause = f"Missing configuration for {channel.calendar_id}"
            self._mark_failed(channel_id, cause)
            raise ConfigurationError(cause)

        if state.status != SYNCING:
            # The scan window is fixed once so resumed pages see the same range
            channel.sync_state = state.transition(
                status=SYNCING,
                last_batch_time=now_ms(),
                time_max=state.time_max or horizon_from_now(config.BACKFILL_HORIZON_DAYS),
            )
            self._save_state(channel)

        try:
            result = self._run(channel)
        except Exception as e:
            logger.error(f"❌ Error in batch sync for channel {channel_id}: {e}")
            self._mark_failed(channel_id, str(e) or type(e).__name__)
            raise

        if result.has_more and self.continuation:
            current = self.store.get_channel(channel_id)
            if current is not None:
                self.continuation(current)
        return result

    def _run(self, channel: Channel) -> BatchResult:
        reader, writer = self.clients.for_user(channel.user_id)
        mirror = EventMirror(reader, writer, self.store)
        ledger = RetryLedger(mirror, self.rate_limiter)
        fetcher = PageFetcher(reader)

        retry = ledger.run(channel)
        state = retry.apply(channel.sync_state)

        try:
            page = fetcher.fetch_page(channel)
        except ResourceNotFoundError as e:
            logger.error(f"❌ Source calendar {channel.calendar_id} no longer exists: {e}")
            channel.sync_state = state.transition(
                status=FAILED,
                last_error=f"Source calendar not found: {channel.calendar_id}",
                last_error_at=now_ms(),
                last_batch_time=now_ms(),
            )
            self._save_state(channel)
            self.structured_logger.log_sync_event('batch_failed', {
                'channel_id': channel.channel_id,
                'cause': 'calendar_not_found',
            })
            return BatchResult(channel.channel_id, FAILED)

        if page.sync_token_expired:
            channel.sync_token = None

        synced_count = 0
        new_failures = []
        for event in self.rate_limiter.iterate(page.events):
            outcome = mirror.mirror(channel.calendar_id, event['id'], channel.target_calendar_id)
            if outcome.synced:
                synced_count += 1
            elif outcome.failed:
                new_failures.append(outcome.source_event_id)

        logger.info(f"Processed {len(page.events)} events, synced {synced_count} for channel {channel.channel_id}")

        channel.sync_state, has_more = self._checkpoint(
            channel, state, page, synced_count + retry.synced_count, new_failures
        )
        self._save_state(channel, include_token=True)

        self.structured_logger.log_sync_event('batch_completed', {
            'channel_id': channel.channel_id,
            'status': channel.sync_state.status,
            'events_in_page': len(page.events),
            'synced': synced_count,
            'recovered': len(retry.recovered),
            'failed': len(new_failures),
            'events_synced_total': channel.sync_state.events_synced,
            'has_more': has_more,
        })
        return BatchResult(
            channel.channel_id,
            channel.sync_state.status,
            synced_count=synced_count,
            failed_count=len(new_failures),
            has_more=has_more,
        )

    @staticmethod
    def _checkpoint(channel: Channel, state: SyncState, page, synced_count: int, new_failures):
        """Compute the next sync state from a processed page"""
        changes = {
            'failed_events': list(state.failed_events) + new_failures,
            'events_synced': state.events_synced + synced_count,
            'last_batch_time': now_ms(),
        }

        if page.next_page_token:
            changes.update(page_token=page.next_page_token, status=SYNCING)
            return state.transition(**changes), True

        if page.next_sync_token:
            # Graduation from backfill to incremental mode
            logger.info(f"Final page reached for channel {channel.channel_id}, marking sync complete")
            channel.sync_token = page.next_sync_token
        else:
            logger.warning(f"No nextPageToken or nextSyncToken for channel {channel.channel_id}")

        changes.update(page_token=None, status=COMPLETE)
        return state.transition(**changes), False

    def _save_state(self, channel: Channel, include_token: bool = False):
        """Field-level write; pause flags and stats set meanwhile survive the batch"""
        changes = {'syncState': channel.sync_state.to_dict()}
        if include_token:
            changes['syncToken'] = channel.sync_token
        self.store.update_channel(channel.channel_id, changes)

    def _mark_failed(self, channel_id: str, cause: str):
        """Force a channel to failed with the cause recorded"""
        channel = self.store.get_channel(channel_id)
        if channel is None or channel.sync_state.is_terminal:
            return
        now = now_ms()
        channel.sync_state = channel.sync_state.transition(
            status=FAILED, last_error=cause[:500], last_error_at=now, last_batch_time=now
        )
        self._save_state(channel)
        self.structured_logger.log_sync_event('batch_failed', {
            'channel_id': channel_id,
            'cause': cause[:500],
        })
