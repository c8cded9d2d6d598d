# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Page Fetcher - one paginated list-events call in incremental or backfill mode
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from datetime import datetime

import config
from cal_ops.errors import TokenExpiredError
from models import Channel
from utils.timezone import utc_now, to_rfc3339

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """One page of source events plus the provider's continuation tokens"""
    events: List[Dict] = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_sync_token: Optional[str] = None
    # The stored page token was rejected and the scan restarted from page one
    restarted: bool = False
    # The stored sync token was rejected and a backfill scan was started instead
    sync_token_expired: bool = False


class PageFetcher:
    """Lists source events for a channel, hiding token expiry from callers"""

    def __init__(self, reader, page_size: int = config.PAGE_SIZE,
                 clock: Callable[[], datetime] = utc_now):
        self.reader = reader
        self.page_size = page_size
        self.clock = clock

    def fetch_page(self, channel: Channel, page_token: Optional[str] = None,
                   use_sync_token: bool = True) -> PageResult:
        """
        Fetch the next page for a channel.

        Incremental mode is used when the channel holds a sync token; a
        rejected sync token falls back to a backfill scan from now. In
        backfill mode `page_token` (or the channel's stored page token)
        resumes a scan; a rejected page token restarts it from page one.

        Raises:
            ResourceNotFoundError: the source calendar no longer exists
        """
        if use_sync_token and channel.sync_token:
            try:
                return self._incremental(channel, page_token)
            except TokenExpiredError:
                logger.warning(f"⚠️ Sync token expired for channel {channel.channel_id}, starting full scan")
                result = self._backfill_with_restart(channel, None)
                result.sync_token_expired = True
                return result

        if page_token is None:
            page_token = channel.sync_state.page_token
        return self._backfill_with_restart(channel, page_token)

    def _incremental(self, channel: Channel, page_token: Optional[str]) -> PageResult:
        data = self.reader.list_events(
            channel.calendar_id,
            sync_token=channel.sync_token,
            page_token=page_token,
        )
        return self._to_result(data)

    def _backfill_with_restart(self, channel: Channel, page_token: Optional[str]) -> PageResult:
        try:
            return self._backfill(channel, page_token)
        except TokenExpiredError:
            if not page_token:
                raise
            logger.warning(f"⚠️ Page token expired for channel {channel.channel_id}, restarting from first page")
            result = self._backfill(channel, None)
            result.restarted = True
            return result

    def _backfill(self, channel: Channel, page_token: Optional[str]) -> PageResult:
        data = self.reader.list_events(
            channel.calendar_id,
            page_token=page_token,
            time_min=to_rfc3339(self.clock()),
            time_max=channel.sync_state.time_max,
            max_results=self.page_size,
            single_events=True,
            order_by='startTime',
        )
        return self._to_result(data)

    @staticmethod
    def _to_result(data: Dict) -> PageResult:
        return PageResult(
            events=[event for event in data.get('items', []) if event.get('id')],
            next_page_token=data.get('nextPageToken'),
            next_sync_token=data.get('nextSyncToken'),
        )
