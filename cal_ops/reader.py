# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Calendar Reader - Handles all read operations against the Google Calendar API
"""
import logging
from typing import Dict, Optional
from urllib.parse import quote

from cal_ops.errors import ResourceNotFoundError

logger = logging.getLogger(__name__)


def calendar_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='')}/events"


def event_path(calendar_id: str, event_id: str) -> str:
    return f"{calendar_path(calendar_id)}/{quote(event_id, safe='')}"


class CalendarReader:
    """Handles reading calendar data from Google Calendar"""

    def __init__(self, api_session):
        self.api = api_session

    def get_event(self, calendar_id: str, event_id: str) -> Optional[Dict]:
        """Fetch a single event; None when it does not exist"""
        try:
            return self.api.request('GET', event_path(calendar_id, event_id))
        except ResourceNotFoundError:
            logger.warning(f"Source event {event_id} not found in {calendar_id}")
            return None

    def list_events(
        self,
        calendar_id: str,
        sync_token: Optional[str] = None,
        page_token: Optional[str] = None,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        max_results: Optional[int] = None,
        single_events: bool = True,
        order_by: Optional[str] = None,
    ) -> Dict:
        """
        List one page of events.

        With a sync token the API only accepts the token (and a page token when
        continuing a multi-page delta), so the windowing parameters are left
        out in that mode.

        Returns:
            Dict with 'items' and optionally 'nextPageToken' / 'nextSyncToken'
        """
        params = {}
        if sync_token:
            params['syncToken'] = sync_token
        else:
            params['singleEvents'] = 'true' if single_events else 'false'
            if time_min:
                params['timeMin'] = time_min
            if time_max:
                params['timeMax'] = time_max
            if order_by:
                params['orderBy'] = order_by
        if max_results:
            params['maxResults'] = max_results
        if page_token:
            params['pageToken'] = page_token

        data = self.api.request('GET', calendar_path(calendar_id), params=params) or {}
        data.setdefault('items', [])
        logger.info(f"Fetched {len(data['items'])} events from {calendar_id}")
        return data
