# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Calendar Writer - Handles all write operations against the Google Calendar API
"""
import logging
from typing import Dict

from cal_ops.errors import ResourceNotFoundError
from cal_ops.reader import calendar_path, event_path

logger = logging.getLogger(__name__)


class CalendarWriter:
    """Handles writing mirror events to the target calendar"""

    def __init__(self, api_session):
        self.api = api_session

    def insert_event(self, calendar_id: str, event_data: Dict) -> Dict:
        """Create a new event and return the provider's record"""
        created = self.api.request('POST', calendar_path(calendar_id), json_body=event_data) or {}
        logger.info(f"✅ Created event {created.get('id')}: {event_data.get('summary')}")
        return created

    def update_event(self, calendar_id: str, event_id: str, event_data: Dict) -> Dict:
        """Replace an existing event in place"""
        updated = self.api.request('PUT', event_path(calendar_id, event_id), json_body=event_data) or {}
        logger.info(f"✅ Updated event {event_id}: {event_data.get('summary')}")
        return updated

    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event; an event that is already gone counts as deleted"""
        try:
            self.api.request('DELETE', event_path(calendar_id, event_id))
        except ResourceNotFoundError:
            logger.warning(f"Event not found for deletion: {event_id[:8]}...")
            return True
        logger.info(f"✅ Deleted event ID: {event_id[:8]}...")
        return True
