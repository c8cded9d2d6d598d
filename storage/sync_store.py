# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Store - typed access to channels, event mappings and coordination records
"""
import logging
from typing import List, Optional

from models import Channel, EventMapping, SyncCoordination, mapping_id
from storage.store import JsonDocumentStore, CHANNELS, EVENT_MAPPINGS, USERS
from utils.timezone import now_ms

logger = logging.getLogger(__name__)


class SyncStore:
    """Wrapper around the document store for sync records"""

    def __init__(self, store: JsonDocumentStore):
        self.store = store

    def transaction(self):
        return self.store.transaction()

    # ----- channels -----
    def get_channel(self, channel_id: str) -> Optional[Channel]:
        data = self.store.get(CHANNELS, channel_id)
        if data is None:
            return None
        return Channel.from_dict(data, channel_id=channel_id)

    def save_channel(self, channel: Channel) -> Channel:
        self.store.set(CHANNELS, channel.channel_id, channel.to_dict())
        return channel

    def update_channel(self, channel_id: str, changes: dict) -> bool:
        """
        Write only the given top-level fields, leaving the rest of the record alone.

        A channel removed meanwhile (stop/clear) is not recreated.
        """
        with self.store.transaction() as txn:
            if txn.get(CHANNELS, channel_id) is None:
                logger.warning(f"Channel {channel_id} was removed, dropping update of {sorted(changes)}")
                return False
            txn.update(CHANNELS, channel_id, changes)
        return True

    def delete_channel(self, channel_id: str) -> bool:
        return self.store.delete(CHANNELS, channel_id)

    def list_channels(self, user_id: str) -> List[Channel]:
        return [
            Channel.from_dict(data, channel_id=doc_id)
            for doc_id, data in self.store.query(CHANNELS, userId=user_id)
        ]

    def set_paused(self, user_id: str, paused: bool) -> int:
        """Flip the pause flag on every channel of a user in one write"""
        with self.store.transaction() as txn:
            channels = self.list_channels(user_id)
            for channel in channels:
                txn.update(CHANNELS, channel.channel_id, {'paused': paused})
        return len(channels)

    # ----- event mappings -----
    def get_mapping(self, source_calendar_id: str, source_event_id: str) -> Optional[EventMapping]:
        data = self.store.get(EVENT_MAPPINGS, mapping_id(source_calendar_id, source_event_id))
        return EventMapping.from_dict(data) if data else None

    def save_mapping(self, mapping: EventMapping) -> EventMapping:
        self.store.set(EVENT_MAPPINGS, mapping.id, mapping.to_dict())
        return mapping

    def touch_mapping(self, mapping: EventMapping) -> EventMapping:
        mapping.last_synced = now_ms()
        self.store.update(EVENT_MAPPINGS, mapping.id, {'lastSynced': mapping.last_synced})
        return mapping

    def delete_mapping(self, source_calendar_id: str, source_event_id: str) -> bool:
        return self.store.delete(EVENT_MAPPINGS, mapping_id(source_calendar_id, source_event_id))

    # ----- users -----
    def clear_user(self, user_id: str, include_mappings: bool = False) -> dict:
        """
        Remove a user's channels and coordination in one transaction.

        With include_mappings, event mappings whose source calendar belongs
        to one of those channels go too. Stored OAuth tokens are kept.
        Pending continuation tasks find no coordination or channel and stop.
        """
        with self.store.transaction() as txn:
            channels = self.list_channels(user_id)
            for channel in channels:
                txn.delete(CHANNELS, channel.channel_id)

            mappings = 0
            if include_mappings:
                calendars = {channel.calendar_id for channel in channels}
                for doc_id, data in self.store.query(EVENT_MAPPINGS):
                    if data.get('sourceCalendarId') in calendars:
                        txn.delete(EVENT_MAPPINGS, doc_id)
                        mappings += 1

            user = txn.get(USERS, user_id)
            if user and 'syncCoordination' in user:
                del user['syncCoordination']
                txn.set(USERS, user_id, user)

        return {'channels': len(channels), 'mappings': mappings}

    def get_coordination(self, user_id: str) -> Optional[SyncCoordination]:
        user = self.store.get(USERS, user_id) or {}
        data = user.get('syncCoordination')
        return SyncCoordination.from_dict(data) if data else None

    def save_coordination(self, user_id: str, coordination: SyncCoordination):
        with self.store.transaction() as txn:
            user = txn.get(USERS, user_id) or {}
            user['syncCoordination'] = coordination.to_dict()
            txn.set(USERS, user_id, user)

    def update_coordination(self, user_id: str, **changes) -> Optional[SyncCoordination]:
        """Apply field changes to the stored coordination inside one transaction"""
        with self.store.transaction() as txn:
            user = txn.get(USERS, user_id) or {}
            data = user.get('syncCoordination')
            if not data:
                return None
            coordination = SyncCoordination.from_dict(data)
            for key, value in changes.items():
                setattr(coordination, key, value)
            user['syncCoordination'] = coordination.to_dict()
            txn.set(USERS, user_id, user)
        return coordination
