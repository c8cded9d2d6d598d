# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models for Calendar Mirror Sync

Records are stored as plain JSON documents; field names on disk use the
camelCase layout shared with the setup and status surfaces.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any

from cal_ops.errors import InvalidTransitionError
from utils.timezone import now_ms

# =============================================================================
# STATUS VALUES
# =============================================================================

PENDING = 'pending'
SYNCING = 'syncing'
COMPLETE = 'complete'
FAILED = 'failed'

TERMINAL_STATUSES = {COMPLETE, FAILED}

ALLOWED_TRANSITIONS = {
    PENDING: {PENDING, SYNCING, COMPLETE, FAILED},
    SYNCING: {SYNCING, COMPLETE, FAILED},
    COMPLETE: set(),
    FAILED: set(),
}

COORDINATION_RUNNING = 'running'
COORDINATION_COMPLETE = 'complete'
COORDINATION_FAILED = 'failed'


def mapping_id(source_calendar_id: str, source_event_id: str) -> str:
    """Document id of an event mapping: the composite source key"""
    return f"{source_calendar_id}_{source_event_id}"


# =============================================================================
# CHANNEL SYNC STATE
# =============================================================================

@dataclass(frozen=True)
class SyncState:
    """Backfill progress of one channel; replaced wholesale on every change"""
    status: str = PENDING
    page_token: Optional[str] = None
    events_synced: int = 0
    failed_events: tuple = ()
    retry_count: int = 0
    last_batch_time: Optional[int] = None
    time_max: Optional[str] = None
    last_error: Optional[str] = None
    last_error_at: Optional[int] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, **changes) -> 'SyncState':
        """
        Return a new state with `changes` applied and the version bumped.

        Status edges are checked against ALLOWED_TRANSITIONS; complete and
        failed are terminal. failed_events is normalized to an ordered,
        de-duplicated tuple.
        """
        if self.is_terminal:
            raise InvalidTransitionError(f"Sync state is {self.status} and cannot change")
        new_status = changes.get('status', self.status)
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(f"Cannot move sync state from {self.status} to {new_status}")
        if 'failed_events' in changes:
            changes['failed_events'] = tuple(dict.fromkeys(changes['failed_events']))
        if changes.get('events_synced', self.events_synced) < self.events_synced:
            raise InvalidTransitionError("events_synced never decreases")
        return replace(self, version=self.version + 1, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'pageToken': self.page_token,
            'eventsSynced': self.events_synced,
            'failedEvents': list(self.failed_events),
            'retryCount': self.retry_count,
            'lastBatchTime': self.last_batch_time,
            'timeMax': self.time_max,
            'lastError': self.last_error,
            'lastErrorAt': self.last_error_at,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'SyncState':
        data = data or {}
        return cls(
            status=data.get('status') or PENDING,
            page_token=data.get('pageToken'),
            events_synced=data.get('eventsSynced') or 0,
            failed_events=tuple(data.get('failedEvents') or ()),
            retry_count=data.get('retryCount') or 0,
            last_batch_time=data.get('lastBatchTime'),
            time_max=data.get('timeMax'),
            last_error=data.get('lastError'),
            last_error_at=data.get('lastErrorAt'),
            version=data.get('version') or 0,
        )


@dataclass
class ChannelStats:
    """
    Incremental sync counters, plus the webhook path's own retry set.

    Webhook failures cannot live in SyncState because a complete state is
    terminal; they are retried from here with the same bounded backoff.
    """
    total_events_synced: int = 0
    last_sync_time: Optional[int] = None
    last_sync_event_count: Optional[int] = None
    failed_events: List[str] = field(default_factory=list)
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalEventsSynced': self.total_events_synced,
            'lastSyncTime': self.last_sync_time,
            'lastSyncEventCount': self.last_sync_event_count,
            'failedEvents': list(self.failed_events),
            'retryCount': self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'ChannelStats':
        data = data or {}
        return cls(
            total_events_synced=data.get('totalEventsSynced') or 0,
            last_sync_time=data.get('lastSyncTime'),
            last_sync_event_count=data.get('lastSyncEventCount'),
            failed_events=list(data.get('failedEvents') or []),
            retry_count=data.get('retryCount') or 0,
        )


@dataclass
class Channel:
    """One source calendar subscription mirrored into a target calendar"""
    channel_id: str
    user_id: Optional[str]
    calendar_id: str
    target_calendar_id: Optional[str] = None
    resource_id: Optional[str] = None
    expiration: Optional[int] = None
    paused: bool = False
    sync_token: Optional[str] = None
    sync_state: SyncState = field(default_factory=SyncState)
    stats: ChannelStats = field(default_factory=ChannelStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channelId': self.channel_id,
            'userId': self.user_id,
            'calendarId': self.calendar_id,
            'targetCalendarId': self.target_calendar_id,
            'resourceId': self.resource_id,
            'expiration': self.expiration,
            'paused': self.paused,
            'syncToken': self.sync_token,
            'syncState': self.sync_state.to_dict(),
            'stats': self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict, channel_id: Optional[str] = None) -> 'Channel':
        return cls(
            channel_id=data.get('channelId') or channel_id,
            user_id=data.get('userId'),
            calendar_id=data.get('calendarId'),
            target_calendar_id=data.get('targetCalendarId'),
            resource_id=data.get('resourceId'),
            expiration=data.get('expiration'),
            paused=bool(data.get('paused', False)),
            sync_token=data.get('syncToken'),
            sync_state=SyncState.from_dict(data.get('syncState')),
            stats=ChannelStats.from_dict(data.get('stats')),
        )


# =============================================================================
# EVENT MAPPING
# =============================================================================

@dataclass
class EventMapping:
    """Links one source event to its mirror; the idempotency key for upserts"""
    source_calendar_id: str
    source_event_id: str
    target_event_id: str
    last_synced: int = field(default_factory=now_ms)

    @property
    def id(self) -> str:
        return mapping_id(self.source_calendar_id, self.source_event_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sourceCalendarId': self.source_calendar_id,
            'sourceEventId': self.source_event_id,
            'targetEventId': self.target_event_id,
            'lastSynced': self.last_synced,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'EventMapping':
        return cls(
            source_calendar_id=data['sourceCalendarId'],
            source_event_id=data['sourceEventId'],
            target_event_id=data['targetEventId'],
            last_synced=data.get('lastSynced') or 0,
        )


# =============================================================================
# ROUND-ROBIN COORDINATION
# =============================================================================

@dataclass
class SyncCoordination:
    """Per-user cursor over the channels still being backfilled"""
    channel_ids: List[str]
    current_index: int = 0
    iteration_count: int = 0
    status: str = COORDINATION_RUNNING
    created_at: int = field(default_factory=now_ms)
    last_iteration_at: Optional[int] = None
    completed_at: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channelIds': list(self.channel_ids),
            'currentIndex': self.current_index,
            'iterationCount': self.iteration_count,
            'status': self.status,
            'createdAt': self.created_at,
            'lastIterationAt': self.last_iteration_at,
            'completedAt': self.completed_at,
            'lastError': self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SyncCoordination':
        return cls(
            channel_ids=list(data.get('channelIds') or []),
            current_index=data.get('currentIndex') or 0,
            iteration_count=data.get('iterationCount') or 0,
            status=data.get('status') or COORDINATION_RUNNING,
            created_at=data.get('createdAt') or now_ms(),
            last_iteration_at=data.get('lastIterationAt'),
            completed_at=data.get('completedAt'),
            last_error=data.get('lastError'),
        )
