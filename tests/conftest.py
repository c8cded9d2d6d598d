"""
Shared fixtures: an in-memory calendar provider, a temp-file document store
and a rate limiter that records its sleeps instead of sleeping.
"""

import copy
import sys
import os

import pytest
import schedule

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cal_ops.errors import ResourceNotFoundError, TokenExpiredError, TransientError
from models import Channel, SyncState
from storage.store import JsonDocumentStore
from storage.sync_store import SyncStore
from tasks import TaskQueue
from utils.rate_limiter import RateLimiter

SOURCE_CALENDAR = 'alice@example.com'
TARGET_CALENDAR = 'mirror@example.com'


class FakeProvider:
    """Calendars as dicts of events, with switches for provider failures"""

    def __init__(self):
        self.calendars = {}
        self.missing_calendars = set()
        self.expired_page_tokens = set()
        self.expired_sync_tokens = set()
        self.failing_events = set()
        self.deltas = {}
        self.list_calls = []
        self.writes = []
        self._next_id = 0

    def add_events(self, calendar_id, count, prefix='evt', **fields):
        events = self.calendars.setdefault(calendar_id, {})
        for i in range(count):
            event_id = f"{prefix}{i:04d}"
            events[event_id] = {
                'id': event_id,
                'summary': f"Event {i}",
                'status': 'confirmed',
                'start': {'dateTime': '2030-01-01T10:00:00Z'},
                'end': {'dateTime': '2030-01-01T11:00:00Z'},
                **fields,
            }
        return sorted(events)

    def events(self, calendar_id):
        return self.calendars.get(calendar_id, {})


class FakeReader:

    def __init__(self, provider):
        self.provider = provider

    def get_event(self, calendar_id, event_id):
        if event_id in self.provider.failing_events:
            raise TransientError(f"GET {event_id} -> 503", status_code=503)
        event = self.provider.events(calendar_id).get(event_id)
        return copy.deepcopy(event) if event else None

    def list_events(self, calendar_id, sync_token=None, page_token=None, time_min=None,
                    time_max=None, max_results=None, single_events=True, order_by=None):
        self.provider.list_calls.append({
            'calendar_id': calendar_id, 'sync_token': sync_token, 'page_token': page_token,
            'time_min': time_min, 'time_max': time_max, 'max_results': max_results,
        })
        if calendar_id in self.provider.missing_calendars:
            raise ResourceNotFoundError(f"GET {calendar_id} -> 404")

        if sync_token:
            if sync_token in self.provider.expired_sync_tokens:
                raise TokenExpiredError(f"sync token {sync_token} -> 410")
            items = [copy.deepcopy(e) for e in self.provider.deltas.get(sync_token, [])]
            return {'items': items, 'nextSyncToken': f"{sync_token}+1"}

        if page_token in self.provider.expired_page_tokens:
            raise TokenExpiredError(f"page token {page_token} -> 410")

        events = [self.provider.events(calendar_id)[k] for k in sorted(self.provider.events(calendar_id))]
        offset = int(page_token.split('-')[1]) if page_token else 0
        size = max_results or 250
        result = {'items': [copy.deepcopy(e) for e in events[offset:offset + size]]}
        if offset + size < len(events):
            result['nextPageToken'] = f"page-{offset + size}"
        else:
            result['nextSyncToken'] = f"sync-{calendar_id}"
        return result


class FakeWriter:

    def __init__(self, provider):
        self.provider = provider

    def insert_event(self, calendar_id, event_data):
        self.provider._next_id += 1
        event_id = f"mirror{self.provider._next_id}"
        created = dict(copy.deepcopy(event_data), id=event_id)
        self.provider.calendars.setdefault(calendar_id, {})[event_id] = created
        self.provider.writes.append(('insert', calendar_id, event_id))
        return copy.deepcopy(created)

    def update_event(self, calendar_id, event_id, event_data):
        events = self.provider.calendars.setdefault(calendar_id, {})
        if event_id not in events:
            raise ResourceNotFoundError(f"PUT {event_id} -> 404")
        events[event_id] = dict(copy.deepcopy(event_data), id=event_id)
        self.provider.writes.append(('update', calendar_id, event_id))
        return copy.deepcopy(events[event_id])

    def delete_event(self, calendar_id, event_id):
        self.provider.calendars.setdefault(calendar_id, {}).pop(event_id, None)
        self.provider.writes.append(('delete', calendar_id, event_id))
        return True


class FakeClients:
    """Stands in for ClientFactory"""

    def __init__(self, provider):
        self.reader = FakeReader(provider)
        self.writer = FakeWriter(provider)

    def for_user(self, user_id):
        return self.reader, self.writer


class RecordingSleep:

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clients(provider):
    return FakeClients(provider)


@pytest.fixture
def store(tmp_path):
    return JsonDocumentStore(str(tmp_path / 'store.json'))


@pytest.fixture
def sync_store(store):
    return SyncStore(store)


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def rate_limiter(sleeps):
    return RateLimiter(delay_ms=150, sleep=sleeps)


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def task_queue(store, dispatched):
    return TaskQueue(store, dispatched.append, scheduler=schedule.Scheduler())


@pytest.fixture
def make_channel(sync_store):
    """Save a channel record and return it"""

    def _make(channel_id='chan-1', user_id='user-1', calendar_id=SOURCE_CALENDAR,
              target_calendar_id=TARGET_CALENDAR, sync_token=None, paused=False, **state):
        channel = Channel(
            channel_id=channel_id,
            user_id=user_id,
            calendar_id=calendar_id,
            target_calendar_id=target_calendar_id,
            sync_token=sync_token,
            paused=paused,
            sync_state=SyncState(**state),
        )
        return sync_store.save_channel(channel)

    return _make
