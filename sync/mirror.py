# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Event Mirror - idempotent upsert/delete of one source event in the target calendar
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from cal_ops.errors import ConfigurationError, ResourceNotFoundError
from models import EventMapping

logger = logging.getLogger(__name__)

MIRRORED_FIELDS = ('description', 'location', 'start', 'end')


@dataclass
class MirrorResult:
    """Outcome of mirroring one event; failures carry the source id for retry"""
    synced: bool
    source_event_id: str
    event_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def source_label(source_calendar_id: str) -> str:
    """Short label for a source calendar: the local part of its id"""
    return source_calendar_id.split('@')[0]


def free_busy(source_event: Dict) -> str:
    return 'free' if source_event.get('transparency') == 'transparent' else 'busy'


def build_mirror_event(source_calendar_id: str, source_event: Dict) -> Dict:
    """
    Build the request body for the mirror copy of a source event.

    The summary is prefixed with the source label and suffixed with the
    free/busy state; the mirror is always private and keeps the source's
    transparency so busy/free semantics match.
    """
    title = source_event.get('summary') or '(No title)'
    body = {
        'summary': f"[{source_label(source_calendar_id)}] {title} - {free_busy(source_event)}",
        'visibility': 'private',
        'transparency': source_event.get('transparency') or 'opaque',
    }
    for key in MIRRORED_FIELDS:
        if source_event.get(key) is not None:
            body[key] = source_event[key]
    return body


class EventMirror:
    """Mirrors single source events into the target calendar"""

    def __init__(self, reader, writer, sync_store):
        self.reader = reader
        self.writer = writer
        self.store = sync_store

    def mirror(self, source_calendar_id: str, source_event_id: str,
               target_calendar_id: str) -> MirrorResult:
        """
        Insert, update or delete the mirror of one source event.

        Never raises: any failure is logged and returned as a not-synced
        result with `error` set, which callers feed into the retry ledger.
        Running it twice for the same event updates the same mirror.
        """
        try:
            return self._mirror(source_calendar_id, source_event_id, target_calendar_id)
        except Exception as e:
            logger.error(f"❌ Error mirroring event {source_event_id} from {source_calendar_id}: {e}")
            return MirrorResult(synced=False, source_event_id=source_event_id, error=str(e) or type(e).__name__)

    def _mirror(self, source_calendar_id: str, source_event_id: str,
                target_calendar_id: str) -> MirrorResult:
        if source_calendar_id == target_calendar_id:
            raise ConfigurationError("SAFETY ABORT: source and target calendars are identical")

        mapping = self.store.get_mapping(source_calendar_id, source_event_id)

        source_event = self.reader.get_event(source_calendar_id, source_event_id)
        if not source_event:
            return MirrorResult(synced=False, source_event_id=source_event_id)

        if source_event.get('status') == 'cancelled':
            if mapping:
                self.writer.delete_event(target_calendar_id, mapping.target_event_id)
                self.store.delete_mapping(source_calendar_id, source_event_id)
                logger.info(f"🗑️ Removed mirror {mapping.target_event_id} of cancelled event {source_event_id}")
            return MirrorResult(synced=False, source_event_id=source_event_id)

        body = build_mirror_event(source_calendar_id, source_event)

        if mapping:
            try:
                self.writer.update_event(target_calendar_id, mapping.target_event_id, body)
            except ResourceNotFoundError:
                # Mirror was removed out from under us; recreate it under the same key
                logger.warning(f"Mirror {mapping.target_event_id} is gone, recreating for {source_event_id}")
                return self._insert(source_calendar_id, source_event_id, target_calendar_id, body)
            self.store.touch_mapping(mapping)
            return MirrorResult(synced=True, source_event_id=source_event_id, event_id=mapping.target_event_id)

        return self._insert(source_calendar_id, source_event_id, target_calendar_id, body)

    def _insert(self, source_calendar_id: str, source_event_id: str,
                target_calendar_id: str, body: Dict) -> MirrorResult:
        created = self.writer.insert_event(target_calendar_id, body)
        target_event_id = created.get('id')
        if not target_event_id:
            raise ValueError(f"Insert into {target_calendar_id} returned no event id")

        self.store.save_mapping(EventMapping(
            source_calendar_id=source_calendar_id,
            source_event_id=source_event_id,
            target_event_id=target_event_id,
        ))
        return MirrorResult(synced=True, source_event_id=source_event_id, event_id=target_event_id)
