# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Document Store - collections of JSON documents persisted to a single file

Layout (logical):
    channels/{channelId}
    eventMappings/{sourceCalendarId}_{sourceEventId}
    users/{userId}                  (syncCoordination, tokens)
    tasks/{taskName}
"""
import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple, Any

logger = logging.getLogger(__name__)

CHANNELS = 'channels'
EVENT_MAPPINGS = 'eventMappings'
USERS = 'users'
TASKS = 'tasks'

_DELETED = object()


class Transaction:
    """Staged reads and writes applied atomically when the block exits cleanly"""

    def __init__(self, store: 'JsonDocumentStore'):
        self._store = store
        self._writes: Dict[Tuple[str, str], Any] = {}

    def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        staged = self._writes.get((collection, doc_id))
        if staged is _DELETED:
            return None
        if staged is not None:
            return copy.deepcopy(staged)
        return self._store._read(collection, doc_id)

    def set(self, collection: str, doc_id: str, data: Dict):
        self._writes[(collection, doc_id)] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, changes: Dict):
        current = self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id} does not exist")
        current.update(copy.deepcopy(changes))
        self._writes[(collection, doc_id)] = current

    def delete(self, collection: str, doc_id: str):
        self._writes[(collection, doc_id)] = _DELETED

    def _commit(self):
        for (collection, doc_id), data in self._writes.items():
            docs = self._store._data.setdefault(collection, {})
            if data is _DELETED:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = data
        if self._writes:
            self._store._persist()


class JsonDocumentStore:
    """
    Thread-safe document store.

    All writes go through one lock; `transaction()` holds it for the whole
    read-modify-write so concurrent invocations in this process serialize.
    With `path=None` the store lives only in memory.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, Dict]] = {}
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, 'r') as f:
                self._data = json.load(f)
            logger.info(f"Loaded document store from {self.path}")
        except json.JSONDecodeError as e:
            logger.error(f"Document store {self.path} is corrupt: {e}")
            raise

    def _persist(self):
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(self._data, f)
        os.replace(tmp_path, self.path)

    def _read(self, collection: str, doc_id: str) -> Optional[Dict]:
        doc = self._data.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            txn = Transaction(self)
            yield txn
            txn._commit()

    def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        with self._lock:
            return self._read(collection, doc_id)

    def set(self, collection: str, doc_id: str, data: Dict):
        with self.transaction() as txn:
            txn.set(collection, doc_id, data)

    def update(self, collection: str, doc_id: str, changes: Dict):
        with self.transaction() as txn:
            txn.update(collection, doc_id, changes)

    def delete(self, collection: str, doc_id: str) -> bool:
        with self.transaction() as txn:
            existed = txn.get(collection, doc_id) is not None
            txn.delete(collection, doc_id)
        return existed

    def create(self, collection: str, doc_id: str, data: Dict) -> bool:
        """Insert only if absent; False when the document already exists"""
        with self.transaction() as txn:
            if txn.get(collection, doc_id) is not None:
                return False
            txn.set(collection, doc_id, data)
        return True

    def query(self, collection: str, **filters) -> List[Tuple[str, Dict]]:
        """Documents whose top-level fields equal every filter value"""
        with self._lock:
            docs = self._data.get(collection, {})
            return [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in docs.items()
                if all(doc.get(key) == value for key, value in filters.items())
            ]
