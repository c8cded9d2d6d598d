# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Client Factory - builds and reuses one reader/writer pair per user
"""
import logging
import threading
from typing import Dict, Optional, Tuple

import requests

from auth.google_auth import UserTokenProvider
from cal_ops.http import GoogleApiSession
from cal_ops.reader import CalendarReader
from cal_ops.writer import CalendarWriter

logger = logging.getLogger(__name__)


class ClientFactory:
    """Constructed once at startup and passed to every sync component"""

    def __init__(self, store, session: Optional[requests.Session] = None):
        self.store = store
        self.session = session or requests.Session()
        self._clients: Dict[str, Tuple[CalendarReader, CalendarWriter]] = {}
        self._lock = threading.Lock()

    def for_user(self, user_id: str) -> Tuple[CalendarReader, CalendarWriter]:
        with self._lock:
            if user_id not in self._clients:
                token_provider = UserTokenProvider(self.store, user_id, session=self.session)
                api = GoogleApiSession(token_provider, session=self.session)
                self._clients[user_id] = (CalendarReader(api), CalendarWriter(api))
                logger.debug(f"Built calendar clients for user {user_id}")
            return self._clients[user_id]
