# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Google OAuth - per-user access tokens read from the document store

Token acquisition happens in the setup flow; this module only consumes the
stored tokens and refreshes expired access tokens.
"""
import logging
from typing import Dict, Optional

import requests

import config
from storage.store import USERS
from utils.timezone import now_ms

logger = logging.getLogger(__name__)

# Refresh a little before the provider's expiry
EXPIRY_MARGIN_MS = 5 * 60 * 1000


class UserTokenProvider:
    """Supplies bearer headers for one user's Calendar API calls"""

    def __init__(self, store, user_id: str, session: Optional[requests.Session] = None):
        self.store = store
        self.user_id = user_id
        self.session = session or requests.Session()

    def _tokens(self) -> Dict:
        user = self.store.get(USERS, self.user_id) or {}
        return user.get('tokens') or {}

    def _is_token_expired(self, tokens: Dict) -> bool:
        expiry = tokens.get('expiry_date')
        if not expiry:
            return False
        return now_ms() >= int(expiry) - EXPIRY_MARGIN_MS

    def ensure_valid_token(self) -> bool:
        tokens = self._tokens()
        if not tokens:
            logger.warning(f"No tokens found for user {self.user_id}")
            return False
        if not tokens.get('access_token') or self._is_token_expired(tokens):
            logger.info("Token expired or missing, refreshing...")
            return self.refresh_access_token()
        return True

    def get_headers(self) -> Optional[Dict[str, str]]:
        """Get authorization headers for API calls"""
        if not self.ensure_valid_token():
            logger.error("Cannot get headers - no valid token")
            return None

        access_token = self._tokens().get('access_token')
        if not access_token:
            logger.error("No access token available for headers")
            return None
        return {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json'
        }

    def refresh_access_token(self) -> bool:
        """Refresh the access token using the stored refresh token"""
        tokens = self._tokens()
        refresh_token = tokens.get('refresh_token')
        if not refresh_token:
            logger.warning(f"No refresh token available for user {self.user_id}")
            return False

        data = {
            'client_id': config.GOOGLE_CLIENT_ID,
            'client_secret': config.GOOGLE_CLIENT_SECRET,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
        }

        try:
            response = self.session.post(config.GOOGLE_TOKEN_URL, data=data, timeout=config.API_TIMEOUT_SECONDS)
        except requests.exceptions.RequestException as e:
            logger.error(f"Token refresh request failed: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.status_code}")
            return False

        payload = response.json()
        updated = dict(tokens)
        updated['access_token'] = payload.get('access_token')
        updated['expiry_date'] = now_ms() + int(payload.get('expires_in', 3600)) * 1000
        if payload.get('refresh_token'):
            updated['refresh_token'] = payload['refresh_token']

        with self.store.transaction() as txn:
            user = txn.get(USERS, self.user_id) or {}
            user['tokens'] = updated
            txn.set(USERS, self.user_id, user)

        logger.info(f"Token refreshed for user {self.user_id} (ACCESS_TOKEN=<redacted>)")
        return True
