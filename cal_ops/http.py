# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Google Calendar API session - authenticated requests and error translation
"""
import logging
import time
from typing import Dict, Optional, Any, Set, Tuple

import requests

import config
from cal_ops.errors import (
    TokenExpiredError, ResourceNotFoundError, TransientError, ProviderRequestError,
    ConfigurationError,
)
from utils.logger import StructuredLogger
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded', 'quotaExceeded'}


def _error_details(response: requests.Response) -> Tuple[str, Set[str]]:
    """Pull the message and reason codes out of a Google error body"""
    try:
        error = response.json().get('error', {})
    except ValueError:
        return response.text[:200], set()
    if not isinstance(error, dict):
        return str(error)[:200], set()
    reasons = {e.get('reason') for e in error.get('errors', []) if isinstance(e, dict)}
    return error.get('message', '')[:200], reasons


class GoogleApiSession:
    """Issues Calendar API requests on behalf of one user"""

    def __init__(self, token_provider, session: Optional[requests.Session] = None,
                 base_url: str = config.GOOGLE_CALENDAR_API):
        self.auth = token_provider
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip('/')
        self.structured_logger = StructuredLogger(__name__)

    @retry_with_backoff(max_retries=config.API_MAX_RETRIES, base_delay=config.API_BASE_DELAY,
                        retry_on=(TransientError,))
    def request(self, method: str, path: str, params: Optional[Dict] = None,
                json_body: Optional[Dict] = None) -> Optional[Dict[str, Any]]:
        """Send one request, refreshing the access token once on 401"""
        headers = self.auth.get_headers()
        if not headers:
            raise ConfigurationError("No valid authentication headers")

        url = f"{self.base_url}{path}"
        response = self._send(method, url, headers, params, json_body)

        if response.status_code == 401:
            if not self.auth.refresh_access_token():
                raise ConfigurationError("Authentication failed and token refresh was rejected")
            headers = self.auth.get_headers()
            response = self._send(method, url, headers, params, json_body)

        return self._handle_response(method, path, response)

    def _send(self, method, url, headers, params, json_body) -> requests.Response:
        started = time.monotonic()
        try:
            response = self.session.request(
                method, url, headers=headers, params=params, json=json_body,
                timeout=config.API_TIMEOUT_SECONDS
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Request timeout: {method} {url}")
            raise TransientError(f"Timeout calling {method} {url}") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error: {method} {url}")
            raise TransientError(f"Connection error calling {method} {url}") from e

        self.structured_logger.log_api_call(
            method, url, status_code=response.status_code,
            duration_ms=(time.monotonic() - started) * 1000
        )
        return response

    def _handle_response(self, method: str, path: str, response: requests.Response) -> Optional[Dict]:
        status = response.status_code

        if status in (200, 201):
            return response.json() if response.content else {}
        if status == 204:
            return None

        message, reasons = _error_details(response)
        description = f"{method} {path} -> {status}: {message}"

        if status == 404:
            raise ResourceNotFoundError(description)
        if status == 410:
            raise TokenExpiredError(description)
        if status == 429 or status >= 500 or (status == 403 and reasons & RATE_LIMIT_REASONS):
            raise TransientError(description, status_code=status)

        raise ProviderRequestError(description, status_code=status)
