# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Error variants raised at the provider boundary and by the sync core.

Only cal_ops.http inspects HTTP status codes; everything above it branches
on these types.
"""
from typing import Optional


class CalendarSyncError(Exception):
    """Base class for every error the sync core raises on purpose"""


class TokenExpiredError(CalendarSyncError):
    """A sync token or page token is no longer valid (HTTP 410)"""


class ResourceNotFoundError(CalendarSyncError):
    """The calendar or event does not exist (HTTP 404)"""


class TransientError(CalendarSyncError):
    """Rate limiting, server errors, timeouts and dropped connections"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRequestError(CalendarSyncError):
    """Any other non-success provider response"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(CalendarSyncError):
    """Required channel, user or coordination data is missing"""


class SyncInProgressError(CalendarSyncError):
    """A round-robin run is already live for this user"""


class FatalSyncError(CalendarSyncError):
    """Aborts a whole round-robin run; never retried automatically"""


class InvalidTransitionError(CalendarSyncError):
    """A sync state change that the state machine does not allow"""
