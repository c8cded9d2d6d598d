# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for Calendar Mirror Sync
"""
import os

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Application Settings
PORT = int(os.environ.get('PORT', 5000))
DATA_DIR = os.environ.get('DATA_DIR', '/data/calendar-mirror')

# Google OAuth client (tokens themselves live in users/{userId}.tokens)
GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID', '')
GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GOOGLE_CALENDAR_API = 'https://www.googleapis.com/calendar/v3'

# Continuation task signing (empty disables verification)
TASK_SIGNING_SECRET = os.environ.get('TASK_SIGNING_SECRET', '')
TASK_SIGNATURE_MAX_AGE_SECONDS = 600
# Continuation tasks are POSTed here when set; otherwise they run in-process
TASK_CALLBACK_URL = os.environ.get('TASK_CALLBACK_URL', '')

# Backfill paging
PAGE_SIZE = 50
BACKFILL_HORIZON_DAYS = 730

# Rate limiting: 150ms between calls keeps us near 6-7/s, under the 10/s quota
RATE_LIMIT_DELAY_MS = 150

# Retry ledger
MAX_RETRY = 5
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 30000

# Coordination safety bounds
MAX_COORDINATION_ITERATIONS = 2000
MAX_COORDINATION_AGE_SECONDS = 3600
COORDINATOR_DELAY_SECONDS = 2
BATCH_CONTINUATION_DELAY_SECONDS = 2

# Incremental sync: a delta is rarely more than a couple of pages
MAX_INCREMENTAL_PAGES = 20

# Provider call retry settings
API_MAX_RETRIES = int(os.environ.get('API_MAX_RETRIES', 3))
API_BASE_DELAY = float(os.environ.get('API_BASE_DELAY', 1.0))
API_TIMEOUT_SECONDS = 30

# Task queue worker
TASK_POLL_INTERVAL_SECONDS = float(os.environ.get('TASK_POLL_INTERVAL_SECONDS', 1.0))

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'True').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    DATA_DIR = os.environ.get('DATA_DIR', './data')
