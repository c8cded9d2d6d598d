# Shared helpers: logging, retry, rate limiting and time handling
from utils.logger import StructuredLogger, JsonFormatter, configure_logging
from utils.rate_limiter import RateLimiter
from utils.retry import retry_with_backoff, compute_backoff_delay
from utils.timezone import utc_now, now_ms, to_rfc3339

__all__ = [
    'StructuredLogger', 'JsonFormatter', 'configure_logging',
    'RateLimiter',
    'retry_with_backoff', 'compute_backoff_delay',
    'utc_now', 'now_ms', 'to_rfc3339',
]
