# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - exponential backoff for provider calls and the retry ledger
"""
import time
import logging
from functools import wraps
from typing import Callable, TypeVar, Any

logger = logging.getLogger(__name__)

T = TypeVar('T')


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0
) -> float:
    """Delay for the given zero-based attempt: base * exp_base**attempt, capped at max_delay"""
    return min(base_delay * (exponential_base ** attempt), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retry_on: tuple = (Exception,)
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a call on the given exception types.

    Only `retry_on` exceptions are retried, up to `max_retries` extra
    attempts with exponentially growing delays (seconds). Anything else
    propagates on the first occurrence so callers can branch on its type.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)
                except retry_on as e:
                    status = getattr(e, 'status_code', None)
                    if attempt >= max_retries:
                        logger.error(
                            f"❌ {func.__name__} still failing after {max_retries} retries "
                            f"(status={status}): {e}"
                        )
                        raise

                    delay = compute_backoff_delay(attempt, base_delay, max_delay, exponential_base)
                    logger.warning(
                        f"⚠️ {func.__name__} attempt {attempt + 1}/{max_retries + 1} failed "
                        f"(status={status}), retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue

                if attempt > 0:
                    logger.info(f"✅ {func.__name__} succeeded on retry {attempt}")
                return result

        return wrapper
    return decorator
