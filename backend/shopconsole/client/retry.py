"""
Retry policy for console API calls.

Every bound the session manager applies lives here, so the retry behavior
of a call can be read off one object:

- 401: at most one renewal-and-retry per call
- 429 during renewal: one delayed renewal retry, then give up (hard logout)
- 429 on an ordinary call: one delayed retry, then surface the error
- 403 and everything else: never retried
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

logger = logging.getLogger(__name__)


AUTH_PATH_PREFIXES = ("/api/auth/login", "/api/auth/refresh", "/api/auth/logout")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""
    max_renewals_per_call: int = 1
    max_renewal_rate_limit_retries: int = 1
    max_rate_limit_retries: int = 1
    default_retry_after: float = 5.0  # seconds, when the header is missing
    max_retry_after: float = 300.0  # seconds, caps absurd server hints

    def should_renew(self, status_code: int, path: str) -> bool:
        """401 on anything but the auth endpoints themselves."""
        return status_code == 401 and not is_auth_path(path)

    @staticmethod
    def is_rate_limited(status_code: int) -> bool:
        return status_code == 429

    def retry_delay(self, retry_after_header: Optional[str]) -> float:
        delay = parse_retry_after(retry_after_header)
        if delay is None:
            delay = self.default_retry_after
        return min(max(delay, 0.0), self.max_retry_after)


def is_auth_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in AUTH_PATH_PREFIXES)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header: delta-seconds or an HTTP-date.

    Returns seconds to wait, or None if the header is missing or unreadable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"Unreadable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)
