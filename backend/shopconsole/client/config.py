"""
Client configuration.

Defaults mirror the console's browser behavior: a 7 day identity cookie
(30 with remember-me), a renewal check every 30 minutes that renews tokens
within an hour of expiry, a 300ms refresh debounce and a 2 minute stats
refresh.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .retry import RetryPolicy


@dataclass
class ClientConfig:
    base_url: str = "http://localhost:5000"
    timeout: float = 30.0
    # JSON file standing in for browser cookies/localStorage; None keeps state in memory
    storage_path: Optional[str] = None

    standard_cookie_days: int = 7
    remember_me_cookie_days: int = 30

    renewal_check_interval: float = 30 * 60.0  # seconds
    renewal_threshold: float = 60 * 60.0  # renew when less than this remains

    refresh_debounce: float = 0.3  # seconds of quiet before a refresh fires
    periodic_refresh_interval: float = 120.0  # seconds

    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=os.getenv("SHOPCONSOLE_API_URL", cls.base_url),
            timeout=float(os.getenv("SHOPCONSOLE_API_TIMEOUT", cls.timeout)),
            storage_path=os.getenv("SHOPCONSOLE_STATE_FILE") or None,
        )
