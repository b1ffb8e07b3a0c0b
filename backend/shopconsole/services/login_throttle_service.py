"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the identifier is temporarily locked and login
answers 429 with a Retry-After hint.

SECURITY FEATURES:
- Tracks failed attempts per email/phone identifier
- Lockout after LOGIN_MAX_FAILED_ATTEMPTS failures within the lockout window
- Uses the security_events table for tracking
- Limits come from app config so tests can tighten them
"""

from datetime import timedelta

from flask import current_app

from ..errors import RateLimited
from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow
from . import audit_service


LOGIN_RESOURCE = "/api/auth/login"


def _max_attempts() -> int:
    return int(current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", 10))


def _lockout_window() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("LOGIN_LOCKOUT_MINUTES", 15)))


def _normalize(identifier: str) -> str:
    return (identifier or "").strip().lower()


def get_recent_failed_attempts(identifier: str) -> int:
    """
    Count LOGIN_FAILED events for identifier within the lockout window.

    We store the identifier in the 'action' field of security events.
    """
    cutoff = utcnow() - _lockout_window()
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == _normalize(identifier),
        SecurityEvent.occurred_at >= cutoff,
    ).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(identifier) < _max_attempts():
        return False, None

    most_recent = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == _normalize(identifier),
    ).order_by(SecurityEvent.occurred_at.desc()).first()

    if most_recent:
        lockout_end = most_recent.occurred_at + _lockout_window()
        now = utcnow()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())

    return False, None


def check_not_locked(identifier: str) -> None:
    """Raise RateLimited (429) while identifier is locked out."""
    locked, seconds_remaining = is_account_locked(identifier)
    if locked:
        current_app.logger.warning("Login blocked for locked identifier %s", _normalize(identifier))
        raise RateLimited(
            "Account temporarily locked due to too many failed login attempts",
            retry_after=seconds_remaining or 60,
        )


def record_failed_attempt(
    identifier: str,
    user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials",
) -> int:
    """Record a failed login attempt. Returns the recent failure count."""
    audit_service.log_security_event(
        user_id=user_id,
        event_type="LOGIN_FAILED",
        success=False,
        resource=LOGIN_RESOURCE,
        action=_normalize(identifier),
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return get_recent_failed_attempts(identifier)


def record_successful_login(
    user_id: int,
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Record a successful login.

    Note: Old failed attempts are not cleared; they age out of the window.
    """
    audit_service.log_security_event(
        user_id=user_id,
        event_type="LOGIN_SUCCESS",
        success=True,
        resource=LOGIN_RESOURCE,
        action=_normalize(identifier),
        ip_address=ip_address,
        user_agent=user_agent,
    )
