# Overview: Append-only security event logging shared by auth, impersonation and override flows.

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    subject_id: int | None = None,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - LOGIN_FAILED / LOGIN_SUCCESS
    - LOGOUT
    - IMPERSONATION_STARTED
    - OVERRIDE_SET / OVERRIDE_DELETED / OVERRIDE_CLEARED
    - STATUS_CHANGED
    - SESSION_CHECK_DEGRADED

    Pass commit=False to stage the event inside a caller's transaction.
    """
    event = SecurityEvent(
        user_id=user_id,
        subject_id=subject_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    if commit:
        db.session.commit()

    return event


def list_events(event_type: str | None = None, subject_id: int | None = None, limit: int = 100) -> list[SecurityEvent]:
    """Most recent events first, optionally filtered."""
    query = db.session.query(SecurityEvent)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    if subject_id is not None:
        query = query.filter(SecurityEvent.subject_id == subject_id)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()


def cleanup_security_events(retention_days: int = 90) -> int:
    """Delete events older than the retention window. Returns count deleted."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(SecurityEvent.occurred_at < cutoff).delete()
    db.session.commit()
    return deleted
