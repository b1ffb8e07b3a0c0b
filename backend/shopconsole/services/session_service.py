# Overview: Session Store; durable, individually revocable records of issued standard tokens.

"""
Session Record Management

WHY: A signed token cannot be un-signed. Every standard token gets a
SessionRecord so logout, admin suspension or a security response can kill a
session long before the token's own expiry.

SECURITY FEATURES:
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Record expiry mirrors the token's exp claim (7 days, 30 with remember-me)
- Revocable on logout, refresh rotation or status change
- Tracks client IP and user agent for security monitoring
- Impersonation tokens never get a record (they are stateless)
"""

import hashlib
from datetime import timedelta

from ..extensions import db
from ..models import SessionRecord, User
from ..time_utils import utcnow
from . import token_service


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    SHA-256 is faster and sufficient for high-entropy inputs.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    principal: User,
    remember_me: bool = False,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionRecord, str]:
    """
    Issue a standard token for principal and persist its SessionRecord.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    token, expires_at = token_service.issue_standard_token(principal, remember_me=remember_me)

    now = utcnow()
    record = SessionRecord(
        principal_id=principal.id,
        token_hash=hash_token(token),
        created_at=now,
        last_activity=now,
        expires_at=expires_at,
        is_active=True,
        remember_me=remember_me,
        user_agent=user_agent,
        ip_address=ip_address,
    )

    db.session.add(record)
    db.session.commit()

    return record, token


def find_active_session(principal_id: int, token: str) -> SessionRecord | None:
    """
    Return the active, unexpired record matching token, or None.

    Lets SQLAlchemy errors propagate: the identity resolver decides whether
    a broken session table fails the request.
    """
    return db.session.query(SessionRecord).filter(
        SessionRecord.principal_id == principal_id,
        SessionRecord.token_hash == hash_token(token),
        SessionRecord.is_active.is_(True),
        SessionRecord.expires_at > utcnow(),
    ).first()


def touch_session(record: SessionRecord) -> None:
    """Update last_activity (activity tracking)."""
    record.last_activity = utcnow()
    db.session.commit()


def rotate_session(record: SessionRecord, principal: User) -> str:
    """
    Replace the token behind an existing record (token refresh).

    The record keeps its identity and remember-me flag; the old token stops
    matching immediately because its hash is overwritten.
    Returns the new plaintext token.
    """
    token, expires_at = token_service.issue_standard_token(principal, remember_me=record.remember_me)

    record.token_hash = hash_token(token)
    record.expires_at = expires_at
    record.last_activity = utcnow()
    db.session.commit()

    return token


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    record = db.session.query(SessionRecord).filter_by(
        token_hash=hash_token(token),
        is_active=True
    ).first()

    if not record:
        return False

    record.is_active = False
    record.revoked_at = utcnow()
    record.revoked_reason = reason

    db.session.commit()
    return True


def revoke_all_user_sessions(principal_id: int, reason: str = "Revoke all sessions", commit: bool = True) -> int:
    """
    Revoke all active sessions for a principal.

    Returns count of sessions revoked.

    WHY: Status changes and security responses force re-authentication on
    all devices.
    """
    now = utcnow()

    records = db.session.query(SessionRecord).filter_by(
        principal_id=principal_id,
        is_active=True
    ).all()

    for record in records:
        record.is_active = False
        record.revoked_at = now
        record.revoked_reason = reason

    if commit:
        db.session.commit()
    return len(records)


def cleanup_expired_sessions(older_than_days: int = 30) -> int:
    """
    Delete expired and revoked sessions older than the cutoff.

    Returns count of sessions deleted.
    """
    cutoff = utcnow() - timedelta(days=older_than_days)

    deleted = db.session.query(SessionRecord).filter(
        db.or_(
            SessionRecord.expires_at < utcnow(),
            SessionRecord.is_active.is_(False)
        ),
        SessionRecord.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
