# Overview: Principal accounts; password hashing, login checks and admin status transitions.

"""
Authentication Service

WHY: Every session starts with a password check. Uses bcrypt for secure
password hashing and validates password strength at account creation.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, mixed case, digit and special character required
- Login accepts email OR phone number as the identifier
- Password is verified before account status is revealed
- Leaving "active" revokes every session of the principal
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..errors import InvalidCredential, PrincipalInactive, ResourceNotFound, ValidationError
from ..extensions import db
from ..models import ROLES, STATUSES, User
from ..time_utils import utcnow
from . import audit_service, session_service


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    error = "Weak password"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt (cost factor BCRYPT_ROUNDS, 12 by default).

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=int(current_app.config.get("BCRYPT_ROUNDS", 12)))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def find_by_identifier(identifier: str) -> User | None:
    """Look up a principal by email (case-insensitive) or phone number."""
    identifier = (identifier or "").strip()
    if not identifier:
        return None
    return db.session.query(User).filter(
        db.or_(
            db.func.lower(User.email) == identifier.lower(),
            User.phone_number == identifier,
        )
    ).first()


def create_principal(
    email: str,
    password: str,
    full_name: str = "",
    role: str = "user",
    status: str | None = None,
    phone_number: str | None = None,
    email_verified: bool = False,
    commit: bool = True,
) -> User:
    """
    Create a principal with a bcrypt password hash.

    Sellers start "pending" until an admin activates them; everyone else
    starts "active" unless a status is given.

    Raises:
        ValidationError: unknown role/status, or email/phone already taken
        PasswordValidationError: password doesn't meet requirements
    """
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    if status is None:
        status = "pending" if role == "seller" else "active"
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")

    existing = db.session.query(User).filter(
        db.or_(
            User.email == email,
            db.and_(User.phone_number.isnot(None), User.phone_number == phone_number),
        )
    ).first()
    if existing:
        raise ValidationError("Email or phone number already registered")

    user = User(
        email=email,
        phone_number=phone_number or None,
        full_name=full_name or "",
        password_hash=hash_password(password),
        role=role,
        status=status,
        email_verified=email_verified,
        created_at=utcnow(),
    )

    db.session.add(user)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return user


def authenticate(identifier: str, password: str) -> User:
    """
    Check credentials and return the principal.

    Raises:
        InvalidCredential: unknown identifier or wrong password
        PrincipalInactive: credentials are right but the account isn't active

    Updates last_login_at on success.
    """
    user = find_by_identifier(identifier)

    if not user or not verify_password(password or "", user.password_hash):
        raise InvalidCredential("Invalid email/phone or password")

    if not user.is_active:
        raise PrincipalInactive(f"Account is {user.status}. Please contact support.")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def set_status(
    principal_id: int,
    status: str,
    actor_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> User:
    """
    Move a principal to a new status.

    WHY: Principals are never deleted. Leaving "active" must cut off every
    existing session immediately, so the revocation and the status change
    commit together.
    """
    if status not in STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(STATUSES)}")

    user = db.session.get(User, principal_id)
    if not user:
        raise ResourceNotFound("User not found")

    previous = user.status
    user.status = status

    revoked = 0
    if previous == "active" and status != "active":
        revoked = session_service.revoke_all_user_sessions(
            user.id, reason=f"Status changed to {status}", commit=False
        )

    audit_service.log_security_event(
        user_id=actor_id,
        subject_id=user.id,
        event_type="STATUS_CHANGED",
        success=True,
        resource=f"/api/admin/users/{user.id}/status",
        action=f"{previous}->{status}",
        reason=f"{revoked} session(s) revoked" if revoked else None,
        ip_address=ip_address,
        user_agent=user_agent,
        commit=False,
    )

    db.session.commit()
    return user
