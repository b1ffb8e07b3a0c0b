# Overview: Session token issuance and the credential verifier (signature + expiry only).

"""
JWT session tokens.

Two flavors share one signing key:
- Standard tokens: issued at login/refresh, mirrored by a SessionRecord.
- Impersonation tokens: short-lived, stateless, carry the origin admin id.

verify_token() is pure apart from the cryptographic check: it never touches
the database. Everything that needs a lookup lives in identity_service.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime

import jwt
from flask import current_app

from ..errors import CredentialExpired, InvalidCredential
from ..models import User
from ..time_utils import from_epoch, to_epoch, utcnow


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    issued_at: datetime
    expires_at: datetime
    is_impersonation: bool = False
    origin_admin_id: int | None = None
    role: str | None = None


def _signing_params() -> tuple[str, str]:
    return current_app.config["JWT_SECRET"], current_app.config.get("JWT_ALGORITHM", "HS256")


def _encode(payload: dict) -> str:
    secret, algorithm = _signing_params()
    return jwt.encode(payload, secret, algorithm=algorithm)


def issue_standard_token(principal: User, remember_me: bool = False) -> tuple[str, datetime]:
    """
    Issue a standard token for principal.

    Returns (token, expires_at). The caller is responsible for persisting the
    matching SessionRecord.
    """
    lifetime_key = "REMEMBER_ME_TOKEN_LIFETIME" if remember_me else "STANDARD_TOKEN_LIFETIME"
    now = utcnow().replace(microsecond=0)
    expires_at = now + current_app.config[lifetime_key]

    token = _encode({
        "sub": str(principal.id),
        "role": principal.role,
        "imp": False,
        "iat": to_epoch(now),
        "exp": to_epoch(expires_at),
        # Two tokens minted in the same second must still hash differently
        "jti": secrets.token_hex(8),
    })
    return token, expires_at


def issue_impersonation_token(target: User, origin_admin: User) -> tuple[str, datetime]:
    """Issue a stateless impersonation token scoped to target."""
    now = utcnow().replace(microsecond=0)
    expires_at = now + current_app.config["IMPERSONATION_TOKEN_LIFETIME"]

    token = _encode({
        "sub": str(target.id),
        "role": target.role,
        "imp": True,
        "oadm": str(origin_admin.id),
        "iat": to_epoch(now),
        "exp": to_epoch(expires_at),
        "jti": secrets.token_hex(8),
    })
    return token, expires_at


def verify_token(token: str) -> TokenClaims:
    """
    Verify signature and expiry and return the claims.

    Raises:
        CredentialExpired: signature is good but exp has passed
        InvalidCredential: anything else (bad signature, malformed, missing claims)
    """
    if not token or not token.strip():
        raise InvalidCredential("Authentication token is missing")

    secret, algorithm = _signing_params()
    try:
        payload = jwt.decode(
            token.strip(),
            secret,
            algorithms=[algorithm],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise CredentialExpired("Authentication token has expired. Please login again")
    except jwt.InvalidTokenError:
        raise InvalidCredential("Authentication token is invalid")

    try:
        subject_id = int(payload["sub"])
        is_impersonation = bool(payload.get("imp", False))
        origin_admin_id = int(payload["oadm"]) if payload.get("oadm") is not None else None
    except (TypeError, ValueError):
        raise InvalidCredential("Authentication token is invalid")

    if is_impersonation and origin_admin_id is None:
        raise InvalidCredential("Impersonation token is missing its origin admin")

    return TokenClaims(
        subject_id=subject_id,
        issued_at=from_epoch(payload["iat"]),
        expires_at=from_epoch(payload["exp"]),
        is_impersonation=is_impersonation,
        origin_admin_id=origin_admin_id,
        role=payload.get("role"),
    )
