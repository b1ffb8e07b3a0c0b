"""
Client-side session state and token routing.

select_token() is the only place that decides which credential a request
carries:

    /api/admin/...  -> standard token, always (the admin's own identity)
    anything else   -> impersonation token while impersonating, else standard

The client never verifies signatures (it doesn't hold the key); it only
reads claims to schedule renewal and sanity-check impersonation tokens.
"""

import time
from dataclasses import dataclass
from typing import Optional

import jwt


ADMIN_PATH_PREFIXES = ("/api/admin/", "/admin/")


@dataclass
class SessionState:
    standard_token: Optional[str] = None
    user: Optional[dict] = None
    remember_me: bool = False
    impersonation_token: Optional[str] = None
    impersonated_user: Optional[dict] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.standard_token)

    @property
    def is_impersonating(self) -> bool:
        return bool(self.impersonation_token)

    @property
    def effective_user(self) -> Optional[dict]:
        if self.is_impersonating:
            return self.impersonated_user
        return self.user


def is_admin_path(path: str) -> bool:
    return path.startswith(ADMIN_PATH_PREFIXES)


def select_token(path: str, state: SessionState) -> Optional[str]:
    if is_admin_path(path):
        return state.standard_token
    return state.impersonation_token or state.standard_token


def read_claims(token: Optional[str]) -> Optional[dict]:
    """Unverified claims of token, or None if it isn't a readable JWT."""
    if not token:
        return None
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError:
        return None


def token_expiry(token: Optional[str]) -> Optional[float]:
    claims = read_claims(token)
    if not claims or not isinstance(claims.get("exp"), (int, float)):
        return None
    return float(claims["exp"])


def seconds_remaining(token: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Seconds until token expires (negative once expired), None if unknown."""
    expiry = token_expiry(token)
    if expiry is None:
        return None
    return expiry - (time.time() if now is None else now)


def is_well_formed_impersonation_token(token, now: Optional[float] = None) -> bool:
    """Readable, flagged as impersonation, carries an origin admin, not expired."""
    if not isinstance(token, str) or not token.strip():
        return False
    claims = read_claims(token)
    if not claims or not claims.get("imp") or claims.get("oadm") is None:
        return False
    remaining = seconds_remaining(token, now)
    return remaining is not None and remaining > 0
