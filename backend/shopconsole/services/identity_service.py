# Overview: Identity Resolver; turns verified claims into effective and authorizing identities.

"""
Identity resolution for verified tokens.

effective identity:   the account whose data the request acts upon
authorizing identity: the account whose privileges granted the token

Standard token:      effective == authorizing == subject; requires an active
                     subject AND an active, unexpired SessionRecord.
Impersonation token: effective = target subject (must be active), authorizing
                     = origin admin (looked up for audit/display only).
                     SessionRecords are never consulted.

SESSION LOOKUP FAILURES: when the session table itself errors (not "no such
session"), SESSION_LOOKUP_FAILURE_POLICY decides. "degraded" logs the failure
and continues without session validation; "strict" fails with SessionInvalid.
Principal lookup failures always fail the request.
"""

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    IdentityLookupFailed,
    ImpersonationTargetInvalid,
    PrincipalInactive,
    SessionInvalid,
)
from ..extensions import db
from ..models import SessionRecord, User
from . import session_service
from .token_service import TokenClaims


POLICY_DEGRADED = "degraded"
POLICY_STRICT = "strict"


@dataclass
class ResolvedIdentity:
    effective: User
    authorizing: User | None
    claims: TokenClaims
    token: str
    session: SessionRecord | None = None
    # False only when the degraded policy skipped session validation
    session_checked: bool = True

    @property
    def is_impersonation(self) -> bool:
        return self.claims.is_impersonation

    @property
    def origin_admin_id(self) -> int | None:
        return self.claims.origin_admin_id


def _load_principal(principal_id: int) -> User | None:
    try:
        return db.session.get(User, principal_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Principal lookup failed for id=%s", principal_id)
        raise IdentityLookupFailed("An error occurred during authentication")


def _session_lookup_policy() -> str:
    policy = current_app.config.get("SESSION_LOOKUP_FAILURE_POLICY", POLICY_DEGRADED)
    if policy not in (POLICY_DEGRADED, POLICY_STRICT):
        current_app.logger.warning("Unknown SESSION_LOOKUP_FAILURE_POLICY %r, using strict", policy)
        return POLICY_STRICT
    return policy


def _resolve_impersonation(claims: TokenClaims, token: str) -> ResolvedIdentity:
    target = _load_principal(claims.subject_id)
    if target is None or not target.is_active:
        current_app.logger.info(
            "Impersonation target %s missing or not active", claims.subject_id
        )
        raise ImpersonationTargetInvalid("Impersonated user not found or account is not active")

    # Audit/display only: the token already encodes the admin's authorization
    origin_admin = _load_principal(claims.origin_admin_id)
    if origin_admin is None:
        current_app.logger.warning(
            "Origin admin %s of impersonation token for %s no longer exists",
            claims.origin_admin_id, target.id,
        )

    return ResolvedIdentity(effective=target, authorizing=origin_admin, claims=claims, token=token)


def _resolve_standard(claims: TokenClaims, token: str) -> ResolvedIdentity:
    principal = _load_principal(claims.subject_id)
    if principal is None or not principal.is_active:
        raise PrincipalInactive("User not found or account is not active")

    try:
        record = session_service.find_active_session(principal.id, token)
    except SQLAlchemyError as exc:
        db.session.rollback()
        if _session_lookup_policy() == POLICY_STRICT:
            current_app.logger.error("Session lookup failed for principal %s: %s", principal.id, exc)
            raise SessionInvalid("Session could not be validated. Please login again.")

        current_app.logger.warning(
            "Session lookup failed for principal %s, continuing without session validation: %s",
            principal.id, exc,
        )
        return ResolvedIdentity(
            effective=principal,
            authorizing=principal,
            claims=claims,
            token=token,
            session=None,
            session_checked=False,
        )

    if record is None:
        raise SessionInvalid("Session has expired or been invalidated. Please login again.")

    return ResolvedIdentity(effective=principal, authorizing=principal, claims=claims, token=token, session=record)


def resolve_identity(claims: TokenClaims, token: str) -> ResolvedIdentity:
    """Resolve verified claims; raises an AuthenticationError subclass on failure."""
    if claims.is_impersonation:
        return _resolve_impersonation(claims, token)
    return _resolve_standard(claims, token)
