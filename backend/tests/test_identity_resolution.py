"""
Identity resolution for standard and impersonation tokens.

Verifies:
- Standard tokens need an active principal AND an active session record
- Impersonation tokens resolve to the target, with the admin as authorizer
- Session table failures follow SESSION_LOOKUP_FAILURE_POLICY
"""

import pytest
from sqlalchemy.exc import OperationalError

from shopconsole.errors import (
    IdentityLookupFailed,
    ImpersonationTargetInvalid,
    PrincipalInactive,
    SessionInvalid,
)
from shopconsole.models import SecurityEvent
from shopconsole.services import auth_service, identity_service, session_service, token_service

from conftest import auth_headers, get_auth_token


def _broken_session_table(*args, **kwargs):
    raise OperationalError("SELECT session_records", {}, Exception("no such table: session_records"))


def _resolve(token):
    return identity_service.resolve_identity(token_service.verify_token(token), token)


# =============================================================================
# STANDARD TOKENS
# =============================================================================


class TestStandardIdentity:
    def test_resolves_to_subject(self, db_session, seller):
        record, token = session_service.create_session(seller)
        identity = _resolve(token)

        assert identity.effective.id == seller.id
        assert identity.authorizing.id == seller.id
        assert identity.is_impersonation is False
        assert identity.session.id == record.id
        assert identity.session_checked is True

    def test_revoked_session_rejected(self, db_session, seller):
        _, token = session_service.create_session(seller)
        session_service.revoke_session(token)

        with pytest.raises(SessionInvalid):
            _resolve(token)

    def test_token_without_record_rejected(self, db_session, seller):
        token, _ = token_service.issue_standard_token(seller)
        with pytest.raises(SessionInvalid):
            _resolve(token)

    def test_inactive_principal_rejected(self, db_session, seller):
        _, token = session_service.create_session(seller)
        seller.status = "suspended"
        db_session.commit()

        with pytest.raises(PrincipalInactive):
            _resolve(token)

    def test_principal_lookup_failure(self, db_session, seller, monkeypatch):
        _, token = session_service.create_session(seller)
        claims = token_service.verify_token(token)
        monkeypatch.setattr(identity_service.db.session, "get", _broken_session_table)

        with pytest.raises(IdentityLookupFailed):
            identity_service.resolve_identity(claims, token)


# =============================================================================
# IMPERSONATION TOKENS
# =============================================================================


class TestImpersonationIdentity:
    def test_effective_is_target(self, db_session, admin, seller):
        token, _ = token_service.issue_impersonation_token(seller, admin)
        identity = _resolve(token)

        assert identity.effective.id == seller.id
        assert identity.authorizing.id == admin.id
        assert identity.is_impersonation is True
        assert identity.origin_admin_id == admin.id
        assert identity.session is None

    def test_no_session_record_needed(self, db_session, admin, seller, monkeypatch):
        token, _ = token_service.issue_impersonation_token(seller, admin)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)
        assert _resolve(token).effective.id == seller.id

    def test_inactive_target_rejected(self, db_session, admin, seller):
        token, _ = token_service.issue_impersonation_token(seller, admin)
        seller.status = "inactive"
        db_session.commit()

        with pytest.raises(ImpersonationTargetInvalid):
            _resolve(token)

    def test_missing_origin_admin_still_resolves(self, db_session, make_user, seller):
        other_admin = make_user(role="admin")
        token, _ = token_service.issue_impersonation_token(seller, other_admin)
        db_session.delete(other_admin)
        db_session.commit()

        identity = _resolve(token)
        assert identity.effective.id == seller.id
        assert identity.authorizing is None


# =============================================================================
# SESSION LOOKUP FAILURE POLICY
# =============================================================================


class TestSessionLookupPolicy:
    def test_degraded_continues_without_validation(self, app, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "degraded"
        _, token = session_service.create_session(seller)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        identity = _resolve(token)
        assert identity.effective.id == seller.id
        assert identity.session is None
        assert identity.session_checked is False

    def test_strict_fails_request(self, app, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "strict"
        _, token = session_service.create_session(seller)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        with pytest.raises(SessionInvalid):
            _resolve(token)

    def test_unknown_policy_is_strict(self, app, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "lenient"
        _, token = session_service.create_session(seller)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        with pytest.raises(SessionInvalid):
            _resolve(token)

    def test_degraded_request_is_audited(self, app, client, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "degraded"
        token = get_auth_token(client, seller.email)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        resp = client.get("/api/seller/dashboard", headers=auth_headers(token))
        assert resp.status_code == 200

        events = db_session.query(SecurityEvent).filter_by(event_type="SESSION_CHECK_DEGRADED").all()
        assert len(events) == 1
        assert events[0].user_id == seller.id
        assert events[0].resource == "/api/seller/dashboard"

    def test_degraded_request_cannot_refresh(self, app, client, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "degraded"
        token = get_auth_token(client, seller.email)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        resp = client.post("/api/auth/refresh", headers=auth_headers(token))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid session"

    def test_strict_request_returns_401(self, app, client, db_session, seller, monkeypatch):
        app.config["SESSION_LOOKUP_FAILURE_POLICY"] = "strict"
        token = get_auth_token(client, seller.email)
        monkeypatch.setattr(session_service, "find_active_session", _broken_session_table)

        resp = client.get("/api/seller/dashboard", headers=auth_headers(token))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid session"


class TestStatusChangeRevokesSessions:
    def test_suspension_revokes_and_audits(self, db_session, admin, seller):
        _, token = session_service.create_session(seller)
        auth_service.set_status(seller.id, "suspended", actor_id=admin.id)

        assert session_service.find_active_session(seller.id, token) is None
        event = db_session.query(SecurityEvent).filter_by(event_type="STATUS_CHANGED").one()
        assert event.action == "active->suspended"
        assert event.subject_id == seller.id
