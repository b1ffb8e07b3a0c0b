"""
Access gate checks against the effective identity.

Verifies:
- Role checks use the impersonated identity, not the admin behind it
- Ownership checks return the row, bypass for admins, 404 before 403
- Decorators render failures as JSON with the right status
"""

import pytest
from flask import g

from shopconsole.decorators import (
    require_admin,
    require_ownership_or_admin,
    require_role,
    require_seller,
    require_verified_email,
)
from shopconsole.errors import AccessDenied, EmailNotVerified, InsufficientPermissions, ResourceNotFound
from shopconsole.models import MetricOverride, SecurityEvent
from shopconsole.services import access_service, audit_service, identity_service, session_service, token_service


def _identity_for(user):
    _, token = session_service.create_session(user)
    return identity_service.resolve_identity(token_service.verify_token(token), token)


def _impersonating(admin, target):
    token, _ = token_service.issue_impersonation_token(target, admin)
    return identity_service.resolve_identity(token_service.verify_token(token), token)


def _event_owned_by(user):
    return audit_service.log_security_event(user_id=user.id, event_type="LOGIN_SUCCESS", success=True)


# =============================================================================
# ROLES
# =============================================================================


class TestRoles:
    def test_admin_passes_admin_check(self, db_session, admin):
        access_service.require_role(_identity_for(admin), ("admin",))

    def test_seller_denied_admin_check(self, db_session, seller):
        with pytest.raises(InsufficientPermissions):
            access_service.require_role(_identity_for(seller), "admin")

    def test_impersonating_admin_is_a_seller(self, db_session, admin, seller):
        identity = _impersonating(admin, seller)

        access_service.require_role(identity, ("admin", "seller"))
        with pytest.raises(InsufficientPermissions):
            access_service.require_role(identity, "admin")

    def test_unverified_email(self, db_session, make_user):
        user = make_user(role="user", email_verified=False)
        with pytest.raises(EmailNotVerified):
            access_service.require_verified_email(_identity_for(user))


# =============================================================================
# OWNERSHIP
# =============================================================================


class TestOwnership:
    def test_owner_gets_resource(self, db_session, seller):
        event = _event_owned_by(seller)
        resource = access_service.require_ownership(_identity_for(seller), SecurityEvent, event.id)
        assert resource.id == event.id

    def test_other_user_denied(self, db_session, seller, make_user):
        event = _event_owned_by(seller)
        other = make_user(role="seller")
        with pytest.raises(AccessDenied):
            access_service.require_ownership(_identity_for(other), SecurityEvent, event.id)

    def test_admin_bypasses(self, db_session, admin, seller):
        event = _event_owned_by(seller)
        assert access_service.require_ownership(_identity_for(admin), SecurityEvent, event.id).id == event.id

    def test_impersonating_admin_does_not_bypass(self, db_session, admin, seller, make_user):
        other = make_user(role="seller")
        event = _event_owned_by(other)
        with pytest.raises(AccessDenied):
            access_service.require_ownership(_impersonating(admin, seller), SecurityEvent, event.id)

    def test_missing_resource_is_404(self, db_session, seller):
        with pytest.raises(ResourceNotFound):
            access_service.require_ownership(_identity_for(seller), SecurityEvent, 999999)

    def test_custom_owner_column(self, db_session, seller, make_user):
        row = MetricOverride(subject_id=seller.id, metric_name="visitors", override_value=5, original_value=0)
        db_session.add(row)
        db_session.commit()

        identity = _identity_for(seller)
        assert access_service.require_ownership(identity, MetricOverride, row.id, owner_columns=("subject_id",)).id == row.id
        with pytest.raises(AccessDenied):
            access_service.require_ownership(
                _identity_for(make_user(role="seller")), MetricOverride, row.id, owner_columns=("subject_id",)
            )


# =============================================================================
# DECORATORS
# =============================================================================


def _view(**kwargs):
    return "ok"


class TestDecorators:
    def test_role_decorator_without_identity(self, app, db_session):
        with app.test_request_context("/x"):
            g.pop("identity", None)
            _, status = require_role("admin")(_view)()
        assert status == 401

    def test_role_decorator_denies(self, app, db_session, seller):
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            response, status = require_role("admin")(_view)()
            assert status == 403
            assert response.json["error"] == "Insufficient permissions"

    def test_role_decorator_allows(self, app, db_session, seller):
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            assert require_role("admin", "seller")(_view)() == "ok"

    def test_ownership_decorator_sets_resource(self, app, db_session, seller):
        event = _event_owned_by(seller)
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            assert require_ownership_or_admin(SecurityEvent, id_arg="event_id")(_view)(event_id=event.id) == "ok"
            assert g.resource.id == event.id

    def test_ownership_decorator_denies(self, app, db_session, seller, make_user):
        event = _event_owned_by(make_user(role="seller"))
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            _, status = require_ownership_or_admin(SecurityEvent, id_arg="event_id")(_view)(event_id=event.id)
        assert status == 403

    def test_ownership_decorator_missing_is_404(self, app, db_session, seller):
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            _, status = require_ownership_or_admin(SecurityEvent, id_arg="event_id")(_view)(event_id=424242)
        assert status == 404

    def test_verified_email_decorator(self, app, db_session, make_user):
        user = make_user(role="user", email_verified=False)
        with app.test_request_context("/x"):
            g.identity = _identity_for(user)
            response, status = require_verified_email(_view)()
            assert status == 403
            assert response.json["error"] == "Email verification required"

    def test_seller_decorator(self, app, db_session, admin, seller):
        with app.test_request_context("/x"):
            g.identity = _identity_for(seller)
            assert require_seller(_view)() == "ok"

            g.identity = _identity_for(admin)
            _, status = require_seller(_view)()
            assert status == 403

    def test_seller_decorator_accepts_impersonating_admin(self, app, db_session, admin, seller):
        with app.test_request_context("/x"):
            g.identity = _impersonating(admin, seller)
            assert require_seller(_view)() == "ok"
            _, status = require_admin(_view)()
            assert status == 403
