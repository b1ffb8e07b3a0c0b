# Overview: Admin API routes; metric overrides, reconciled dashboards, impersonation and status changes.

"""
Admin routes.

Every route requires a token whose EFFECTIVE identity is an admin. An admin
who is impersonating must call these with their own standard token; the
impersonation token makes them the target for the duration.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import ResourceNotFound, ValidationError
from ..extensions import db
from ..models import User
from ..services import audit_service, auth_service, metrics_service, override_service, token_service
from ..time_utils import to_utc_z


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _audit(event_type: str, subject_id: int, action: str | None = None, reason: str | None = None) -> None:
    audit_service.log_security_event(
        user_id=g.current_user.id,
        subject_id=subject_id,
        event_type=event_type,
        success=True,
        resource=request.path,
        action=action,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def _get_subject(subject_id: int) -> User:
    subject = db.session.get(User, subject_id)
    if subject is None:
        raise ResourceNotFound("User not found")
    return subject


@admin_bp.get("/seller/<int:seller_id>/overrides")
@require_auth
@require_admin
def list_overrides_route(seller_id: int):
    subject = _get_subject(seller_id)
    entries = override_service.get(seller_id)

    return jsonify({
        "seller": {"id": subject.id, "fullName": subject.full_name, "email": subject.email, "role": subject.role},
        "overrides": [entry.to_dict() for entry in entries],
        "structuredOverrides": override_service.structured_overrides(seller_id, entries),
        "hasOverrides": bool(entries),
    }), 200


@admin_bp.post("/seller/<int:seller_id>/overrides")
@require_auth
@require_admin
def put_override_route(seller_id: int):
    """
    Create or update one override.

    Body: {metricName, value, originalValue?}; overrideValue is accepted in
    place of value.
    originalValue defaults to the current computed value and only sticks on
    the first write of a (seller, metric) pair.
    """
    data = request.get_json(silent=True) or {}
    metric_name = data.get("metricName")
    value = data.get("value", data.get("overrideValue"))

    if not metric_name or value is None:
        raise ValidationError("metricName and value are required")

    # Validate before computing anything from the name
    override_service.validate_metric_name(metric_name)

    original = data.get("originalValue")
    if original is None:
        original = metrics_service.base_value(seller_id, metric_name)

    entry = override_service.put(seller_id, metric_name, value, original_value=original)
    _audit("OVERRIDE_SET", seller_id, action=metric_name, reason=f"value={entry.override_value}")

    current_app.logger.info(
        "Admin %s saved override for seller %s: %s", g.current_user.email, seller_id, metric_name
    )
    return jsonify({"message": "Override saved successfully", "override": entry.to_dict()}), 200


@admin_bp.delete("/seller/<int:seller_id>/overrides/<metric_name>")
@require_auth
@require_admin
def reset_override_route(seller_id: int, metric_name: str):
    """Remove the override; the computed value shows again."""
    removed = override_service.delete(seller_id, metric_name)
    _audit("OVERRIDE_DELETED", seller_id, action=metric_name)
    return jsonify({"message": "Override reset successfully", "removed": removed}), 200


@admin_bp.put("/seller/<int:seller_id>/overrides/<metric_name>/clear")
@require_auth
@require_admin
def clear_override_route(seller_id: int, metric_name: str):
    """Zero the override but keep it in place."""
    entry = override_service.clear(seller_id, metric_name)
    _audit("OVERRIDE_CLEARED", seller_id, action=metric_name)
    return jsonify({
        "message": "Override cleared successfully",
        "override": entry.to_dict() if entry else None,
    }), 200


@admin_bp.get("/seller/<int:seller_id>/dashboard")
@require_auth
@require_admin
def seller_dashboard_route(seller_id: int):
    _get_subject(seller_id)
    snapshot = metrics_service.dashboard(seller_id)
    return jsonify({"sellerId": seller_id, **snapshot.to_dict()}), 200


@admin_bp.get("/seller/<int:seller_id>/audit")
@require_auth
@require_admin
def seller_audit_route(seller_id: int):
    """
    Security events about a seller, newest first.

    Query: eventType (optional), limit (default 50, max 200)
    """
    _get_subject(seller_id)
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        raise ValidationError("limit must be an integer")
    limit = max(1, min(limit, 200))

    events = audit_service.list_events(
        event_type=request.args.get("eventType") or None,
        subject_id=seller_id,
        limit=limit,
    )
    return jsonify({"sellerId": seller_id, "events": [event.to_dict() for event in events]}), 200


@admin_bp.post("/impersonate/<int:user_id>")
@require_auth
@require_admin
def impersonate_route(user_id: int):
    """
    Issue a short-lived impersonation token for user_id.

    The token carries the calling admin as origin. No session record is
    created; the token simply expires.
    """
    target = _get_subject(user_id)
    if not target.is_active:
        raise ValidationError("Cannot impersonate inactive user")

    token, expires_at = token_service.issue_impersonation_token(target, g.current_user)
    _audit("IMPERSONATION_STARTED", target.id, action=target.email)

    current_app.logger.info("Admin %s impersonating user %s", g.current_user.email, target.email)
    return jsonify({
        "message": "Impersonation successful",
        "impersonationToken": token,
        "expiresAt": to_utc_z(expires_at),
        "user": target.to_dict(),
    }), 200


@admin_bp.patch("/users/<int:user_id>/status")
@require_auth
@require_admin
def set_status_route(user_id: int):
    """Move a user between statuses; leaving "active" revokes their sessions."""
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        raise ValidationError("status is required")

    if user_id == g.current_user.id and status != "active":
        raise ValidationError("Cannot deactivate your own account")

    user = auth_service.set_status(
        user_id,
        status,
        actor_id=g.current_user.id,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify({"message": "User status updated", "user": user.to_dict()}), 200
