# Overview: Flask API routes for login, token refresh, logout and the current identity.

"""
Authentication API routes

SECURITY FEATURES:
- Login throttling to prevent brute-force attacks (429 + Retry-After)
- Standard tokens mirrored by a revocable SessionRecord
- Refresh rotates the token behind the same record
- Impersonation tokens cannot be refreshed; they are re-issued by an admin
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import extract_bearer_token, require_auth
from ..errors import InvalidCredential, PrincipalInactive, RateLimited, SessionInvalid, ValidationError
from ..services import auth_service, login_throttle_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client_meta() -> tuple[str | None, str | None]:
    return request.remote_addr, request.headers.get("User-Agent")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by email or phone and create a session token.

    Body: {emailOrPhone, password, rememberMe}

    SECURITY:
    - Checks for lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for the audit trail
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("emailOrPhone") or data.get("email") or data.get("phoneNumber")
    password = data.get("password")
    remember_me = bool(data.get("rememberMe", False))

    if not identifier or not password:
        raise ValidationError("Email/phone and password are required")

    ip_address, user_agent = _client_meta()

    login_throttle_service.check_not_locked(identifier)

    try:
        user = auth_service.authenticate(identifier, password)
    except (InvalidCredential, PrincipalInactive) as exc:
        failed_count = login_throttle_service.record_failed_attempt(
            identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=exc.message,
        )
        max_attempts = current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", 10)
        if failed_count >= max_attempts:
            raise RateLimited(
                "Account locked due to too many failed login attempts",
                retry_after=int(current_app.config.get("LOGIN_LOCKOUT_MINUTES", 15)) * 60,
            )
        raise

    login_throttle_service.record_successful_login(
        user_id=user.id,
        identifier=identifier,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    record, token = session_service.create_session(
        user,
        remember_me=remember_me,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    lifetime = current_app.config[
        "REMEMBER_ME_TOKEN_LIFETIME" if remember_me else "STANDARD_TOKEN_LIFETIME"
    ]

    current_app.logger.info("User logged in: %s", user.email)

    return jsonify({
        "message": "Login successful",
        "user": user.to_dict(),
        "token": token,
        "expiresIn": int(lifetime.total_seconds()),
        "session": record.to_dict(),
    }), 200


@auth_bp.post("/refresh")
@require_auth
def refresh_route():
    """
    Rotate the caller's standard token.

    The old token stops working immediately. Impersonation tokens, and
    requests that skipped session validation, have no record to rotate.
    """
    identity = g.identity
    if identity.is_impersonation or identity.session is None:
        raise SessionInvalid("No valid session found for token refresh")

    token = session_service.rotate_session(identity.session, identity.effective)
    current_app.logger.info("Token refreshed for user %s", identity.effective.id)

    return jsonify({
        "message": "Token refreshed successfully",
        "token": token,
        "expiresAt": identity.session.to_dict()["expires_at"],
    }), 200


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the session behind the bearer token.

    Idempotent: an unknown, already revoked or impersonation token still
    logs out successfully, there is just nothing to revoke.
    """
    token = extract_bearer_token()
    if token is None:
        raise InvalidCredential("Authorization header required")

    revoked = session_service.revoke_session(token, reason="User logout")
    return jsonify({"message": "Logout successful", "revoked": revoked}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    identity = g.identity
    original_admin = None
    if identity.is_impersonation:
        if identity.authorizing is not None:
            original_admin = identity.authorizing.to_dict()
        else:
            original_admin = {"id": identity.origin_admin_id}

    return jsonify({
        "user": identity.effective.to_dict(),
        "isImpersonation": identity.is_impersonation,
        "originalAdmin": original_admin,
    }), 200
