# Overview: Request authentication and access-gate decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .errors import ApiError, AuthenticationError, InvalidCredential
from .extensions import db
from .services import access_service, audit_service, identity_service, session_service, token_service


def _error_response(exc: ApiError):
    return jsonify(exc.to_dict()), exc.status_code


def extract_bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _record_activity(identity) -> None:
    """Bookkeeping after a successful resolution; never fails the request."""
    try:
        if identity.session is not None:
            session_service.touch_session(identity.session)
        elif not identity.session_checked:
            audit_service.log_security_event(
                user_id=identity.effective.id,
                event_type="SESSION_CHECK_DEGRADED",
                success=True,
                resource=request.path,
                action=request.method,
                reason="Session lookup failed; request continued without session validation",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Could not record session activity for principal %s", identity.effective.id)


def authenticate_request():
    """
    Verify the bearer token and resolve identities.

    Returns the ResolvedIdentity; raises an AuthenticationError subclass.
    """
    token = extract_bearer_token()
    if token is None:
        raise InvalidCredential("Access token is required")

    claims = token_service.verify_token(token)
    identity = identity_service.resolve_identity(claims, token)
    _record_activity(identity)
    return identity


def require_auth(f):
    """
    Require a valid standard or impersonation token.

    Sets the following Flask g attributes:
    - g.identity: the ResolvedIdentity
    - g.current_user: the EFFECTIVE principal (impersonation target when
      impersonating)
    - g.original_admin: origin admin of an impersonation token, else None

    SECURITY: Returns 401 if:
    - No Authorization header
    - Bad signature or expired token
    - Principal missing or not active
    - Standard token without an active session record
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            identity = authenticate_request()
        except AuthenticationError as exc:
            current_app.logger.info("Authentication failed for %s: %s", request.path, exc.message)
            return _error_response(exc)

        g.identity = identity
        g.current_user = identity.effective
        g.original_admin = identity.authorizing if identity.is_impersonation else None

        return f(*args, **kwargs)

    return decorated_function


def _is_authenticated() -> bool:
    return hasattr(g, "identity")


def require_role(*roles):
    """Require the effective identity to hold one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "message": "Authentication required"}), 401
            try:
                access_service.require_role(g.identity, roles)
            except ApiError as exc:
                return _error_response(exc)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_admin = require_role("admin")
require_seller = require_role("seller")
require_admin_or_seller = require_role("admin", "seller")


def require_ownership_or_admin(model, id_arg: str = "resource_id", owner_columns=access_service.DEFAULT_OWNER_COLUMNS):
    """
    Require the effective identity to own model[id_arg], admins bypass.

    The loaded row is left in g.resource.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "message": "Authentication required"}), 401
            try:
                g.resource = access_service.require_ownership(
                    g.identity, model, kwargs.get(id_arg), owner_columns=owner_columns
                )
            except ApiError as exc:
                return _error_response(exc)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_verified_email(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required", "message": "Authentication required"}), 401
        try:
            access_service.require_verified_email(g.identity)
        except ApiError as exc:
            return _error_response(exc)
        return f(*args, **kwargs)
    return decorated_function
