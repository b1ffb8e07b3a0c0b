# Overview: API error taxonomy; every class carries its HTTP status and wire error code.

"""
Errors raised by the service layer and rendered by the app-level handler as
JSON ``{"error": ..., "message": ...}``.

Hierarchy:
    ApiError
    ├── AuthenticationError (401)   - client should renew once, then log out
    │   ├── InvalidCredential
    │   │   └── IdentityLookupFailed
    │   ├── CredentialExpired
    │   ├── SessionInvalid
    │   ├── PrincipalInactive
    │   └── ImpersonationTargetInvalid
    ├── AuthorizationError (403)    - never retried
    │   ├── InsufficientPermissions
    │   ├── AccessDenied
    │   └── EmailNotVerified
    ├── ValidationError (400)       - rejected before any store mutation
    │   ├── UnknownMetric
    │   └── InvalidMetricValue
    ├── ResourceNotFound (404)
    └── RateLimited (429)           - carries retry_after seconds
"""

from __future__ import annotations


class ApiError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.error
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class AuthenticationError(ApiError):
    status_code = 401
    error = "Authentication required"


class InvalidCredential(AuthenticationError):
    error = "Invalid token"


class IdentityLookupFailed(InvalidCredential):
    """Principal store unreachable while resolving a token."""
    error = "Authentication failed"


class CredentialExpired(AuthenticationError):
    error = "Token expired"


class SessionInvalid(AuthenticationError):
    error = "Invalid session"


class PrincipalInactive(AuthenticationError):
    error = "Account not active"


class ImpersonationTargetInvalid(AuthenticationError):
    error = "Invalid impersonation token"


class AuthorizationError(ApiError):
    status_code = 403
    error = "Forbidden"


class InsufficientPermissions(AuthorizationError):
    error = "Insufficient permissions"


class AccessDenied(AuthorizationError):
    error = "Access denied"


class EmailNotVerified(AuthorizationError):
    error = "Email verification required"


class ValidationError(ApiError):
    status_code = 400
    error = "Validation failed"


class UnknownMetric(ValidationError):
    error = "Unknown metric"


class InvalidMetricValue(ValidationError):
    error = "Invalid metric value"


class ResourceNotFound(ApiError):
    status_code = 404
    error = "Not found"


class RateLimited(ApiError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message: str | None = None, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        return data
