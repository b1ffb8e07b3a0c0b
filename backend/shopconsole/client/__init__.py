"""
Async client for the shop console API.

SessionManager handles tokens (login, renewal, impersonation routing) and
OverrideSyncEngine layers optimistic override editing on top of it.
"""

from .config import ClientConfig
from .errors import (
    ApiConnectionError,
    ApiResponseError,
    AuthenticationFailed,
    ClientError,
    ImpersonationError,
    OverrideSyncError,
    PermissionDenied,
    RateLimitedError,
    SessionClosed,
)
from .override_sync import EditState, OverrideSyncEngine, OverrideView, PendingEdit, PendingEditCache
from .retry import RetryPolicy
from .session_manager import SessionManager
from .storage import ClientStorage
from .tokens import SessionState, select_token

__all__ = [
    "ClientConfig",
    "ClientStorage",
    "RetryPolicy",
    "SessionManager",
    "SessionState",
    "select_token",
    "OverrideSyncEngine",
    "OverrideView",
    "PendingEdit",
    "PendingEditCache",
    "EditState",
    "ClientError",
    "ApiConnectionError",
    "ApiResponseError",
    "AuthenticationFailed",
    "PermissionDenied",
    "RateLimitedError",
    "ImpersonationError",
    "OverrideSyncError",
    "SessionClosed",
]
