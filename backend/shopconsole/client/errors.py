"""
Exception hierarchy for the console API client.

Exception Hierarchy:
    ClientError (base)
    ├── ApiConnectionError      - network/timeout issues, nothing was answered
    ├── SessionClosed           - the manager was closed while a call was in flight
    ├── ApiResponseError        - API answered with an error status
    │   ├── AuthenticationFailed    - 401 after the single renewal attempt
    │   ├── PermissionDenied        - 403, never retried
    │   └── RateLimitedError        - 429 after the single delayed retry
    ├── ImpersonationError      - impersonation refused or malformed token
    └── OverrideSyncError       - override write failed; the pending edit is kept
"""


class ClientError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ApiConnectionError(ClientError):
    """Network-related errors (timeout, connection refused, etc.)."""


class SessionClosed(ClientError):
    """Raised instead of applying a response that arrived after close()."""


class ApiResponseError(ClientError):
    """
    API returned an error response.

    error is the server's short error code, message its human text.
    """

    def __init__(self, message: str, status_code: int = None, error: str = None, details: str = None):
        super().__init__(message, details)
        self.status_code = status_code
        self.error = error


class AuthenticationFailed(ApiResponseError):
    """The server rejected our credentials and renewal did not help."""


class PermissionDenied(ApiResponseError):
    """Authenticated but not allowed. Never retried."""


class RateLimitedError(ApiResponseError):
    """Still rate limited after the single delayed retry."""

    def __init__(self, message: str, status_code: int = 429, error: str = None, retry_after: float = None):
        super().__init__(message, status_code=status_code, error=error)
        self.retry_after = retry_after


class ImpersonationError(ClientError):
    """Impersonation could not start; stored session state is unchanged."""


class OverrideSyncError(ClientError):
    """
    An override write did not reach the server.

    The edit stays in the pending-edit cache in the failed state until it is
    retried or discarded.
    """

    def __init__(self, message: str, subject_id: int = None, metric_name: str = None, details: str = None):
        super().__init__(message, details)
        self.subject_id = subject_id
        self.metric_name = metric_name
