"""
Session Manager for the console API.

Owns the stored identity (standard token, and an impersonation token while
impersonating), attaches the right one to every call, and renews it:

- Proactively: a background check renews the standard token when less than
  renewal_threshold remains. Expired tokens are never renewed.
- Reactively: a 401 gets exactly one renewal-and-retry. If renewal fails
  (after one delayed retry when renewal itself is rate limited), the stored
  identity is cleared and AuthenticationFailed is raised.

Retry bounds come from RetryPolicy. After close(), late responses are
dropped instead of mutating state.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from .config import ClientConfig
from .debounce import PeriodicTask
from .errors import (
    ApiConnectionError,
    ApiResponseError,
    AuthenticationFailed,
    ClientError,
    ImpersonationError,
    PermissionDenied,
    RateLimitedError,
    SessionClosed,
)
from .storage import ClientStorage
from .tokens import (
    SessionState,
    is_well_formed_impersonation_token,
    seconds_remaining,
    select_token,
)

logger = logging.getLogger(__name__)


LOGIN_PATH = "/api/auth/login"
REFRESH_PATH = "/api/auth/refresh"
LOGOUT_PATH = "/api/auth/logout"

STANDARD_TOKEN_KEY = "auth_token"
USER_KEY = "user"
REMEMBER_ME_KEY = "remember_me"
IMPERSONATION_TOKEN_KEY = "impersonation_token"
IMPERSONATED_USER_KEY = "impersonated_user"

IDENTITY_KEYS = (
    STANDARD_TOKEN_KEY,
    USER_KEY,
    REMEMBER_ME_KEY,
    IMPERSONATION_TOKEN_KEY,
    IMPERSONATED_USER_KEY,
)

DAY = 24 * 60 * 60


def _error_fields(response: httpx.Response) -> tuple[Optional[str], str]:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        message = body.get("message") or (error if isinstance(error, str) else None)
        return (error if isinstance(error, str) else None), message or f"HTTP {response.status_code}"
    return None, response.text or f"HTTP {response.status_code}"


class SessionManager:
    """
    Async session-aware client for the console API.

    Usage:
        manager = SessionManager(ClientConfig(base_url="http://localhost:5000"))
        await manager.start()
        await manager.login("admin@shop.local", "Password123!")
        data = await manager.request("GET", "/api/seller/dashboard")
        await manager.close()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        storage: Optional[ClientStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or ClientConfig()
        self.policy = self.config.retry
        self.storage = storage if storage is not None else ClientStorage(self.config.storage_path, clock=clock)
        self.state = SessionState()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._http_client: Optional[httpx.AsyncClient] = None
        self._renew_lock = asyncio.Lock()
        self._alive = True
        # Bumped whenever the identity ends; work started under an older
        # generation must not write its result back
        self._generation = 0
        self._renewal_enabled = False
        self._logout_listeners: list[Callable[[], None]] = []
        self._renewal_task = PeriodicTask(
            self.config.renewal_check_interval,
            self.renew_if_expiring,
            is_alive=lambda: self._alive,
            name="token-renewal",
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def generation(self) -> int:
        return self._generation

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._http_client

    def restore(self) -> SessionState:
        """
        Reload identity from durable storage.

        A stored token that has already expired is discarded rather than
        restored; the user simply has to log in again.
        """
        token = self.storage.get(STANDARD_TOKEN_KEY)
        remaining = seconds_remaining(token, self._clock())
        if token and remaining is not None and remaining <= 0:
            logger.info("Stored session token has expired, clearing identity")
            self._clear_identity()
            return self.state

        self.state = SessionState(
            standard_token=token,
            user=self.storage.get(USER_KEY),
            remember_me=bool(self.storage.get(REMEMBER_ME_KEY, False)),
        )

        imp_token = self.storage.get(IMPERSONATION_TOKEN_KEY)
        if token and is_well_formed_impersonation_token(imp_token, self._clock()):
            self.state.impersonation_token = imp_token
            self.state.impersonated_user = self.storage.get(IMPERSONATED_USER_KEY)
        elif imp_token:
            self.storage.delete(IMPERSONATION_TOKEN_KEY, IMPERSONATED_USER_KEY)

        return self.state

    async def start(self) -> SessionState:
        """Restore stored identity and start the proactive renewal check."""
        self.restore()
        self._renewal_enabled = True
        self._renewal_task.start()
        return self.state

    async def close(self) -> None:
        """Stop timers, refuse late responses and close the HTTP client."""
        self._alive = False
        self._renewal_enabled = False
        self._renewal_task.cancel()
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    def add_logout_listener(self, listener: Callable[[], None]) -> None:
        """listener() runs after every logout, explicit or forced."""
        self._logout_listeners.append(listener)

    def _check_alive(self) -> None:
        if not self._alive:
            raise SessionClosed("Session manager was closed")

    # =========================================================================
    # STORAGE
    # =========================================================================

    def _cookie_max_age(self) -> float:
        days = self.config.remember_me_cookie_days if self.state.remember_me else self.config.standard_cookie_days
        return days * DAY

    def _store_standard(self, token: str, user: Optional[dict] = None) -> None:
        self.state.standard_token = token
        if user is not None:
            self.state.user = user
        max_age = self._cookie_max_age()
        self.storage.set(STANDARD_TOKEN_KEY, token, max_age=max_age)
        self.storage.set(USER_KEY, self.state.user, max_age=max_age)
        self.storage.set(REMEMBER_ME_KEY, self.state.remember_me, max_age=max_age)

    def _clear_identity(self) -> None:
        self.state = SessionState()
        self.storage.delete(*IDENTITY_KEYS)

    def _end_session(self) -> None:
        """Clear identity, stop the renewal timer and notify listeners."""
        self._generation += 1
        self._clear_identity()
        self._renewal_task.cancel()
        for listener in list(self._logout_listeners):
            listener()

    def hard_logout(self, reason: str) -> None:
        """Forget every stored credential without contacting the server."""
        logger.warning(f"Clearing stored identity: {reason}")
        self._end_session()

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _send(self, method: str, path: str, token: Optional[str], **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        client = self._get_http_client()
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"[SessionManager] Request error for {method} {path}: {e}")
            raise ApiConnectionError(f"Request to {path} failed", details=str(e))

        self._check_alive()
        return response

    def _raise_for_status(self, response: httpx.Response, retry_after: Optional[float] = None) -> None:
        status = response.status_code
        if status < 400:
            return
        error, message = _error_fields(response)
        if status == 401:
            raise AuthenticationFailed(message, status_code=status, error=error)
        if status == 403:
            raise PermissionDenied(message, status_code=status, error=error)
        if status == 429:
            raise RateLimitedError(message, error=error, retry_after=retry_after)
        raise ApiResponseError(message, status_code=status, error=error)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise ApiResponseError(
                "Response is not valid JSON",
                status_code=response.status_code,
                details=response.text[:200],
            )

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send an authenticated request and return the decoded JSON body.

        Raises:
            AuthenticationFailed: 401 that renewal couldn't fix
            PermissionDenied: 403 (never retried)
            RateLimitedError: 429 twice in a row
            ApiResponseError: any other error status
            ApiConnectionError: network failure
            SessionClosed: close() was called while the call was in flight
        """
        self._check_alive()
        renewals = 0
        rate_limit_retries = 0

        while True:
            token = select_token(path, self.state)
            response = await self._send(method, path, token, **kwargs)
            status = response.status_code

            if self.policy.should_renew(status, path):
                if self._impersonation_expired(token):
                    # Refresh only extends the admin's token; the target's can't be renewed
                    self.stop_impersonation()
                    error, _ = _error_fields(response)
                    raise AuthenticationFailed("Impersonation session has expired", status_code=401, error=error)
                if renewals >= self.policy.max_renewals_per_call:
                    self._raise_for_status(response)
                renewals += 1
                if await self._renew_after_rejection(token):
                    continue
                self.hard_logout(f"renewal failed after 401 on {path}")
                error, message = _error_fields(response)
                raise AuthenticationFailed(message, status_code=401, error=error)

            if self.policy.is_rate_limited(status):
                delay = self.policy.retry_delay(response.headers.get("Retry-After"))
                if rate_limit_retries >= self.policy.max_rate_limit_retries:
                    self._raise_for_status(response, retry_after=delay)
                rate_limit_retries += 1
                logger.info(f"Rate limited on {method} {path}, retrying in {delay:.1f}s")
                await self._sleep(delay)
                self._check_alive()
                continue

            self._raise_for_status(response)
            return self._json(response)

    # =========================================================================
    # RENEWAL
    # =========================================================================

    def _impersonation_expired(self, token: Optional[str]) -> bool:
        if token is None or token != self.state.impersonation_token:
            return False
        remaining = seconds_remaining(token, self._clock())
        return remaining is None or remaining <= 0

    async def _renew_after_rejection(self, rejected_token: Optional[str]) -> bool:
        """
        Renew once for a call whose token was rejected.

        Concurrent calls rejected with the same token share one renewal: a
        call that finds the token already replaced just retries with it.
        """
        async with self._renew_lock:
            if rejected_token is not None and rejected_token not in (
                self.state.standard_token,
                self.state.impersonation_token,
            ):
                return bool(self.state.standard_token)
            return await self._renew()

    async def _renew(self) -> bool:
        """POST /api/auth/refresh with the standard token. Returns success."""
        token = self.state.standard_token
        if not token:
            return False
        generation = self._generation

        for attempt in range(1 + self.policy.max_renewal_rate_limit_retries):
            try:
                response = await self._send("POST", REFRESH_PATH, token)
            except ApiConnectionError as e:
                logger.warning(f"Token renewal failed: {e}")
                return False

            if generation != self._generation:
                logger.info("Logged out during token renewal, dropping the response")
                return False

            if response.status_code == 200:
                new_token = self._json(response).get("token")
                if not new_token:
                    logger.warning("Token renewal response did not contain a token")
                    return False
                self._store_standard(new_token)
                logger.info("Session token renewed")
                return True

            if self.policy.is_rate_limited(response.status_code) and attempt < self.policy.max_renewal_rate_limit_retries:
                delay = self.policy.retry_delay(response.headers.get("Retry-After"))
                logger.info(f"Token renewal rate limited, retrying in {delay:.1f}s")
                await self._sleep(delay)
                self._check_alive()
                continue

            logger.warning(f"Token renewal rejected with HTTP {response.status_code}")
            return False

        return False

    async def renew_if_expiring(self) -> bool:
        """
        Renew the standard token if it expires within renewal_threshold.

        Never renews an already expired token; failures are logged, the
        reactive path deals with them on the next call.
        """
        remaining = seconds_remaining(self.state.standard_token, self._clock())
        if remaining is None or remaining <= 0 or remaining >= self.config.renewal_threshold:
            return False
        async with self._renew_lock:
            return await self._renew()

    # =========================================================================
    # LOGIN / LOGOUT
    # =========================================================================

    async def login(self, email_or_phone: str, password: str, remember_me: bool = False) -> dict:
        self._check_alive()
        response = await self._send(
            "POST",
            LOGIN_PATH,
            None,
            json={"emailOrPhone": email_or_phone, "password": password, "rememberMe": remember_me},
        )
        if self.policy.is_rate_limited(response.status_code):
            self._raise_for_status(response, retry_after=self.policy.retry_delay(response.headers.get("Retry-After")))
        self._raise_for_status(response)

        data = self._json(response)
        token = data.get("token")
        if not token:
            raise ApiResponseError("Login response did not contain a token", status_code=response.status_code)

        # A fresh login ends any impersonation left over from a previous session
        self._clear_identity()
        self.state.remember_me = remember_me
        self._store_standard(token, data.get("user"))
        if self._renewal_enabled:
            self._renewal_task.start()
        logger.info(f"Logged in as {(data.get('user') or {}).get('email')}")
        return data

    async def logout(self) -> None:
        """
        Revoke the server session if possible; local identity is always cleared.

        Stops the renewal timer and notifies logout listeners, so pending
        refreshes and in-flight edits stop writing state.
        """
        token = self.state.standard_token
        try:
            if token and self._alive:
                response = await self._send("POST", LOGOUT_PATH, token)
                if response.status_code >= 400:
                    logger.info(f"Server logout answered HTTP {response.status_code}")
        except ClientError as e:
            logger.info(f"Server logout failed, clearing local session anyway: {e}")
        finally:
            self._end_session()

    # =========================================================================
    # IMPERSONATION
    # =========================================================================

    async def start_impersonation(self, target_id: int) -> dict:
        """
        Become target_id for every non-admin call.

        Requires the current effective identity to be an admin. Stored
        state is only touched once a well-formed token has been received.
        """
        self._check_alive()
        effective = self.state.effective_user or {}
        if not self.state.is_authenticated or effective.get("role") != "admin":
            raise ImpersonationError("Only an admin can start impersonation")

        generation = self._generation
        data = await self.request("POST", f"/api/admin/impersonate/{target_id}")
        if generation != self._generation:
            raise ImpersonationError("Logged out before impersonation started")
        token = data.get("impersonationToken") if isinstance(data, dict) else None
        if not is_well_formed_impersonation_token(token, self._clock()):
            raise ImpersonationError("Server did not return a valid impersonation token")

        remaining = seconds_remaining(token, self._clock())
        self.state.impersonation_token = token
        self.state.impersonated_user = data.get("user")
        self.storage.set(IMPERSONATION_TOKEN_KEY, token, max_age=remaining)
        self.storage.set(IMPERSONATED_USER_KEY, self.state.impersonated_user, max_age=remaining)

        logger.info(f"Impersonating user {target_id}")
        return data

    def stop_impersonation(self) -> None:
        """Drop the impersonation token; calls use the admin's token again."""
        self.state.impersonation_token = None
        self.state.impersonated_user = None
        self.storage.delete(IMPERSONATION_TOKEN_KEY, IMPERSONATED_USER_KEY)
        logger.info("Impersonation stopped")
