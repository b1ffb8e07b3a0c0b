"""
Client token routing, storage and retry policy.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import jwt
import pytest

from shopconsole.client.retry import RetryPolicy, is_auth_path, parse_retry_after
from shopconsole.client.storage import ClientStorage
from shopconsole.client.tokens import (
    SessionState,
    is_well_formed_impersonation_token,
    seconds_remaining,
    select_token,
)


def make_token(expires_in=3600, **claims):
    now = int(time.time())
    payload = {"sub": "1", "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, "client-test-key", algorithm="HS256")


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


# =============================================================================
# TOKEN SELECTION
# =============================================================================


class TestSelectToken:
    @pytest.fixture
    def impersonating(self):
        return SessionState(standard_token="STD", user={"id": 1, "role": "admin"}, impersonation_token="IMP")

    @pytest.mark.parametrize(
        "path",
        ["/api/admin/seller/5/overrides", "/api/admin/impersonate/5", "/admin/settings"],
    )
    def test_admin_paths_use_standard_token(self, impersonating, path):
        assert select_token(path, impersonating) == "STD"

    @pytest.mark.parametrize(
        "path",
        ["/api/seller/dashboard", "/api/seller/orders", "/api/auth/me", "/api/administrator"],
    )
    def test_other_paths_use_impersonation_token(self, impersonating, path):
        assert select_token(path, impersonating) == "IMP"

    def test_without_impersonation_uses_standard(self):
        state = SessionState(standard_token="STD")
        assert select_token("/api/seller/dashboard", state) == "STD"
        assert select_token("/api/admin/seller/1/dashboard", state) == "STD"

    def test_logged_out(self):
        assert select_token("/api/seller/dashboard", SessionState()) is None

    def test_effective_user(self):
        state = SessionState(standard_token="STD", user={"id": 1}, impersonation_token="IMP", impersonated_user={"id": 5})
        assert state.effective_user == {"id": 5}
        state.impersonation_token = None
        assert state.effective_user == {"id": 1}


class TestTokenClaims:
    def test_seconds_remaining(self):
        token = make_token(expires_in=600)
        assert 590 < seconds_remaining(token) <= 600

    def test_expired_is_negative(self):
        assert seconds_remaining(make_token(expires_in=-60)) < 0

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_unreadable(self, token):
        assert seconds_remaining(token) is None

    def test_well_formed_impersonation_token(self):
        assert is_well_formed_impersonation_token(make_token(imp=True, oadm="1"))

    @pytest.mark.parametrize(
        "token",
        [
            None,
            "",
            "   ",
            123,
            "garbage",
            make_token(imp=False, oadm="1"),
            make_token(imp=True),
            make_token(expires_in=-5, imp=True, oadm="1"),
        ],
    )
    def test_malformed_impersonation_tokens(self, token):
        assert is_well_formed_impersonation_token(token) is False


# =============================================================================
# STORAGE
# =============================================================================


class TestClientStorage:
    def test_in_memory(self):
        storage = ClientStorage()
        storage.set("k", {"a": 1})
        assert storage.get("k") == {"a": 1}
        assert "k" in storage

    def test_max_age_expires(self):
        clock = FakeClock()
        storage = ClientStorage(clock=clock)
        storage.set("token", "abc", max_age=10)

        clock.now += 9
        assert storage.get("token") == "abc"
        clock.now += 2
        assert storage.get("token") is None
        assert "token" not in storage

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "state.json")
        ClientStorage(path).set("user", {"id": 7})

        assert ClientStorage(path).get("user") == {"id": 7}

    def test_expired_keys_dropped_on_write(self, tmp_path):
        path = tmp_path / "state.json"
        clock = FakeClock()
        storage = ClientStorage(str(path), clock=clock)
        storage.set("short", 1, max_age=5)
        clock.now += 10
        storage.set("other", 2)

        assert set(json.loads(path.read_text())) == {"other"}

    def test_delete(self, tmp_path):
        storage = ClientStorage(str(tmp_path / "state.json"))
        storage.set("a", 1)
        storage.set("b", 2)
        storage.delete("a", "missing")

        assert storage.get("a") is None
        assert ClientStorage(storage.path).get("b") == 2

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert ClientStorage(str(path)).get("anything") is None


# =============================================================================
# RETRY POLICY
# =============================================================================


class TestRetryAfter:
    @pytest.mark.parametrize(
        "value,expected",
        [("5", 5.0), ("0", 0.0), (" 12 ", 12.0), ("-3", 0.0), ("2.5", 2.5)],
    )
    def test_seconds(self, value, expected):
        assert parse_retry_after(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unreadable(self, value):
        assert parse_retry_after(value) is None

    def test_http_date(self):
        now = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=30), usegmt=True)
        assert parse_retry_after(header, now=now) == 30.0

    def test_http_date_in_past(self):
        now = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(minutes=5), usegmt=True)
        assert parse_retry_after(header, now=now) == 0.0


class TestRetryPolicy:
    def test_delay_defaults_and_caps(self):
        policy = RetryPolicy()
        assert policy.retry_delay(None) == 5.0
        assert policy.retry_delay("7") == 7.0
        assert policy.retry_delay("100000") == 300.0

    def test_renew_only_on_401_outside_auth_paths(self):
        policy = RetryPolicy()
        assert policy.should_renew(401, "/api/seller/dashboard")
        assert not policy.should_renew(403, "/api/seller/dashboard")
        assert not policy.should_renew(401, "/api/auth/refresh")
        assert not policy.should_renew(401, "/api/auth/login")

    def test_auth_paths(self):
        assert is_auth_path("/api/auth/logout")
        assert not is_auth_path("/api/auth/me")
