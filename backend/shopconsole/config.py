# backend/shopconsole/config.py
from __future__ import annotations
import os
from datetime import timedelta


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Signing key for session tokens; falls back to SECRET_KEY
    JWT_SECRET = os.environ.get("JWT_SECRET") or SECRET_KEY
    JWT_ALGORITHM = "HS256"

    # Standard tokens: 7 days, 30 days with remember-me
    STANDARD_TOKEN_LIFETIME = timedelta(days=_env_int("STANDARD_TOKEN_DAYS", 7))
    REMEMBER_ME_TOKEN_LIFETIME = timedelta(days=_env_int("REMEMBER_ME_TOKEN_DAYS", 30))
    IMPERSONATION_TOKEN_LIFETIME = timedelta(minutes=_env_int("IMPERSONATION_TOKEN_MINUTES", 60))

    # "degraded": a failing session-table lookup is logged and the request proceeds
    # without session validation. "strict": the request fails with SessionInvalid.
    SESSION_LOOKUP_FAILURE_POLICY = os.environ.get("SESSION_LOOKUP_FAILURE_POLICY", "degraded")

    # bcrypt cost factor
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Login throttling
    LOGIN_MAX_FAILED_ATTEMPTS = _env_int("LOGIN_MAX_FAILED_ATTEMPTS", 10)
    LOGIN_LOCKOUT_MINUTES = _env_int("LOGIN_LOCKOUT_MINUTES", 15)

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    )

    # Callable (subject_id) -> dict of computed metrics; None uses the neutral baseline
    BASE_METRICS_PROVIDER = None

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///shopconsole.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
