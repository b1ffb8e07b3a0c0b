"""
System health endpoint.

Checks the tables every authenticated request depends on.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import MetricOverride, SessionRecord, User
from ..time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__, url_prefix="/api")


def _timed_check(name: str, probe) -> dict:
    start_time = time.time()
    try:
        details = probe()
        status = "healthy"
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("%s health check failed", name)
        details = None
        status = "unhealthy"

    result = {
        "status": status,
        "latency_ms": round((time.time() - start_time) * 1000, 2),
    }
    if details is not None:
        result["details"] = details
    else:
        result["error"] = f"{name} error"
    return result


def _database_probe() -> dict:
    return {
        "users": db.session.query(User).count(),
        "overrides": db.session.query(MetricOverride).count(),
    }


def _session_probe() -> dict:
    now = utcnow()
    active = db.session.query(SessionRecord).filter(
        SessionRecord.is_active.is_(True),
        SessionRecord.expires_at > now,
    ).count()
    expired = db.session.query(SessionRecord).filter(
        SessionRecord.is_active.is_(True),
        SessionRecord.expires_at <= now,
    ).count()
    return {"active_sessions": active, "expired_pending_cleanup": expired}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database and session table reachable
    - 503: one or more checks failed

    A broken session table is reported even when the session lookup policy
    lets requests through in degraded mode.
    """
    checks = {
        "database": _timed_check("Database", _database_probe),
        "session_store": _timed_check("Session store", _session_probe),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "sessionLookupPolicy": current_app.config.get("SESSION_LOOKUP_FAILURE_POLICY"),
        "checks": checks,
    }, 200 if healthy else 503
