from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, retry_on=(OperationalError,)):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks) by default. Upserts on dialects
    without ON CONFLICT also pass IntegrityError, which is what losing a
    race to insert the same unique key looks like.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


UPSERT_RETRY_ERRORS = (IntegrityError, OperationalError)
