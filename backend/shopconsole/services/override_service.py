# Overview: Override Store; admin-entered metric values keyed by (subject, metric), upserted atomically.

"""
Metric Override Store

WHY: Admins can substitute manual values for a seller's computed dashboard
metrics. Each (subject, metric) pair holds at most one override row.

WRITE SEMANTICS:
- put:    validate name and value, then upsert. original_value is captured on
          the first insert only; later puts change override_value alone.
- delete: remove the row. Readers see the computed value again.
- clear:  set override_value to the metric's neutral value and KEEP the row.
          Readers see the neutral value, not the computed one.

CONCURRENCY: No explicit locking. SQLite and PostgreSQL use a native
INSERT .. ON CONFLICT DO UPDATE on the unique key; other dialects fall back
to select-then-write retried when a concurrent insert wins the race.
Two concurrent puts to the same key: last write wins.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite

from ..errors import InvalidMetricValue, ResourceNotFound, UnknownMetric
from ..extensions import db
from ..models import MetricOverride, User
from ..time_utils import to_utc_z, utcnow
from .concurrency import UPSERT_RETRY_ERRORS, run_with_retry


@dataclass(frozen=True)
class MetricRule:
    minimum: Decimal
    maximum: Decimal | None = None
    neutral: Decimal = Decimal("0")
    label: str = ""


METRIC_RULES = {
    "orders_sold": MetricRule(Decimal("0"), label="Orders sold"),
    "total_sales": MetricRule(Decimal("0"), label="Total sales"),
    "profit_forecast": MetricRule(Decimal("0"), label="Profit forecast"),
    "visitors": MetricRule(Decimal("0"), label="Visitors"),
    "shop_followers": MetricRule(Decimal("0"), label="Shop followers"),
    "shop_rating": MetricRule(Decimal("0"), Decimal("5"), label="Shop rating"),
    "credit_score": MetricRule(Decimal("300"), Decimal("850"), label="Credit score"),
}

METRIC_NAMES = tuple(METRIC_RULES)

_TWO_PLACES = Decimal("0.01")
# Numeric(15, 2) holds 13 integer digits
_COLUMN_LIMIT = Decimal("1e13")

_NATIVE_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def validate_metric_name(metric_name: str) -> MetricRule:
    rule = METRIC_RULES.get(metric_name)
    if rule is None:
        raise UnknownMetric(
            f"Invalid metric name. Allowed values: {', '.join(METRIC_NAMES)}"
        )
    return rule


def parse_metric_value(metric_name: str, value) -> Decimal:
    """
    Parse and range-check a value for metric_name.

    Accepts ints, floats, Decimals and numeric strings. Rounded to cents,
    matching the column's scale.
    """
    rule = validate_metric_name(metric_name)

    if value is None or isinstance(value, bool):
        raise InvalidMetricValue("overrideValue must be a valid number")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidMetricValue("overrideValue must be a valid number")
    if not number.is_finite():
        raise InvalidMetricValue("overrideValue must be a valid number")

    if number < rule.minimum or (rule.maximum is not None and number > rule.maximum):
        if rule.maximum is None:
            raise InvalidMetricValue(f"{metric_name} cannot be negative")
        raise InvalidMetricValue(
            f"{rule.label} must be between {rule.minimum} and {rule.maximum}"
        )

    return _to_cents(number, "overrideValue")


def _to_cents(number: Decimal, field: str) -> Decimal:
    """Round to the column's scale; rejects anything the column can't hold."""
    if not number.is_finite() or abs(number) >= _COLUMN_LIMIT:
        raise InvalidMetricValue(f"{field} is out of range")
    try:
        return number.quantize(_TWO_PLACES)
    except InvalidOperation:
        raise InvalidMetricValue(f"{field} is out of range")


def _require_subject(subject_id: int) -> User:
    subject = db.session.get(User, subject_id)
    if subject is None:
        raise ResourceNotFound("User not found")
    return subject


def _find(subject_id: int, metric_name: str) -> MetricOverride | None:
    return db.session.query(MetricOverride).filter_by(
        subject_id=subject_id, metric_name=metric_name
    ).first()


def _native_upsert(insert, subject_id, metric_name, value, original) -> None:
    now = utcnow()
    stmt = insert(MetricOverride.__table__).values(
        subject_id=subject_id,
        metric_name=metric_name,
        override_value=value,
        original_value=original,
        created_at=now,
        updated_at=now,
    )
    # original_value and created_at stay as first inserted
    stmt = stmt.on_conflict_do_update(
        index_elements=["subject_id", "metric_name"],
        set_={
            "override_value": stmt.excluded.override_value,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.session.execute(stmt)
    db.session.commit()


def _orm_upsert(subject_id, metric_name, value, original) -> None:
    def _op():
        now = utcnow()
        entry = _find(subject_id, metric_name)
        if entry is None:
            db.session.add(MetricOverride(
                subject_id=subject_id,
                metric_name=metric_name,
                override_value=value,
                original_value=original,
                created_at=now,
                updated_at=now,
            ))
        else:
            entry.override_value = value
            entry.updated_at = now
        db.session.commit()

    run_with_retry(_op, retry_on=UPSERT_RETRY_ERRORS)


def put(subject_id: int, metric_name: str, value, original_value=None) -> MetricOverride:
    """
    Create or replace the override for (subject_id, metric_name).

    original_value is only used when the row is first created; None stores 0.

    Raises:
        UnknownMetric / InvalidMetricValue (400): before any store access
        ResourceNotFound (404): subject doesn't exist
    """
    number = parse_metric_value(metric_name, value)
    original = Decimal("0")
    if original_value is not None:
        try:
            original = Decimal(str(original_value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidMetricValue("originalValue must be a valid number")
        original = _to_cents(original, "originalValue")

    _require_subject(subject_id)

    dialect = db.session.get_bind().dialect.name
    insert = _NATIVE_UPSERT_DIALECTS.get(dialect)
    if insert is not None:
        _native_upsert(insert, subject_id, metric_name, number, original)
    else:
        _orm_upsert(subject_id, metric_name, number, original)

    current_app.logger.info(
        "Override saved for subject %s: %s=%s", subject_id, metric_name, number
    )
    return _find(subject_id, metric_name)


def get(subject_id: int) -> list[MetricOverride]:
    """All overrides of subject, ordered by metric name."""
    return db.session.query(MetricOverride).filter_by(
        subject_id=subject_id
    ).order_by(MetricOverride.metric_name).all()


def delete(subject_id: int, metric_name: str) -> bool:
    """Remove the override row. Idempotent; returns whether a row was removed."""
    validate_metric_name(metric_name)
    _require_subject(subject_id)

    deleted = db.session.query(MetricOverride).filter_by(
        subject_id=subject_id, metric_name=metric_name
    ).delete(synchronize_session=False)
    db.session.commit()

    current_app.logger.info("Override reset for subject %s: %s (%d row)", subject_id, metric_name, deleted)
    return deleted > 0


def clear(subject_id: int, metric_name: str) -> MetricOverride | None:
    """
    Set the override to the metric's neutral value, keeping the row.

    Idempotent. Without an existing row there is nothing to clear and None
    is returned; no row is created.
    """
    rule = validate_metric_name(metric_name)
    _require_subject(subject_id)

    entry = _find(subject_id, metric_name)
    if entry is None:
        current_app.logger.info("No override to clear for subject %s: %s", subject_id, metric_name)
        return None

    entry.override_value = rule.neutral
    entry.updated_at = utcnow()
    db.session.commit()

    current_app.logger.info("Override cleared for subject %s: %s", subject_id, metric_name)
    return entry


def structured_overrides(subject_id: int, entries: list[MetricOverride] | None = None) -> dict:
    """Per-metric view covering every known metric, with hasOverride flags."""
    if entries is None:
        entries = get(subject_id)
    by_name = {entry.metric_name: entry for entry in entries}

    structured = {}
    for name in METRIC_NAMES:
        entry = by_name.get(name)
        if entry is None:
            structured[name] = {"value": None, "original": None, "hasOverride": False}
        else:
            structured[name] = {
                "id": entry.id,
                "value": float(entry.override_value),
                "original": float(entry.original_value),
                "hasOverride": True,
                "createdAt": to_utc_z(entry.created_at),
                "updatedAt": to_utc_z(entry.updated_at),
            }
    return structured
