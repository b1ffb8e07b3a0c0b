# Overview: Metric Reconciler; overlays stored overrides onto a computed metrics snapshot.

"""
Metric Reconciliation

reconcile() takes a base snapshot (camelCase dashboard fields) and replaces
every field that has an override row with the override value. It is
recomputed on every call; nothing is cached, so a put/delete/clear is
visible on the very next read.

The base snapshot comes from app.config["BASE_METRICS_PROVIDER"], a callable
(subject_id) -> dict. Without one, the neutral baseline below is used.
"""

from dataclasses import dataclass, field

from flask import current_app

from ..models import MetricOverride
from . import override_service


METRIC_FIELD_MAP = {
    "orders_sold": "ordersSold",
    "total_sales": "totalSales",
    "profit_forecast": "profitForecast",
    "visitors": "visitors",
    "shop_followers": "shopFollowers",
    "shop_rating": "shopRating",
    "credit_score": "creditScore",
}

DEFAULT_BASE_METRICS = {
    "ordersSold": 0,
    "totalSales": 0,
    "profitForecast": 0,
    "visitors": 0,
    "shopFollowers": 0,
    "shopRating": 4.5,
    "creditScore": 750,
}


@dataclass
class ReconciledSnapshot:
    values: dict
    # field name -> metric name, for every override that replaced a base field
    applied: dict = field(default_factory=dict)
    # metric names present in the store but not applied
    skipped: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "metrics": self.values,
            "overriddenFields": sorted(self.applied),
            "skippedOverrides": list(self.skipped),
        }


def default_base_metrics(subject_id: int) -> dict:
    return dict(DEFAULT_BASE_METRICS)


def base_snapshot(subject_id: int) -> dict:
    provider = current_app.config.get("BASE_METRICS_PROVIDER") or default_base_metrics
    return dict(provider(subject_id))


def base_value(subject_id: int, metric_name: str):
    """Computed value of one metric, or None when the base lacks the field."""
    field_name = METRIC_FIELD_MAP.get(metric_name)
    if field_name is None:
        return None
    return base_snapshot(subject_id).get(field_name)


def reconcile(
    subject_id: int,
    base: dict,
    entries: list[MetricOverride] | None = None,
) -> ReconciledSnapshot:
    """
    Overlay subject's overrides onto base.

    base is never mutated. Override names without a mapping, and mapped
    fields the base doesn't carry, are skipped and logged.
    """
    if entries is None:
        entries = override_service.get(subject_id)

    values = dict(base)
    applied = {}
    skipped = []

    for entry in entries:
        field_name = METRIC_FIELD_MAP.get(entry.metric_name)
        if field_name is None or field_name not in values:
            skipped.append(entry.metric_name)
            continue
        values[field_name] = float(entry.override_value)
        applied[field_name] = entry.metric_name

    if skipped:
        current_app.logger.warning(
            "Skipped overrides for subject %s with no matching field: %s",
            subject_id, ", ".join(skipped),
        )

    return ReconciledSnapshot(values=values, applied=applied, skipped=skipped)


def dashboard(subject_id: int) -> ReconciledSnapshot:
    """Reconciled snapshot from the configured base provider."""
    return reconcile(subject_id, base_snapshot(subject_id))
