"""
Reconciling overrides onto computed dashboard metrics.
"""

from decimal import Decimal

from shopconsole.models import MetricOverride
from shopconsole.services import metrics_service, override_service


BASE = {
    "ordersSold": 12,
    "totalSales": 340.5,
    "profitForecast": 80,
    "visitors": 900,
    "shopFollowers": 45,
    "shopRating": 4.2,
    "creditScore": 710,
}


def _provider(subject_id):
    return dict(BASE)


class TestReconcile:
    def test_no_overrides_returns_base(self, db_session, seller):
        snapshot = metrics_service.reconcile(seller.id, BASE)

        assert snapshot.values == BASE
        assert snapshot.applied == {}
        assert snapshot.skipped == []

    def test_every_metric_can_be_overridden(self, db_session, seller):
        values = {
            "orders_sold": 150,
            "total_sales": 25000,
            "profit_forecast": 5000,
            "visitors": 12000,
            "shop_followers": 800,
            "shop_rating": 4.9,
            "credit_score": 820,
        }
        for name, value in values.items():
            override_service.put(seller.id, name, value)

        snapshot = metrics_service.reconcile(seller.id, BASE)

        for name, value in values.items():
            assert snapshot.values[metrics_service.METRIC_FIELD_MAP[name]] == value
        assert snapshot.to_dict()["overriddenFields"] == sorted(metrics_service.METRIC_FIELD_MAP.values())

    def test_base_is_not_mutated(self, db_session, seller):
        base = dict(BASE)
        override_service.put(seller.id, "visitors", 1)
        metrics_service.reconcile(seller.id, base)
        assert base == BASE

    def test_unmapped_name_is_skipped(self, db_session, seller):
        entries = [
            MetricOverride(subject_id=seller.id, metric_name="legacy_score", override_value=Decimal("9")),
            MetricOverride(subject_id=seller.id, metric_name="visitors", override_value=Decimal("77")),
        ]
        snapshot = metrics_service.reconcile(seller.id, BASE, entries)

        assert snapshot.values["visitors"] == 77.0
        assert snapshot.skipped == ["legacy_score"]
        assert "legacy_score" not in snapshot.values

    def test_field_missing_from_base_is_skipped(self, db_session, seller):
        base = {k: v for k, v in BASE.items() if k != "creditScore"}
        override_service.put(seller.id, "credit_score", 600)

        snapshot = metrics_service.reconcile(seller.id, base)
        assert "creditScore" not in snapshot.values
        assert snapshot.skipped == ["credit_score"]

    def test_cleared_override_shows_neutral_not_base(self, db_session, seller):
        override_service.put(seller.id, "orders_sold", 99)
        override_service.clear(seller.id, "orders_sold")

        snapshot = metrics_service.reconcile(seller.id, BASE)
        assert snapshot.values["ordersSold"] == 0
        assert snapshot.to_dict()["overriddenFields"] == ["ordersSold"]

    def test_deleted_override_shows_base(self, db_session, seller):
        override_service.put(seller.id, "orders_sold", 99)
        override_service.delete(seller.id, "orders_sold")

        assert metrics_service.reconcile(seller.id, BASE).values["ordersSold"] == 12


class TestBaseProvider:
    def test_default_baseline(self, db_session, seller):
        snapshot = metrics_service.dashboard(seller.id)
        assert snapshot.values == metrics_service.DEFAULT_BASE_METRICS

    def test_configured_provider(self, app, db_session, seller):
        app.config["BASE_METRICS_PROVIDER"] = _provider
        override_service.put(seller.id, "shop_rating", 3.5)

        snapshot = metrics_service.dashboard(seller.id)
        assert snapshot.values["shopRating"] == 3.5
        assert snapshot.values["visitors"] == 900

    def test_base_value(self, app, db_session, seller):
        app.config["BASE_METRICS_PROVIDER"] = _provider
        assert metrics_service.base_value(seller.id, "credit_score") == 710
        assert metrics_service.base_value(seller.id, "unknown") is None
