"""
Metric override store.

Verifies:
- put upserts on (subject, metric) and keeps the first original value
- delete removes the row, clear keeps it at the neutral value
- Names and values are validated before anything is written
"""

from decimal import Decimal

import pytest

from shopconsole.errors import InvalidMetricValue, ResourceNotFound, UnknownMetric
from shopconsole.models import MetricOverride
from shopconsole.services import override_service


def _rows(db_session, subject_id):
    return db_session.query(MetricOverride).filter_by(subject_id=subject_id).all()


class TestPut:
    def test_creates_row(self, db_session, seller):
        entry = override_service.put(seller.id, "visitors", 1200, original_value=300)

        assert entry.metric_name == "visitors"
        assert entry.override_value == Decimal("1200.00")
        assert entry.original_value == Decimal("300.00")

    def test_second_put_updates_in_place(self, db_session, seller):
        first = override_service.put(seller.id, "total_sales", "1500.50", original_value=100)
        second = override_service.put(seller.id, "total_sales", 2000, original_value=999)

        assert len(_rows(db_session, seller.id)) == 1
        assert second.id == first.id
        assert second.override_value == Decimal("2000.00")
        # First write wins for the original value
        assert second.original_value == Decimal("100.00")

    def test_same_value_twice_is_idempotent(self, db_session, seller):
        override_service.put(seller.id, "shop_rating", 4.8)
        override_service.put(seller.id, "shop_rating", 4.8)

        rows = _rows(db_session, seller.id)
        assert len(rows) == 1
        assert rows[0].override_value == Decimal("4.80")

    def test_original_defaults_to_zero(self, db_session, seller):
        assert override_service.put(seller.id, "visitors", 5).original_value == Decimal("0.00")

    def test_rounds_to_cents(self, db_session, seller):
        assert override_service.put(seller.id, "total_sales", "10.006").override_value == Decimal("10.01")

    def test_unknown_subject(self, db_session):
        with pytest.raises(ResourceNotFound):
            override_service.put(123456, "visitors", 5)

    def test_subjects_are_independent(self, db_session, seller, make_user):
        other = make_user(role="seller")
        override_service.put(seller.id, "visitors", 1)
        override_service.put(other.id, "visitors", 2)

        assert _rows(db_session, seller.id)[0].override_value == Decimal("1.00")
        assert _rows(db_session, other.id)[0].override_value == Decimal("2.00")


class TestValidation:
    def test_unknown_metric(self, db_session, seller):
        with pytest.raises(UnknownMetric):
            override_service.put(seller.id, "conversion_rate", 5)
        assert _rows(db_session, seller.id) == []

    @pytest.mark.parametrize(
        "metric_name,value",
        [
            ("orders_sold", -1),
            ("total_sales", "-0.01"),
            ("shop_rating", 5.1),
            ("shop_rating", -0.5),
            ("credit_score", 299),
            ("credit_score", 851),
            ("visitors", "abc"),
            ("visitors", None),
            ("visitors", True),
            ("visitors", "NaN"),
            ("visitors", "Infinity"),
        ],
    )
    def test_invalid_values_rejected(self, db_session, seller, metric_name, value):
        with pytest.raises(InvalidMetricValue):
            override_service.put(seller.id, metric_name, value)
        assert _rows(db_session, seller.id) == []

    @pytest.mark.parametrize(
        "metric_name,value",
        [("shop_rating", 0), ("shop_rating", 5), ("credit_score", 300), ("credit_score", 850), ("orders_sold", 0)],
    )
    def test_bounds_are_inclusive(self, db_session, seller, metric_name, value):
        override_service.put(seller.id, metric_name, value)

    def test_negative_message(self, db_session):
        with pytest.raises(InvalidMetricValue, match="cannot be negative"):
            override_service.parse_metric_value("orders_sold", -5)

    def test_range_message(self, db_session):
        with pytest.raises(InvalidMetricValue, match="between 300 and 850"):
            override_service.parse_metric_value("credit_score", 900)

    @pytest.mark.parametrize("value", ["1e30", 1e30, "10000000000000", "1e400"])
    def test_values_beyond_column_rejected(self, db_session, seller, value):
        with pytest.raises(InvalidMetricValue, match="out of range"):
            override_service.put(seller.id, "total_sales", value)
        assert _rows(db_session, seller.id) == []

    def test_column_maximum_accepted(self, db_session):
        assert override_service.parse_metric_value("total_sales", "9999999999999.99") == Decimal("9999999999999.99")

    @pytest.mark.parametrize("original", ["1e30", "Infinity", "abc"])
    def test_bad_original_value_rejected(self, db_session, seller, original):
        with pytest.raises(InvalidMetricValue):
            override_service.put(seller.id, "visitors", 10, original_value=original)
        assert _rows(db_session, seller.id) == []


class TestDeleteAndClear:
    def test_delete_removes_row(self, db_session, seller):
        override_service.put(seller.id, "visitors", 10)

        assert override_service.delete(seller.id, "visitors") is True
        assert _rows(db_session, seller.id) == []
        assert override_service.delete(seller.id, "visitors") is False

    def test_clear_keeps_row_at_neutral(self, db_session, seller):
        override_service.put(seller.id, "orders_sold", 50, original_value=7)
        entry = override_service.clear(seller.id, "orders_sold")

        assert entry.override_value == Decimal("0")
        assert entry.original_value == Decimal("7.00")
        assert len(_rows(db_session, seller.id)) == 1

    def test_clear_is_idempotent(self, db_session, seller):
        override_service.put(seller.id, "orders_sold", 50)
        override_service.clear(seller.id, "orders_sold")
        override_service.clear(seller.id, "orders_sold")
        assert _rows(db_session, seller.id)[0].override_value == Decimal("0")

    def test_clear_without_row_creates_nothing(self, db_session, seller):
        assert override_service.clear(seller.id, "visitors") is None
        assert _rows(db_session, seller.id) == []

    def test_delete_and_clear_validate_name(self, db_session, seller):
        with pytest.raises(UnknownMetric):
            override_service.delete(seller.id, "bogus")
        with pytest.raises(UnknownMetric):
            override_service.clear(seller.id, "bogus")


class TestStructuredView:
    def test_covers_every_metric(self, db_session, seller):
        override_service.put(seller.id, "credit_score", 700, original_value=650)
        structured = override_service.structured_overrides(seller.id)

        assert set(structured) == set(override_service.METRIC_NAMES)
        assert structured["credit_score"]["hasOverride"] is True
        assert structured["credit_score"]["value"] == 700.0
        assert structured["credit_score"]["original"] == 650.0
        assert structured["visitors"] == {"value": None, "original": None, "hasOverride": False}

    def test_get_is_ordered_by_name(self, db_session, seller):
        for name in ("visitors", "credit_score", "orders_sold"):
            override_service.put(seller.id, name, 400)
        assert [e.metric_name for e in override_service.get(seller.id)] == ["credit_score", "orders_sold", "visitors"]
