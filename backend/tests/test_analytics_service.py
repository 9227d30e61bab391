"""
Analytics aggregator tests.

All figures are computed against a fixed "now" so window boundaries are exact.
"""

from datetime import datetime, timedelta

import pytest

from stockpos.errors import InvalidInputError
from stockpos.services import analytics_service

from conftest import make_customer, make_product, record_sale


NOW = datetime(2026, 5, 15, 12, 0, 0)
TODAY = datetime(2026, 5, 15)


# =============================================================================
# WINDOW RESOLUTION
# =============================================================================


class TestResolveWindow:

    def test_named_period_covers_n_days_including_today(self):
        w = analytics_service.resolve_window("7days", now=NOW)
        assert w.start == datetime(2026, 5, 9)
        assert w.end == datetime(2026, 5, 15, 23, 59, 59, 999000)
        assert w.period == "7days"

    def test_twelve_months_is_365_days(self):
        w = analytics_service.resolve_window("12months", now=NOW)
        assert (TODAY - w.start).days == 364

    @pytest.mark.parametrize("period", [None, "", "fortnight"])
    def test_unknown_period_falls_back_to_30_days(self, period):
        w = analytics_service.resolve_window(period, now=NOW)
        assert w.period == "30days"
        assert w.start == TODAY - timedelta(days=29)

    def test_explicit_bounds_snap_to_day_edges(self):
        w = analytics_service.resolve_window(start="2026-02-01T15:30:00Z", end="2026-02-03")
        assert w.start == datetime(2026, 2, 1)
        assert w.end == datetime(2026, 2, 3, 23, 59, 59, 999000)
        assert w.period is None

    def test_only_one_bound_uses_period(self):
        w = analytics_service.resolve_window("7days", start="2026-02-01", now=NOW)
        assert w.period == "7days"

    def test_start_after_end_rejected(self):
        with pytest.raises(InvalidInputError):
            analytics_service.resolve_window(start="2026-02-05", end="2026-02-01")

    def test_malformed_bound_rejected(self):
        with pytest.raises(InvalidInputError):
            analytics_service.resolve_window(start="last week", end="2026-02-01")


# =============================================================================
# SALES AGGREGATES
# =============================================================================


@pytest.fixture
def sales_history(db_session, cashier, other_cashier, cola, chips):
    loose = make_product(db_session, "MISC-1", name="Loose Item", price_cents=200, stock=3)
    record_sale(db_session, cashier, TODAY - timedelta(days=1) + timedelta(hours=10), [(cola, 1, 100)])
    record_sale(db_session, cashier, TODAY - timedelta(days=1) + timedelta(hours=11), [(chips, 2, 125)])
    record_sale(db_session, other_cashier, TODAY + timedelta(hours=9, minutes=30), [(cola, 1, 1000)])
    record_sale(db_session, other_cashier, TODAY + timedelta(hours=9, minutes=45), [(loose, 1, 50)])
    # Outside the 7-day window
    record_sale(db_session, cashier, TODAY - timedelta(days=40), [(cola, 5, 1000)])
    return {"loose": loose}


class TestSalesAggregates:

    def test_sales_trends_per_day_ascending(self, sales_history):
        w = analytics_service.resolve_window("7days", now=NOW)
        trends = analytics_service.sales_trends(w)

        assert [(t["date"], t["revenue_cents"], t["profit_cents"]) for t in trends] == [
            ("2026-05-14", 350, 70),
            ("2026-05-15", 1050, 210),
        ]
        assert [t["transactions"] for t in trends] == [2, 2]

    def test_top_products_by_revenue(self, sales_history, cola, chips):
        w = analytics_service.resolve_window("7days", now=NOW)
        top = analytics_service.top_products(w)

        assert [(p["product_id"], p["quantity"], p["revenue_cents"]) for p in top] == [
            (cola.id, 2, 1100),
            (chips.id, 2, 250),
            (sales_history["loose"].id, 1, 50),
        ]
        assert top[0]["name"] == "Cola"

    def test_top_products_limit(self, sales_history):
        w = analytics_service.resolve_window("7days", now=NOW)
        assert len(analytics_service.top_products(w, limit=1)) == 1

    def test_sales_by_category_includes_uncategorized(self, sales_history):
        w = analytics_service.resolve_window("7days", now=NOW)
        result = analytics_service.sales_by_category(w)

        assert result == [
            {"name": "Beverages", "value_cents": 1100},
            {"name": "Snacks", "value_cents": 250},
            {"name": "Uncategorized", "value_cents": 50},
        ]

    def test_cashier_performance(self, sales_history, cashier, other_cashier):
        w = analytics_service.resolve_window("7days", now=NOW)
        result = analytics_service.cashier_performance(w)

        assert [r["cashier_id"] for r in result] == [other_cashier.id, cashier.id]
        top = result[0]
        assert top["sales_cents"] == 1050
        assert top["transactions"] == 2
        assert top["total_items"] == 2
        assert top["avg_time"] == 2.2

        second = result[1]
        assert second["name"] == "Cashier"
        assert second["total_items"] == 3
        assert second["avg_time"] == 2.3

    def test_explicit_window_isolates_old_sale(self, sales_history):
        day = TODAY - timedelta(days=40)
        w = analytics_service.resolve_window(start=day.date().isoformat(), end=day.date().isoformat())
        trends = analytics_service.sales_trends(w)
        assert [(t["date"], t["revenue_cents"]) for t in trends] == [(day.date().isoformat(), 5000)]

    def test_empty_window(self, db_session):
        w = analytics_service.resolve_window("7days", now=NOW)
        assert analytics_service.sales_trends(w) == []
        assert analytics_service.top_products(w) == []
        assert analytics_service.cashier_performance(w) == []


class TestHourlyPattern:

    def test_always_24_entries(self, db_session):
        pattern = analytics_service.hourly_pattern(1, now=NOW)
        assert len(pattern) == 24
        assert [p["hour"] for p in pattern] == list(range(24))
        assert all(p["sales_cents"] == 0 for p in pattern)

    def test_buckets_by_hour(self, sales_history):
        pattern = analytics_service.hourly_pattern(1, now=NOW)
        by_hour = {p["hour"]: p["sales_cents"] for p in pattern}

        # yesterday counts when days=1: window starts at midnight one day back
        assert by_hour[9] == 1050
        assert by_hour[10] == 100
        assert by_hour[11] == 250
        assert sum(by_hour.values()) == 1400

    @pytest.mark.parametrize("days", [0, -3, "abc", None])
    def test_invalid_days_coerced_to_one(self, sales_history, days):
        assert analytics_service.hourly_pattern(days, now=NOW) == analytics_service.hourly_pattern(1, now=NOW)


# =============================================================================
# DASHBOARD / SEGMENTS / VALUATION
# =============================================================================


class TestDashboard:

    def test_dashboard_stats(self, db_session, sales_history, cashier, cola, chips):
        make_product(db_session, "OUT-0", stock=0)
        make_product(db_session, "LOW-2", stock=2, min_stock=5)
        cashier.last_login_at = NOW
        db_session.commit()

        stats = analytics_service.dashboard_stats(now=NOW)

        assert stats["today"] == {"revenue_cents": 1050, "transactions": 2, "profit_cents": 210}
        assert stats["yesterday"] == {"revenue_cents": 350, "transactions": 2, "profit_cents": 70}
        assert stats["weekly"]["revenue_cents"] == 1400
        assert stats["weekly"]["transactions"] == 4
        assert stats["products"] == {"total": 5, "low_stock": 1, "out_of_stock": 1}
        assert stats["users"]["total"] == 2
        assert stats["users"]["active_today"] == 1


class TestCustomerSegments:

    def test_thresholds_and_percentages(self, db_session):
        make_customer(db_session, "P", balance_cents=10_000_000)
        make_customer(db_session, "R", balance_cents=5_000_000)
        make_customer(db_session, "O1", balance_cents=4_999_999)
        make_customer(db_session, "O2", balance_cents=0)
        make_customer(db_session, "Gone", balance_cents=20_000_000, is_active=False)

        segments = {s["segment"]: s for s in analytics_service.customer_segments()}
        assert segments["Premium"]["count"] == 1
        assert segments["Regular"]["count"] == 1
        assert segments["Occasional"]["count"] == 2
        assert segments["Premium"]["percentage"] == 25.0
        assert segments["Occasional"]["percentage"] == 50.0

    def test_no_customers(self, db_session):
        segments = analytics_service.customer_segments()
        assert [s["count"] for s in segments] == [0, 0, 0]
        assert [s["percentage"] for s in segments] == [0, 0, 0]

    def test_percentages_rounded_to_two_decimals(self, db_session):
        for i in range(3):
            make_customer(db_session, f"C{i}", balance_cents=0)
        make_customer(db_session, "Big", balance_cents=10_000_000)
        make_customer(db_session, "Big2", balance_cents=10_000_000)
        make_customer(db_session, "Mid", balance_cents=6_000_000)

        segments = {s["segment"]: s["percentage"] for s in analytics_service.customer_segments()}
        assert segments == {"Premium": 33.33, "Regular": 16.67, "Occasional": 50.0}


class TestInventoryValuation:

    def test_total_equals_sum_of_categories(self, db_session, cola, chips):
        make_product(db_session, "MISC-2", price_cents=200, stock=3)

        first = analytics_service.inventory_valuation()
        assert first["total_cents"] == 10_000 + 2_500 + 600
        assert first["total_cents"] == sum(c["value_cents"] for c in first["by_category"])
        assert [c["category"] for c in first["by_category"]] == ["Beverages", "Snacks", "Uncategorized"]

        assert analytics_service.inventory_valuation() == first

    def test_empty_catalog(self, db_session):
        assert analytics_service.inventory_valuation() == {"total_cents": 0, "by_category": []}
