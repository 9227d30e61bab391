# Overview: Service-layer operations for analytics; read-only aggregation over sales, products, customers and users.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import distinct, extract, func

from ..extensions import db
from ..errors import InvalidInputError
from ..models import Category, Customer, Product, Sale, SaleLine, User
from ..validation import normalize_pagination
from stockpos.time_utils import end_of_day, parse_iso_datetime, start_of_day, to_utc_z, utcnow
"""
Analytics semantics (authoritative)

- Read-only; no locks. Results tolerate eventual consistency with the ledger.
- All windows are inclusive day ranges in UTC:
    start at 00:00:00.000, end at 23:59:59.999
- Named periods resolve to [today - (N-1) days, today]:
    7days -> 7, 30days -> 30, 12months -> 365. Unknown names fall back to 30days.
- Profit is estimated at a flat 20% of revenue (no per-product cost basis).
- Money is integer cents; estimates round half-up to the nearest cent.
"""


PERIOD_DAYS = {"7days": 7, "30days": 30, "12months": 365}
DEFAULT_PERIOD = "30days"

PROFIT_RATE_PCT = 20

UNCATEGORIZED = "Uncategorized"

# Segment thresholds on outstanding balance (100000 / 50000 currency units)
PREMIUM_MIN_CENTS = 10_000_000
REGULAR_MIN_CENTS = 5_000_000


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime
    period: str | None = None

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
        }


def _coerce_day(value, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        dt = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        dt = None
    if dt is None:
        raise InvalidInputError(f"{field} must be an ISO-8601 date", details={field: value})
    return dt.date()


def resolve_window(period: str | None = None, start=None, end=None, *, now: datetime | None = None) -> Window:
    """
    Explicit bounds win when BOTH start and end are given; otherwise the
    named period (default 30days) is resolved relative to today.
    """
    if start and end:
        start_day = _coerce_day(start, "start")
        end_day = _coerce_day(end, "end")
        if start_day > end_day:
            raise InvalidInputError("start must be on or before end")
        return Window(start=start_of_day(start_day), end=end_of_day(end_day))

    period = period if period in PERIOD_DAYS else DEFAULT_PERIOD
    days = PERIOD_DAYS[period]
    today = start_of_day(now or utcnow())
    return Window(
        start=today - timedelta(days=days - 1),
        end=end_of_day(today),
        period=period,
    )


def estimate_profit_cents(revenue_cents: int) -> int:
    # nearest-cent rounding (half-up)
    return (revenue_cents * PROFIT_RATE_PCT + 50) // 100


def _sales_totals(start: datetime, end_exclusive: datetime | None = None) -> dict:
    q = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
    ).filter(Sale.created_at >= start)
    if end_exclusive is not None:
        q = q.filter(Sale.created_at < end_exclusive)
    count, revenue = q.one()
    revenue = int(revenue or 0)
    return {
        "revenue_cents": revenue,
        "transactions": int(count or 0),
        "profit_cents": estimate_profit_cents(revenue),
    }


def dashboard_stats(*, now: datetime | None = None) -> dict:
    """
    Headline figures for today, yesterday and the trailing week, plus product
    stock health and user activity counts.
    """
    today = start_of_day(now or utcnow())
    yesterday = today - timedelta(days=1)
    week_ago = today - timedelta(days=7)

    total_products = db.session.query(func.count(Product.id)).scalar()
    low_stock = db.session.query(func.count(Product.id)).filter(
        Product.stock_quantity > 0,
        Product.stock_quantity <= Product.min_stock_level,
    ).scalar()
    out_of_stock = db.session.query(func.count(Product.id)).filter(
        Product.stock_quantity == 0,
    ).scalar()

    total_users = db.session.query(func.count(User.id)).scalar()
    active_today = db.session.query(func.count(User.id)).filter(
        User.last_login_at >= today,
    ).scalar()

    return {
        "today": _sales_totals(today),
        "yesterday": _sales_totals(yesterday, today),
        "weekly": _sales_totals(week_ago),
        "products": {
            "total": int(total_products or 0),
            "low_stock": int(low_stock or 0),
            "out_of_stock": int(out_of_stock or 0),
        },
        "users": {
            "total": int(total_users or 0),
            "active_today": int(active_today or 0),
        },
    }


def sales_trends(window: Window) -> list[dict]:
    """Revenue and estimated profit per calendar day, ascending."""
    day = func.date(Sale.created_at).label("day")
    rows = db.session.query(
        day,
        func.coalesce(func.sum(Sale.total_amount_cents), 0).label("revenue"),
        func.count(Sale.id).label("transactions"),
    ).filter(
        Sale.created_at >= window.start,
        Sale.created_at <= window.end,
    ).group_by(day).order_by(day).all()

    return [
        {
            "date": str(row.day),
            "revenue_cents": int(row.revenue or 0),
            "profit_cents": estimate_profit_cents(int(row.revenue or 0)),
            "transactions": int(row.transactions or 0),
        }
        for row in rows
    ]


def _lines_in_window(query, window: Window):
    return query.select_from(SaleLine).join(Sale, SaleLine.sale_id == Sale.id).filter(
        Sale.created_at >= window.start,
        Sale.created_at <= window.end,
    )


def top_products(window: Window, limit=10) -> list[dict]:
    """Best sellers by line revenue within the window."""
    _, limit = normalize_pagination(1, limit, default_limit=10)

    revenue = func.coalesce(func.sum(SaleLine.total_price_cents), 0).label("revenue")
    query = db.session.query(
        SaleLine.product_id.label("product_id"),
        func.max(SaleLine.product_name).label("name"),
        func.coalesce(func.sum(SaleLine.quantity), 0).label("quantity"),
        revenue,
    )
    rows = _lines_in_window(query, window).group_by(
        SaleLine.product_id
    ).order_by(revenue.desc(), SaleLine.product_id.asc()).limit(limit).all()

    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue or 0),
        }
        for row in rows
    ]


def sales_by_category(window: Window) -> list[dict]:
    """Line revenue per product category; products without one are Uncategorized."""
    category_name = func.coalesce(Category.name, UNCATEGORIZED).label("name")
    value = func.coalesce(func.sum(SaleLine.total_price_cents), 0).label("value")

    query = db.session.query(category_name, value)
    rows = _lines_in_window(query, window).join(
        Product, SaleLine.product_id == Product.id
    ).outerjoin(
        Category, Product.category_id == Category.id
    ).group_by(category_name).order_by(value.desc(), category_name.asc()).all()

    return [{"name": row.name, "value_cents": int(row.value or 0)} for row in rows]


def average_handling_time(total_items: int, transactions: int) -> float:
    """
    Heuristic minutes per transaction: 2 + 0.2 per item on the average basket.
    An estimate, not a measured duration.
    """
    items_per_tx = (total_items / transactions) if transactions > 0 else 0
    return round(2 + items_per_tx * 0.2, 2)


def cashier_performance(window: Window) -> list[dict]:
    sales = func.coalesce(func.sum(SaleLine.total_price_cents), 0).label("sales")
    query = db.session.query(
        Sale.cashier_id.label("cashier_id"),
        func.max(Sale.cashier_name).label("name"),
        sales,
        func.count(distinct(Sale.id)).label("transactions"),
        func.coalesce(func.sum(SaleLine.quantity), 0).label("total_items"),
    )
    rows = _lines_in_window(query, window).group_by(
        Sale.cashier_id
    ).order_by(sales.desc(), Sale.cashier_id.asc()).all()

    result = []
    for row in rows:
        transactions = int(row.transactions or 0)
        total_items = int(row.total_items or 0)
        result.append({
            "cashier_id": row.cashier_id,
            "name": row.name,
            "sales_cents": int(row.sales or 0),
            "transactions": transactions,
            "total_items": total_items,
            "avg_time": average_handling_time(total_items, transactions),
        })
    return result


def customer_segments() -> list[dict]:
    """Active customers bucketed by outstanding balance."""
    base = db.session.query(func.count(Customer.id)).filter(Customer.is_active.is_(True))
    balance = Customer.outstanding_balance_cents

    premium = base.filter(balance >= PREMIUM_MIN_CENTS).scalar() or 0
    regular = base.filter(balance >= REGULAR_MIN_CENTS, balance < PREMIUM_MIN_CENTS).scalar() or 0
    occasional = base.filter(balance < REGULAR_MIN_CENTS).scalar() or 0

    total = premium + regular + occasional

    def pct(n: int) -> float:
        return round(n / total * 100, 2) if total > 0 else 0

    return [
        {"segment": "Premium", "count": int(premium), "percentage": pct(premium)},
        {"segment": "Regular", "count": int(regular), "percentage": pct(regular)},
        {"segment": "Occasional", "count": int(occasional), "percentage": pct(occasional)},
    ]


def _coerce_days(days) -> int:
    if isinstance(days, bool):
        return 1
    try:
        d = int(days)
    except (TypeError, ValueError):
        return 1
    return d if d > 0 else 1


def hourly_pattern(days=1, *, now: datetime | None = None) -> list[dict]:
    """
    Revenue by UTC hour of day from midnight `days` days ago through the end
    of today. Always 24 entries; hours without sales report 0.
    """
    d = _coerce_days(days)
    today = start_of_day(now or utcnow())
    start = today - timedelta(days=d)
    end = end_of_day(today)

    hour = extract("hour", Sale.created_at).label("hour")
    rows = db.session.query(
        hour,
        func.coalesce(func.sum(Sale.total_amount_cents), 0).label("sales"),
    ).filter(
        Sale.created_at >= start,
        Sale.created_at <= end,
    ).group_by(hour).all()

    by_hour = {int(row.hour): int(row.sales or 0) for row in rows if row.hour is not None}
    return [{"hour": h, "sales_cents": by_hour.get(h, 0)} for h in range(24)]


def inventory_valuation() -> dict:
    """Retail value (price x stock on hand) in total and per category."""
    category_name = func.coalesce(Category.name, UNCATEGORIZED).label("category")
    value = func.coalesce(func.sum(Product.price_cents * Product.stock_quantity), 0).label("value")

    rows = db.session.query(
        category_name,
        value,
        func.count(Product.id).label("products"),
    ).select_from(Product).outerjoin(
        Category, Product.category_id == Category.id
    ).group_by(category_name).order_by(value.desc(), category_name.asc()).all()

    by_category = [
        {"category": row.category, "value_cents": int(row.value or 0), "products": int(row.products or 0)}
        for row in rows
    ]
    return {
        "total_cents": sum(entry["value_cents"] for entry in by_category),
        "by_category": by_category,
    }
