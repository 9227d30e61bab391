# Overview: Service-layer operations for sales; encapsulates business logic and database work.

"""
Sale Transaction Processor

WHY: A sale is only valid if every line's stock deduction lands together with
the sale record. Validation, deductions and the sale insert share one DB
transaction: any failure rolls all of it back, so a deducted line can never
exist without its sale.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import EmptySaleError, InsufficientStockError, InvalidInputError, ProductNotFound, SaleNotFound
from ..models import Product, Sale, SaleLine, User
from ..models.auth import ROLE_CASHIER
from ..validation import MAX_PRICE_CENTS, normalize_pagination, require_int
from stockpos.time_utils import utcnow, start_of_day
from .concurrency import begin_write, run_with_retry
from .stock_service import REFERENCE_SALE, deduct_for_reference


def _normalize_lines(lines) -> list[dict]:
    if not lines:
        raise EmptySaleError()
    if not isinstance(lines, (list, tuple)):
        raise InvalidInputError("lines must be a list")

    normalized = []
    for i, line in enumerate(lines, start=1):
        if not isinstance(line, dict):
            raise InvalidInputError(f"Line {i} must be an object")
        if line.get("product_id") is None:
            raise InvalidInputError(f"Line {i}: product_id is required")
        quantity = line.get("quantity")
        unit_price = line.get("unit_price_cents")
        if quantity is None or unit_price is None:
            raise InvalidInputError(f"Line {i}: quantity and unit_price_cents are required")
        require_int("product_id", line["product_id"])
        require_int("quantity", quantity, minimum=1)
        require_int("unit_price_cents", unit_price, minimum=0)
        if unit_price > MAX_PRICE_CENTS:
            raise InvalidInputError(f"Line {i}: unit_price_cents cannot exceed {MAX_PRICE_CENTS}")
        normalized.append({
            "line_number": i,
            "product_id": line["product_id"],
            "product_name": (line.get("product_name") or "").strip() or None,
            "quantity": quantity,
            "unit_price_cents": unit_price,
        })
    return normalized


def _load_snapshot(lines: list[dict]) -> dict[int, Product]:
    """
    Load every referenced product and validate requested quantities against a
    single pre-deduction snapshot. Quantities are summed per product so two
    lines for the same product cannot each pass on their own.
    """
    product_ids = {line["product_id"] for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).populate_existing().all()
    }
    for line in lines:
        if line["product_id"] not in products:
            raise ProductNotFound(line["product_id"])

    requested: dict[int, int] = {}
    for line in lines:
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]

    for product_id, qty in requested.items():
        product = products[product_id]
        if product.stock_quantity < qty:
            raise InsufficientStockError(
                product.id, product.name, requested=qty, available=product.stock_quantity
            )
    return products


def create_sale(lines, cashier: User) -> Sale:
    """
    Validate, price, deduct and persist a multi-line sale.

    - EmptySaleError for no lines; ProductNotFound for unknown products
    - InsufficientStockError against the pre-deduction snapshot, and again at
      deduction time via the conditional decrement (concurrent sales)
    - total_price_cents = unit_price_cents * quantity; total = sum of lines
    """
    normalized = _normalize_lines(lines)

    def _op():
        begin_write()
        products = _load_snapshot(normalized)

        sale_lines = []
        for line in normalized:
            product = products[line["product_id"]]
            sale_lines.append(SaleLine(
                line_number=line["line_number"],
                product_id=product.id,
                product_name=line["product_name"] or product.name,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_price_cents=line["unit_price_cents"] * line["quantity"],
            ))

        now = utcnow()
        sale = Sale(
            total_amount_cents=sum(sl.total_price_cents for sl in sale_lines),
            cashier_id=cashier.id,
            cashier_name=cashier.display_name,
            created_at=now,
            lines=sale_lines,
        )
        db.session.add(sale)
        db.session.flush()  # sale.id is the deduction reference

        for sale_line in sale_lines:
            movement = deduct_for_reference(
                product_id=sale_line.product_id,
                quantity=sale_line.quantity,
                reference_type=REFERENCE_SALE,
                reference_id=str(sale.id),
                reference_line=str(sale_line.line_number),
                recorded_by_user_id=cashier.id,
                reason=f"Sale {sale.id}",
                occurred_at=now,
            )
            sale_line.stock_movement_id = movement.id

        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except InsufficientStockError as exc:
        current_app.logger.warning(
            "Sale rejected for cashier %s: %s", cashier.id, exc.details
        )
        raise

    current_app.logger.info(
        "Sale %s created by cashier %s: %d lines, total %d cents",
        sale.id, cashier.id, len(sale.lines), sale.total_amount_cents,
    )
    return sale


def list_sales(page=1, limit=10) -> dict:
    page, limit = normalize_pagination(page, limit, default_limit=10)
    q = db.session.query(Sale)
    total = q.count()
    items = q.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(
        (page - 1) * limit
    ).limit(limit).all()
    return {"items": items, "total": total, "page": page, "limit": limit}


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFound(sale_id)
    return sale


def _scope_to_user(query, user: User):
    """Cashiers only see their own sales; other roles see everything."""
    if user.role == ROLE_CASHIER:
        return query.filter(Sale.cashier_id == user.id)
    return query


def today_stats_for_user(user: User) -> dict:
    """Transaction count and revenue for the current UTC calendar day."""
    today = start_of_day(utcnow())
    tomorrow = today + timedelta(days=1)

    q = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
    ).filter(Sale.created_at >= today, Sale.created_at < tomorrow)
    count, revenue = _scope_to_user(q, user).one()

    return {
        "date": today.date().isoformat(),
        "transactions": int(count or 0),
        "revenue_cents": int(revenue or 0),
        "scoped_to_user": user.role == ROLE_CASHIER,
    }


def recent_sales(user: User, limit=10) -> list[Sale]:
    _, limit = normalize_pagination(1, limit, default_limit=10)
    q = _scope_to_user(db.session.query(Sale), user)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
