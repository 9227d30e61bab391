# Overview: Service-layer operations for customer credit payments; encapsulates business logic and database work.

"""
Credit Payment Service

WHY: Customers buying on credit carry an outstanding balance; payments reduce
it. The balance floors at zero: overpayment is absorbed, never stored as a
customer credit.

DESIGN PRINCIPLES:
- Payments are immutable facts (no update/delete path)
- Balance change is a single delta UPDATE evaluated by the database, so two
  concurrent payments for the same customer can never lose an update
- Payment insert and balance update commit together
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func, select, update

from ..extensions import db
from ..errors import CustomerNotFound, InvalidInputError
from ..models import Customer, CreditPayment
from ..validation import normalize_pagination, require_int
from stockpos.time_utils import utcnow, parse_iso_datetime
from .concurrency import begin_write, lock_for_update, run_with_retry


# Smallest accepted payment: 0.01 in currency units
MIN_PAYMENT_CENTS = 1


def _get_active_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None or not customer.is_active:
        raise CustomerNotFound(customer_id)
    return customer


def _parse_paid_at(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return value
    try:
        dt = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        dt = None
    if dt is None:
        raise InvalidInputError("date must be an ISO-8601 date or datetime")
    return dt


def _read_balance(customer_id: int) -> int:
    return db.session.execute(
        select(Customer.outstanding_balance_cents).where(Customer.id == customer_id)
    ).scalar_one()


def record_payment(
    *,
    customer_id: int,
    amount_cents: int,
    paid_at=None,
    note: str | None = None,
    recorded_by_user_id: int | None = None,
) -> CreditPayment:
    """
    Apply a payment to a customer's outstanding balance.

    new balance = max(0, balance - amount_cents)

    Raises:
        CustomerNotFound: customer missing or inactive
        InvalidInputError: amount_cents < 1 or malformed date
    """
    require_int("amount_cents", amount_cents)
    if amount_cents < MIN_PAYMENT_CENTS:
        raise InvalidInputError("Payment amount must be at least 0.01", details={"amount_cents": amount_cents})
    paid_dt = _parse_paid_at(paid_at)

    def _op():
        begin_write()
        customer = _get_active_customer(customer_id, lock=True)

        before = _read_balance(customer.id)
        balance = Customer.outstanding_balance_cents
        db.session.execute(
            update(Customer)
            .where(Customer.id == customer.id)
            .values(
                outstanding_balance_cents=case(
                    (balance > amount_cents, balance - amount_cents),
                    else_=0,
                ),
                version_id=Customer.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        after = _read_balance(customer.id)

        payment = CreditPayment(
            customer_id=customer.id,
            amount_cents=amount_cents,
            paid_at=paid_dt,
            note=note,
            balance_before_cents=before,
            balance_after_cents=after,
            recorded_by_user_id=recorded_by_user_id,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        db.session.expire(customer, ["outstanding_balance_cents", "version_id", "updated_at"])
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Credit payment %s recorded for customer %s: %d cents, balance now %d",
        payment.id, customer_id, amount_cents, payment.balance_after_cents,
    )
    return payment


def list_payments(customer_id: int, page=1, limit=50) -> dict:
    """
    Payments for one customer, newest payment date first. History stays
    readable after the customer is deactivated.
    """
    if db.session.get(Customer, customer_id) is None:
        raise CustomerNotFound(customer_id)
    page, limit = normalize_pagination(page, limit, default_limit=50)

    q = db.session.query(CreditPayment).filter_by(customer_id=customer_id)
    total = q.count()
    items = q.order_by(
        CreditPayment.paid_at.desc(),
        CreditPayment.created_at.desc(),
        CreditPayment.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()

    return {"items": items, "total": total, "page": page, "limit": limit}


def credit_summary() -> dict:
    """Total outstanding balance across active customers."""
    total, count = db.session.query(
        func.coalesce(func.sum(Customer.outstanding_balance_cents), 0),
        func.count(Customer.id),
    ).filter(Customer.is_active.is_(True)).one()

    with_balance = db.session.query(func.count(Customer.id)).filter(
        Customer.is_active.is_(True),
        Customer.outstanding_balance_cents > 0,
    ).scalar()

    return {
        "total_outstanding_cents": int(total or 0),
        "active_customers": int(count or 0),
        "customers_with_balance": int(with_balance or 0),
    }
