from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Credit customer.

    outstanding_balance_cents is shared mutable state:
    - decreased ONLY by credit_service.record_payment (floored at 0)
    - increased by credit sales handled outside this service
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("outstanding_balance_cents >= 0", name="ck_customers_balance_non_negative"),
        db.CheckConstraint("credit_limit_cents >= 0", name="ck_customers_credit_limit_non_negative"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} balance={self.outstanding_balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "credit_limit_cents": self.credit_limit_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CreditPayment(db.Model):
    """
    Payment against a customer's outstanding balance.

    Immutable fact. Overpayment is absorbed (balance floors at zero), it is not
    tracked as a customer credit.
    """
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 1", name="ck_credit_payments_amount_positive"),
        db.Index("ix_credit_payments_customer_paid", "customer_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    note = db.Column(db.String(255), nullable=True)

    # Balance bracket at the moment the payment was applied
    balance_before_cents = db.Column(db.Integer, nullable=True)
    balance_after_cents = db.Column(db.Integer, nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("credit_payments", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "paid_at": to_utc_z(self.paid_at),
            "note": self.note,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
