from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z, utcnow

class Sale(db.Model):
    """
    Completed sale fact.

    Immutable once created: total_amount_cents is the sum of its lines'
    total_price_cents at creation time, and each line snapshots product name and
    unit price so later product edits never rewrite history.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_total_non_negative"),
        # Composite index for cashier-scoped dashboards
        db.Index("ix_sales_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)

    # Cashier identity snapshot
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cashier_name = db.Column(db.String(255), nullable=False)

    # Business time; window filters in analytics run against this column
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.line_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} total={self.total_amount_cents} cashier_id={self.cashier_id}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "total_amount_cents": self.total_amount_cents,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["products_sold"] = [line.to_dict() for line in self.lines]
        return data

class SaleLine(db.Model):
    """Individual line items on a sale, in cart order."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_lines_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Ledger entry that deducted this line
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "stock_movement_id": self.stock_movement_id,
        }
