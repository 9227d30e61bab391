from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z, utcnow


MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"

VALID_MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    - Created once by stock_service, never updated or deleted.
    - previous_quantity / resulting_quantity bracket the change; for a given
      product, resulting_quantity of entry N equals previous_quantity of entry N+1.
    - (reference_type, reference_id, reference_line) is unique so a sale line
      can only ever be deducted once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.UniqueConstraint(
            "reference_type", "reference_id", "reference_line",
            name="uq_stock_movements_reference_line",
        ),
        db.CheckConstraint("previous_quantity >= 0", name="ck_stock_movements_previous_non_negative"),
        db.CheckConstraint("resulting_quantity >= 0", name="ck_stock_movements_resulting_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    # in/out: units moved; adjustment: absolute target
    quantity = db.Column(db.Integer, nullable=True)
    new_quantity = db.Column(db.Integer, nullable=True)

    previous_quantity = db.Column(db.Integer, nullable=False)
    resulting_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    reference_line = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} type={self.type} "
            f"{self.previous_quantity}->{self.resulting_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "new_quantity": self.new_quantity,
            "previous_quantity": self.previous_quantity,
            "resulting_quantity": self.resulting_quantity,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_line": self.reference_line,
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
