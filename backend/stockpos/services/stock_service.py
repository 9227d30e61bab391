# Overview: Service-layer operations for stock movements; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, select, update

from ..extensions import db
from ..errors import (
    ConflictError,
    InsufficientStockError,
    InvalidInputError,
    InvalidMovementType,
    MovementNotFound,
    ProductNotFound,
)
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    VALID_MOVEMENT_TYPES,
)
from ..validation import normalize_pagination, require_int
from stockpos.time_utils import utcnow, parse_iso_datetime
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Two stores move together:
- stock_movements: append-only ledger, the audit trail of every quantity change.
- products.stock_quantity: denormalized current stock, read on the hot path.

Invariants:
- stock_quantity never goes negative.
- stock_quantity == resulting_quantity of the product's latest movement
  (or the product's initial value when it has no movements).
- previous_quantity of movement N+1 == resulting_quantity of movement N.
- A movement row and its stock update are written in one DB transaction.

Write primitives (never read-modify-write in Python):
- IN:         UPDATE ... SET stock = stock + q
- OUT:        UPDATE ... SET stock = stock - q WHERE stock >= q
- ADJUSTMENT: UPDATE ... SET stock = :new WHERE stock = :previous  (compare-and-swap)
previous/resulting are read back inside the same transaction, after the row
is write-locked by the UPDATE.
"""


REFERENCE_SALE = "sale"


def _parse_occurred_at(value) -> datetime:
    """
    Normalize occurred_at to canonical UTC-naive datetime.

    Accepts None (now), a datetime, or an ISO-8601 string. Future timestamps
    beyond a small clock-skew allowance are rejected.
    """
    if value is None:
        return utcnow()

    if isinstance(value, str):
        try:
            value = parse_iso_datetime(value)
        except ValueError:
            value = None
        if value is None:
            raise InvalidInputError("occurred_at must be an ISO-8601 datetime")

    if not isinstance(value, datetime):
        raise InvalidInputError("occurred_at must be a datetime")

    if value.tzinfo is not None:
        value = parse_iso_datetime(value.isoformat())

    if value > utcnow() + timedelta(minutes=2):
        raise InvalidInputError("occurred_at cannot be in the future")
    return value


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _read_stock(product_id: int) -> int:
    return db.session.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    ).scalar_one()


def _apply_delta(product_id: int, delta: int) -> int | None:
    """
    Atomically add delta to stock. Negative deltas only apply when enough
    stock is on hand at write time ("decrement if >= quantity").

    Returns the resulting quantity, or None when the guard rejected the write.
    """
    stmt = update(Product).where(Product.id == product_id)
    if delta < 0:
        stmt = stmt.where(Product.stock_quantity >= -delta)
    stmt = stmt.values(
        stock_quantity=Product.stock_quantity + delta,
        version_id=Product.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        return None
    return _read_stock(product_id)


def _compare_and_set(product_id: int, expected: int, new_quantity: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity == expected)
        .values(stock_quantity=new_quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 0:
        raise ConflictError(
            "Stock changed while the adjustment was being applied",
            details={"product_id": product_id, "expected_quantity": expected},
        )


def _validate_movement_args(movement_type, quantity, new_quantity) -> None:
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise InvalidMovementType(movement_type)

    if movement_type in (MOVEMENT_IN, MOVEMENT_OUT):
        if quantity is None:
            raise InvalidInputError(f"Quantity must be positive for {movement_type.upper()} movement")
        require_int("quantity", quantity)
        if quantity <= 0:
            raise InvalidInputError(f"Quantity must be positive for {movement_type.upper()} movement")
    else:
        if new_quantity is None:
            raise InvalidInputError("newQuantity must be provided for adjustment")
        require_int("new_quantity", new_quantity)
        if new_quantity < 0:
            raise InvalidInputError("new_quantity must be >= 0 for adjustment")


def _apply_movement_locked(
    product: Product,
    *,
    movement_type: str,
    quantity: int | None,
    new_quantity: int | None,
    reason: str | None,
    reference_type: str | None,
    reference_id: str | None,
    reference_line: str | None,
    notes: str | None,
    recorded_by_user_id: int | None,
    occurred_dt: datetime,
) -> StockMovement:
    """Core movement logic without retry or commit. Caller owns the transaction."""
    if movement_type == MOVEMENT_IN:
        resulting = _apply_delta(product.id, quantity)
        previous = resulting - quantity
    elif movement_type == MOVEMENT_OUT:
        resulting = _apply_delta(product.id, -quantity)
        if resulting is None:
            raise InsufficientStockError(
                product.id, product.name, requested=quantity, available=_read_stock(product.id)
            )
        previous = resulting + quantity
    else:
        previous = _read_stock(product.id)
        _compare_and_set(product.id, previous, new_quantity)
        resulting = new_quantity

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity if movement_type != MOVEMENT_ADJUSTMENT else None,
        new_quantity=new_quantity if movement_type == MOVEMENT_ADJUSTMENT else None,
        previous_quantity=previous,
        resulting_quantity=resulting,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line=reference_line,
        notes=notes,
        recorded_by_user_id=recorded_by_user_id,
        occurred_at=occurred_dt,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing

    # Cached stock/version on the instance are stale after the UPDATE
    db.session.expire(product, ["stock_quantity", "version_id", "updated_at"])
    return movement


def apply_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int | None = None,
    new_quantity: int | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    notes: str | None = None,
    recorded_by_user_id: int | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Record an IN / OUT / ADJUSTMENT movement and update the stock cache.

    - in:         quantity > 0, resulting = previous + quantity
    - out:        quantity > 0, InsufficientStockError if quantity > previous
    - adjustment: new_quantity >= 0, resulting = new_quantity

    Raises ProductNotFound before any write when the product does not exist.
    """
    _validate_movement_args(movement_type, quantity, new_quantity)
    occurred_dt = _parse_occurred_at(occurred_at)

    def _op():
        begin_write()
        product = _get_product(product_id, lock=True)

        movement = _apply_movement_locked(
            product,
            movement_type=movement_type,
            quantity=quantity,
            new_quantity=new_quantity,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_line=None,
            notes=notes,
            recorded_by_user_id=recorded_by_user_id,
            occurred_dt=occurred_dt,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock movement %s recorded for product %s: %s %s -> %s",
        movement.id, product_id, movement_type,
        movement.previous_quantity, movement.resulting_quantity,
    )
    return movement


def deduct_for_reference(
    *,
    product_id: int,
    quantity: int,
    reference_type: str,
    reference_id: str,
    reference_line: str,
    recorded_by_user_id: int | None = None,
    reason: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    OUT movement keyed by (reference_type, reference_id, reference_line).

    Runs inside the caller's transaction (no commit, no retry). Idempotent:
    replaying the same reference returns the original movement instead of
    deducting twice.
    """
    require_int("quantity", quantity, minimum=1)

    existing = db.session.query(StockMovement).filter_by(
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line=reference_line,
    ).first()
    if existing is not None:
        if existing.type != MOVEMENT_OUT or existing.product_id != product_id:
            raise ConflictError(
                "Reference already used for a different stock movement",
                details={"reference_type": reference_type, "reference_id": reference_id,
                         "reference_line": reference_line},
            )
        return existing

    product = _get_product(product_id, lock=True)
    return _apply_movement_locked(
        product,
        movement_type=MOVEMENT_OUT,
        quantity=quantity,
        new_quantity=None,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_line=reference_line,
        notes=None,
        recorded_by_user_id=recorded_by_user_id,
        occurred_dt=occurred_at or utcnow(),
    )


def list_movements(product_id: int, page=1, limit=50) -> dict:
    """Movements for one product, newest first."""
    _get_product(product_id)
    page, limit = normalize_pagination(page, limit, default_limit=50)

    q = db.session.query(StockMovement).filter_by(product_id=product_id)
    total = q.count()
    items = q.order_by(
        StockMovement.occurred_at.desc(),
        StockMovement.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()

    return {"items": items, "total": total, "page": page, "limit": limit}


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise MovementNotFound(movement_id)
    return movement


def reconcile_product(product_id: int) -> dict:
    """
    Audit one product's ledger against its stock cache.

    Walks movements in write order (id) and reports every place where the
    previous/resulting chain breaks, plus whether the cache matches the last
    resulting quantity.
    """
    product = _get_product(product_id)
    movements = db.session.query(StockMovement).filter_by(
        product_id=product_id
    ).order_by(StockMovement.id.asc()).all()

    breaks = []
    for prev_mv, next_mv in zip(movements, movements[1:]):
        if prev_mv.resulting_quantity != next_mv.previous_quantity:
            breaks.append({
                "movement_id": next_mv.id,
                "expected_previous_quantity": prev_mv.resulting_quantity,
                "previous_quantity": next_mv.previous_quantity,
            })

    ledger_quantity = movements[-1].resulting_quantity if movements else None
    cache_matches = ledger_quantity is None or ledger_quantity == product.stock_quantity

    return {
        "product_id": product.id,
        "stock_quantity": product.stock_quantity,
        "ledger_quantity": ledger_quantity,
        "movement_count": len(movements),
        "chain_breaks": breaks,
        "consistent": cache_matches and not breaks,
    }


def movement_totals(product_id: int) -> dict:
    """Summed in/out units and adjustment count for one product."""
    _get_product(product_id)
    rows = db.session.query(
        StockMovement.type,
        func.count(StockMovement.id),
        func.coalesce(func.sum(StockMovement.quantity), 0),
    ).filter(
        StockMovement.product_id == product_id,
    ).group_by(StockMovement.type).all()

    totals = {"in": 0, "out": 0, "adjustments": 0}
    for movement_type, count, qty in rows:
        if movement_type == MOVEMENT_ADJUSTMENT:
            totals["adjustments"] = int(count)
        else:
            totals[movement_type] = int(qty or 0)
    return totals
