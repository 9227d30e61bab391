"""
Sale transaction tests.

Verifies:
- Totals are computed from unit price x quantity
- Each line becomes one OUT movement referencing the sale
- A failing line leaves no sale, no movements and untouched stock
- Cashier scoping of dashboard reads
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from stockpos.errors import EmptySaleError, InsufficientStockError, InvalidInputError, ProductNotFound, SaleNotFound
from stockpos.extensions import db
from stockpos.models import Product, Sale, StockMovement
from stockpos.services import sales_service
from stockpos.time_utils import utcnow

from conftest import make_product, record_sale


def stock_of(product_id: int) -> int:
    return db.session.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    ).scalar_one()


class TestCreateSale:

    def test_two_line_sale_totals_and_deductions(self, db_session, cashier, cola, chips):
        sale = sales_service.create_sale(
            [
                {"product_id": cola.id, "quantity": 2, "unit_price_cents": 10},
                {"product_id": chips.id, "quantity": 1, "unit_price_cents": 5},
            ],
            cashier,
        )

        assert sale.total_amount_cents == 25
        assert [line.total_price_cents for line in sale.lines] == [20, 5]
        assert sale.cashier_id == cashier.id
        assert sale.cashier_name == "Cashier"

        assert stock_of(cola.id) == 8
        assert stock_of(chips.id) == 4

        movements = db_session.query(StockMovement).filter_by(
            reference_type="sale", reference_id=str(sale.id)
        ).order_by(StockMovement.reference_line).all()
        assert [(m.product_id, m.type, m.quantity) for m in movements] == [
            (cola.id, "out", 2),
            (chips.id, "out", 1),
        ]
        assert [line.stock_movement_id for line in sale.lines] == [m.id for m in movements]

    def test_product_name_defaults_to_catalog_name(self, cashier, cola):
        sale = sales_service.create_sale(
            [{"product_id": cola.id, "quantity": 1, "unit_price_cents": 1000}], cashier,
        )
        assert sale.lines[0].product_name == "Cola"

    def test_explicit_product_name_kept(self, cashier, cola):
        sale = sales_service.create_sale(
            [{"product_id": cola.id, "product_name": "Cola Promo", "quantity": 1, "unit_price_cents": 900}],
            cashier,
        )
        assert sale.lines[0].product_name == "Cola Promo"

    def test_insufficient_stock_rejects_whole_sale(self, db_session, cashier, cola):
        low = make_product(db_session, "LOW-1", name="Low", stock=1)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                [
                    {"product_id": cola.id, "quantity": 1, "unit_price_cents": 10},
                    {"product_id": low.id, "quantity": 2, "unit_price_cents": 10},
                ],
                cashier,
            )

        assert exc.value.details["product_name"] == "Low"
        assert stock_of(low.id) == 1
        assert stock_of(cola.id) == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_quantities_summed_per_product(self, db_session, cashier, chips):
        # 3 + 3 > 5 even though each line alone fits
        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                [
                    {"product_id": chips.id, "quantity": 3, "unit_price_cents": 5},
                    {"product_id": chips.id, "quantity": 3, "unit_price_cents": 5},
                ],
                cashier,
            )
        assert stock_of(chips.id) == 5
        assert db_session.query(Sale).count() == 0

    def test_deduction_failure_rolls_back_earlier_lines(self, db_session, cashier, cola, chips, monkeypatch):
        # Skip the pre-deduction check so line 2 fails inside the conditional decrement
        def unchecked_snapshot(lines):
            ids = {line["product_id"] for line in lines}
            return {p.id: p for p in db_session.query(Product).filter(Product.id.in_(ids))}

        monkeypatch.setattr(sales_service, "_load_snapshot", unchecked_snapshot)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                [
                    {"product_id": cola.id, "quantity": 1, "unit_price_cents": 10},
                    {"product_id": chips.id, "quantity": 1_000_000, "unit_price_cents": 5},
                ],
                cashier,
            )

        assert exc.value.details["product_id"] == chips.id
        assert stock_of(cola.id) == 10
        assert stock_of(chips.id) == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_repeated_product_lines_deduct_each(self, cashier, chips):
        sale = sales_service.create_sale(
            [
                {"product_id": chips.id, "quantity": 2, "unit_price_cents": 5},
                {"product_id": chips.id, "quantity": 3, "unit_price_cents": 5},
            ],
            cashier,
        )
        assert sale.total_amount_cents == 25
        assert stock_of(chips.id) == 0

    def test_empty_sale(self, cashier):
        with pytest.raises(EmptySaleError):
            sales_service.create_sale([], cashier)

    def test_missing_product(self, db_session, cashier, cola):
        with pytest.raises(ProductNotFound):
            sales_service.create_sale(
                [
                    {"product_id": cola.id, "quantity": 1, "unit_price_cents": 10},
                    {"product_id": 9999, "quantity": 1, "unit_price_cents": 10},
                ],
                cashier,
            )
        assert stock_of(cola.id) == 10
        assert db_session.query(Sale).count() == 0

    @pytest.mark.parametrize("line", [
        {"product_id": 1, "quantity": 0, "unit_price_cents": 10},
        {"product_id": 1, "quantity": 1, "unit_price_cents": -1},
        {"product_id": 1, "quantity": 1.5, "unit_price_cents": 10},
        {"product_id": 1, "unit_price_cents": 10},
    ])
    def test_invalid_lines(self, cashier, line):
        with pytest.raises(InvalidInputError):
            sales_service.create_sale([line], cashier)


class TestSaleReads:

    def test_list_newest_first(self, db_session, cashier, cola):
        now = utcnow()
        older = record_sale(db_session, cashier, now - timedelta(hours=2), [(cola, 1, 100)])
        newer = record_sale(db_session, cashier, now - timedelta(hours=1), [(cola, 1, 200)])

        result = sales_service.list_sales(page=1, limit=10)
        assert result["total"] == 2
        assert [s.id for s in result["items"]] == [newer.id, older.id]

    def test_get_sale(self, db_session, cashier, cola):
        sale = record_sale(db_session, cashier, utcnow(), [(cola, 1, 100)])
        assert sales_service.get_sale(sale.id).total_amount_cents == 100
        with pytest.raises(SaleNotFound):
            sales_service.get_sale(sale.id + 1)

    def test_today_stats_scoped_for_cashier(self, db_session, cashier, other_cashier, admin, cola):
        now = utcnow()
        record_sale(db_session, cashier, now, [(cola, 1, 300)])
        record_sale(db_session, other_cashier, now, [(cola, 1, 700)])
        record_sale(db_session, cashier, now - timedelta(days=2), [(cola, 1, 5000)])

        mine = sales_service.today_stats_for_user(cashier)
        assert mine["transactions"] == 1
        assert mine["revenue_cents"] == 300
        assert mine["scoped_to_user"] is True

        everyone = sales_service.today_stats_for_user(admin)
        assert everyone["transactions"] == 2
        assert everyone["revenue_cents"] == 1000
        assert everyone["scoped_to_user"] is False

    def test_recent_sales_scoped_for_cashier(self, db_session, cashier, other_cashier, manager, cola):
        now = utcnow()
        mine = record_sale(db_session, cashier, now - timedelta(minutes=5), [(cola, 1, 300)])
        theirs = record_sale(db_session, other_cashier, now, [(cola, 1, 700)])

        assert [s.id for s in sales_service.recent_sales(cashier)] == [mine.id]
        assert [s.id for s in sales_service.recent_sales(manager)] == [theirs.id, mine.id]
