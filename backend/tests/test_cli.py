"""CLI command tests (flask test CLI runner)."""

from stockpos.models import Product, StockMovement, User
from stockpos.services import session_service


def test_users_create_and_issue_token(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["users", "create", "--name", "Ana", "--email", "Ana@Shop.Local", "--role", "manager"])
    assert result.exit_code == 0, result.output

    user = db_session.query(User).filter_by(email="ana@shop.local").one()
    assert user.role == "manager"

    result = runner.invoke(args=["users", "issue-token", "--email", "ana@shop.local"])
    assert result.exit_code == 0, result.output
    token = result.output.strip().splitlines()[-1]
    assert session_service.validate_session(token).id == user.id


def test_duplicate_user_rejected(app, db_session, cashier):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["users", "create", "--name", "Again", "--email", cashier.email])
    assert result.exit_code != 0


def test_add_product_records_opening_stock(app, db_session, beverages):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "catalog", "add-product",
        "--sku", "BEV-9", "--name", "Water", "--price-cents", "90",
        "--stock", "12", "--category", "Beverages",
    ])
    assert result.exit_code == 0, result.output

    product = db_session.query(Product).filter_by(sku="BEV-9").one()
    assert product.stock_quantity == 12
    assert product.category_id == beverages.id

    movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
    assert (movement.type, movement.previous_quantity, movement.resulting_quantity) == ("in", 0, 12)

    result = runner.invoke(args=["stock", "reconcile"])
    assert result.exit_code == 0, result.output
    assert "1 product(s) consistent" in result.output


def test_reconcile_reports_drift(app, db_session, cola):
    db_session.execute(
        Product.__table__.update().where(Product.id == cola.id).values(stock_quantity=3)
    )
    db_session.commit()

    # cola has no movements yet, so the cache is trusted
    runner = app.test_cli_runner()
    assert runner.invoke(args=["stock", "reconcile"]).exit_code == 0

    db_session.add(StockMovement(
        product_id=cola.id, type="in", quantity=1,
        previous_quantity=10, resulting_quantity=11,
    ))
    db_session.commit()

    result = runner.invoke(args=["stock", "reconcile", "--product-id", str(cola.id)])
    assert result.exit_code != 0
    assert f"FAIL product {cola.id}" in result.output
