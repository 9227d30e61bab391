"""
Pytest fixtures for StockPOS backend tests.

Provides test database setup, staff users with bearer tokens, catalog and
customer fixtures, and the test client.
"""

import pytest

from stockpos import create_app
from stockpos.extensions import db
from stockpos.models import Category, Customer, Product, Sale, SaleLine, User
from stockpos.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from stockpos.services import session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, name: str, role: str) -> User:
    user = User(name=name, email=f"{name.lower()}@shop.local", role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager(db_session):
    return _make_user(db_session, "Manager", ROLE_MANAGER)


@pytest.fixture(scope='function')
def cashier(db_session):
    return _make_user(db_session, "Cashier", ROLE_CASHIER)


@pytest.fixture(scope='function')
def other_cashier(db_session):
    return _make_user(db_session, "Dana", ROLE_CASHIER)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    _, token = session_service.create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture(scope='function')
def manager_headers(manager):
    return headers_for(manager)


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    return headers_for(cashier)


@pytest.fixture(scope='function')
def beverages(db_session):
    category = Category(name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def snacks(db_session):
    category = Category(name="Snacks")
    db_session.add(category)
    db_session.commit()
    return category


def make_product(db_session, sku: str, *, price_cents: int = 1000, stock: int = 0,
                 min_stock: int = 0, category=None, name: str | None = None) -> Product:
    """Product with an initial stock value and no movements."""
    product = Product(
        sku=sku,
        name=name or f"Product {sku}",
        price_cents=price_cents,
        stock_quantity=stock,
        min_stock_level=min_stock,
        category_id=category.id if category else None,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cola(db_session, beverages):
    return make_product(db_session, "BEV-001", name="Cola", price_cents=1000, stock=10, category=beverages)


@pytest.fixture(scope='function')
def chips(db_session, snacks):
    return make_product(db_session, "SNK-001", name="Chips", price_cents=500, stock=5, category=snacks)


def make_customer(db_session, name: str, balance_cents: int = 0, *, is_active: bool = True) -> Customer:
    customer = Customer(
        name=name,
        credit_limit_cents=50_000_000,
        outstanding_balance_cents=balance_cents,
        is_active=is_active,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer(db_session):
    return make_customer(db_session, "Corner Cafe", balance_cents=10_000)


def record_sale(db_session, cashier: User, created_at, lines) -> Sale:
    """
    Insert a historical sale directly (no stock deduction) for analytics tests.

    lines: [(product, quantity, unit_price_cents), ...]
    """
    sale_lines = [
        SaleLine(
            line_number=i,
            product_id=product.id,
            product_name=product.name,
            quantity=qty,
            unit_price_cents=price,
            total_price_cents=qty * price,
        )
        for i, (product, qty, price) in enumerate(lines, start=1)
    ]
    sale = Sale(
        total_amount_cents=sum(sl.total_price_cents for sl in sale_lines),
        cashier_id=cashier.id,
        cashier_name=cashier.display_name,
        created_at=created_at,
        lines=sale_lines,
    )
    db_session.add(sale)
    db_session.commit()
    return sale
