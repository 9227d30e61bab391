# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and tokens:
# - python -m flask users create --name "Ana" --email ana@shop.local --role cashier
# - python -m flask users list
# - python -m flask users issue-token --email ana@shop.local
#   Prints a bearer token for the Authorization header.
#
# Reference data:
# - python -m flask catalog add-category --name Beverages
# - python -m flask catalog add-product --sku BEV-001 --name "Cola 500ml" --price-cents 150 --stock 24 --category Beverages
# - python -m flask customers create --name "Corner Cafe" --credit-limit-cents 500000 --balance-cents 12000
#
# Stock:
# - python -m flask stock reconcile [--product-id 1]
#   Check the stock cache against the movement ledger.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import Category, Customer, Product, User
from .models.auth import VALID_ROLES
from .models.inventory import MOVEMENT_IN
from .services import session_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema is in place.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """Staff accounts and bearer tokens."""


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), default='cashier', show_default=True)
@with_appcontext
def create_user(name, email, role):
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User with email {email} already exists")

    user = User(name=name.strip(), email=email, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<20} {user.email:<30} {active_str:<8} {user.role}")


@users_group.command('issue-token')
@click.option('--email', required=True)
@with_appcontext
def issue_token(email):
    """Issue a bearer session token for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        raise click.ClickException(f"No user with email {email}")

    try:
        session, token = session_service.create_session(user.id)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Token for {user.email} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@click.group('catalog')
def catalog_group():
    """Categories and products."""


@catalog_group.command('add-category')
@click.option('--name', required=True)
@click.option('--description', default=None)
@with_appcontext
def add_category(name, description):
    category = Category(name=name.strip(), description=description)
    db.session.add(category)
    db.session.commit()
    click.echo(f"PASS Created category {category.name} (ID: {category.id})")


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=click.IntRange(min=0), required=True)
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True,
              help='Opening stock, recorded as an IN movement')
@click.option('--min-stock', type=click.IntRange(min=0), default=0, show_default=True)
@click.option('--category', 'category_name', default=None)
@with_appcontext
def add_product(sku, name, price_cents, stock, min_stock, category_name):
    category = None
    if category_name:
        category = db.session.query(Category).filter_by(name=category_name).first()
        if not category:
            raise click.ClickException(f"No category named {category_name}")

    product = Product(
        sku=sku.strip(),
        name=name.strip(),
        price_cents=price_cents,
        stock_quantity=0,
        min_stock_level=min_stock,
        category_id=category.id if category else None,
    )
    db.session.add(product)
    db.session.commit()

    if stock > 0:
        stock_service.apply_movement(
            product_id=product.id,
            movement_type=MOVEMENT_IN,
            quantity=stock,
            reason="Opening stock",
        )

    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, stock: {stock})")


@click.group('customers')
def customers_group():
    """Credit customers."""


@customers_group.command('create')
@click.option('--name', required=True)
@click.option('--email', default=None)
@click.option('--phone', default=None)
@click.option('--credit-limit-cents', type=click.IntRange(min=0), default=0, show_default=True)
@click.option('--balance-cents', type=click.IntRange(min=0), default=0, show_default=True,
              help='Opening outstanding balance')
@with_appcontext
def create_customer(name, email, phone, credit_limit_cents, balance_cents):
    customer = Customer(
        name=name.strip(),
        email=email,
        phone=phone,
        credit_limit_cents=credit_limit_cents,
        outstanding_balance_cents=balance_cents,
        is_active=True,
    )
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer {customer.name} (ID: {customer.id})")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only check one product')
@with_appcontext
def reconcile(product_id):
    """Report products whose stock cache disagrees with the movement ledger."""
    if product_id:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    inconsistent = 0
    for pid in product_ids:
        try:
            report = stock_service.reconcile_product(pid)
        except ServiceError as e:
            raise click.ClickException(str(e))

        if report["consistent"]:
            continue
        inconsistent += 1
        click.echo(
            f"FAIL product {pid}: stock={report['stock_quantity']} "
            f"ledger={report['ledger_quantity']} breaks={len(report['chain_breaks'])}"
        )

    if inconsistent:
        raise click.ClickException(f"{inconsistent} product(s) inconsistent")
    click.echo(f"PASS {len(product_ids)} product(s) consistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(stock_group)
