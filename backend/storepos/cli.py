# Overview: Flask CLI command group for bootstrap, inspection, and maintenance.

# backend/storepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask pos <command> [options]
#
# Schema:
# - python -m flask pos init-db
#   Create all tables (use "flask db upgrade" for migration-managed databases).
# - python -m flask pos reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask pos seed-demo
#   Idempotent: users, products (stock received through the ledger) and customers.
#
# Inspection:
# - python -m flask pos low-stock
#   List active products at or below their reorder level.
# - python -m flask pos reconcile-credit [--customer-id 3]
#   Check stored credit balances against bills, payments and credit refunds.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Customer, Product, User
from .services import credit_service, inventory_service
from .models.inventory import MOVEMENT_PURCHASE


DEMO_USERS = [
    ("admin", "Store Admin", "admin"),
    ("cashier", "Front Cashier", "cashier"),
]

# sku, name, unit, cost, price, opening stock, reorder level
DEMO_PRODUCTS = [
    ("RICE-5KG", "Basmati Rice 5kg", "pcs", "520.00", "650.00", "40", "10"),
    ("SUGAR-1KG", "Sugar (loose)", "kg", "38.00", "48.00", "120.5", "25"),
    ("MILK-1L", "Full Cream Milk 1L", "pcs", "52.00", "60.00", "8", "12"),
    ("OIL-1L", "Sunflower Oil 1L", "litre", "130.00", "155.00", "30", "10"),
]

# name, phone, credit limit
DEMO_CUSTOMERS = [
    ("Walk-in Regular", "9000000001", "5000.00"),
    ("Corner Cafe", "9000000002", "20000.00"),
]


@click.group('pos')
def pos_group():
    """Store POS bootstrap and inspection commands."""


@pos_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@pos_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask pos seed-demo' for sample data.")


@pos_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo users, products and customers (skips anything already present)."""
    click.echo("START Seeding demo data...")

    for username, full_name, role in DEMO_USERS:
        if db.session.query(User).filter_by(username=username).first() is None:
            db.session.add(User(username=username, full_name=full_name, role=role))
            click.echo(f"PASS Created user: {username} ({role})")
    db.session.commit()
    admin = db.session.query(User).filter_by(username="admin").one()

    for sku, name, unit, cost, price, opening, reorder in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first() is not None:
            continue
        product = Product(
            sku=sku,
            name=name,
            unit=unit,
            cost_price=Decimal(cost),
            selling_price=Decimal(price),
            current_stock=Decimal("0"),
            reorder_level=Decimal(reorder),
        )
        db.session.add(product)
        db.session.commit()
        # Opening stock goes through the ledger like any other receipt.
        inventory_service.adjust_stock(
            product.id, opening, MOVEMENT_PURCHASE, admin.id, reason="Opening stock"
        )
        click.echo(f"PASS Created product: {sku} with {opening} {unit}")

    for name, phone, limit in DEMO_CUSTOMERS:
        if db.session.query(Customer).filter_by(phone=phone).first() is None:
            db.session.add(Customer(name=name, phone=phone, credit_limit=Decimal(limit)))
            click.echo(f"PASS Created customer: {name} (limit {limit})")
    db.session.commit()

    click.echo("PASS Demo data ready.")


@pos_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active products at or below their reorder level."""
    products = inventory_service.get_low_stock()
    if not products:
        click.echo("PASS No products below reorder level.")
        return
    click.echo(f"{'SKU':<14} {'Name':<28} {'Stock':>10} {'Reorder':>10}")
    for p in products:
        click.echo(f"{p.sku:<14} {p.name[:28]:<28} {p.current_stock:>10} {p.reorder_level:>10}")


@pos_group.command('reconcile-credit')
@click.option('--customer-id', type=int, default=None, help='Only check this customer')
@with_appcontext
def reconcile_credit(customer_id):
    """Report customers whose stored credit differs from the ledger-derived balance."""
    if customer_id is not None:
        customer_ids = [customer_id]
    else:
        customer_ids = [cid for (cid,) in db.session.query(Customer.id).order_by(Customer.id).all()]

    mismatches = 0
    for cid in customer_ids:
        try:
            result = credit_service.reconcile_credit(cid)
        except PosError as e:
            raise click.ClickException(e.message)
        if result["balanced"]:
            click.echo(f"PASS Customer {cid}: {result['actual']}")
        else:
            mismatches += 1
            click.echo(
                f"FAIL Customer {cid}: stored {result['actual']}, "
                f"expected {result['expected']} (difference {result['difference']})"
            )

    if mismatches:
        raise click.ClickException(f"{mismatches} customer balance(s) out of balance")
    click.echo(f"PASS {len(customer_ids)} customer balance(s) reconciled.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(pos_group)
