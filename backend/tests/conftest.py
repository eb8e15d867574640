"""
Pytest fixtures for store POS backend tests.

Provides test database setup, seed rows for users/products/customers and a
test client.
"""

from decimal import Decimal

import pytest

from storepos import create_app
from storepos.extensions import db
from storepos.models import Customer, Product, User


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
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

        # Policy flags are per-test; restore defaults
        app.config.update(
            ALLOW_NEGATIVE_STOCK=False,
            ENFORCE_CREDIT_LIMIT=True,
            REJECT_CREDIT_OVERPAYMENT=True,
        )

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cashier(db_session):
    user = User(username="cashier1", full_name="Cashier One", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


def _make_product(db_session, sku, *, price="100.00", stock="10", reorder="5", name=None, is_active=True):
    product = Product(
        sku=sku,
        name=name or f"Product {sku}",
        selling_price=Decimal(price),
        cost_price=Decimal("0"),
        current_stock=Decimal(stock),
        reorder_level=Decimal(reorder),
        is_active=is_active,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def products(db_session):
    """Two stocked products: A (qty 10 @ 100.00) and B (qty 5 @ 250.00)."""
    return {
        "A": _make_product(db_session, "SKU-A", price="100.00", stock="10"),
        "B": _make_product(db_session, "SKU-B", price="250.00", stock="5"),
    }


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with a 5000.00 credit limit and nothing owed."""
    cust = Customer(
        name="Credit Customer",
        phone="9000000001",
        credit_limit=Decimal("5000.00"),
        current_credit=Decimal("0"),
        loyalty_points=0,
    )
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for extra products: make_product("SKU-X", price="9.50", stock="2")."""
    def _factory(sku, **kwargs):
        return _make_product(db_session, sku, **kwargs)
    return _factory
