"""
Pytest fixtures for the stock core tests.

Every test gets a fresh in-memory database, a fixed business clock it can
move forward, and a small set of master data (user, client, supplier,
payment method). Products are created through make_product so their opening
stock is a real INBOUND movement.
"""

from datetime import datetime, timedelta

import pytest

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import User, Client, Supplier, PaymentMethod
from retailcore.services import catalog_service, ledger_service


class FixedClock:
    """Business clock for window rules; tests move it with advance()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='function')
def clock():
    return FixedClock(datetime(2026, 1, 15, 10, 0, 0))


@pytest.fixture(scope='function')
def app(clock):
    """Create application for testing."""
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI='sqlite:///:memory:',
        CLOCK=clock,
        LEDGER_RETRY_BACKOFF=0,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def user(app):
    user = User(username="cashier", full_name="Front Cashier")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def manager(app):
    user = User(username="manager", full_name="Store Manager", is_admin=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def customer(app):
    customer = Client(name="Walk-in customer", document_number="00000000")
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(app):
    supplier = Supplier(name="Distribuidora Central", tax_id="20100000001")
    db.session.add(supplier)
    db.session.commit()
    return supplier


@pytest.fixture(scope='function')
def cash(app):
    method = PaymentMethod(name="CASH")
    db.session.add(method)
    db.session.commit()
    return method


@pytest.fixture(scope='function')
def make_product(app, user):
    """Factory: product with opening stock booked through the ledger."""
    counter = {"n": 0}

    def _make(stock: int = 0, min_stock: int = 3, price_cents: int = 1000, name: str | None = None):
        counter["n"] += 1
        product = catalog_service.create_product(
            sku=f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            min_stock=min_stock,
        )
        if stock:
            ledger_service.register_inbound(product.id, stock, user.id, "Opening stock")
        return product

    return _make


@pytest.fixture(scope='function')
def actor_headers(user):
    """Helper headers identifying the acting user."""
    return {'X-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def admin_headers(manager):
    """Helper headers identifying an administrator."""
    return {'X-User-Id': str(manager.id)}
