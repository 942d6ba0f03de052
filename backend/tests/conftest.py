"""
Pytest fixtures for poscore backend tests.

Provides the test database, a test client, catalog/stock factories and
actor headers for the HTTP layer.
"""

import pytest

from poscore import create_app
from poscore.extensions import db
from poscore.models import Customer
from poscore.services import catalog_service, inventory_service


CASHIER_ID = 101
OTHER_CASHIER_ID = 102
MANAGER_ID = 201


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: sellable item with optional opening stock."""
    counter = {'n': 0}

    def _make(price_cents=1000, tax_rate_bps=0, stock=0, threshold=None, tracks_inventory=True, name=None):
        counter['n'] += 1
        item = catalog_service.create_sellable_item(
            sku=f"SKU-{counter['n']:04d}",
            name=name or f"Item {counter['n']}",
            price_cents=price_cents,
            tax_rate_bps=tax_rate_bps,
            tracks_inventory=tracks_inventory,
        )
        if threshold is not None:
            inventory_service.update_low_stock_threshold(item.id, threshold)
        if stock:
            inventory_service.adjust_stock(item.id, stock, notes="Opening stock")
        return item

    return _make


@pytest.fixture(scope='function')
def taxed_item(make_item):
    """10.00 item at 10% tax with 10 units on hand."""
    return make_item(price_cents=1000, tax_rate_bps=1000, stock=10)


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ada Customer", email="ada@example.com", group_discount_bps=500)
    db_session.add(customer)
    db_session.commit()
    return customer


def actor_headers(actor_id: int, role: str = "cashier") -> dict:
    """Headers the upstream gateway forwards for an authenticated user."""
    return {'X-Actor-Id': str(actor_id), 'X-Actor-Role': role}


@pytest.fixture
def cashier_headers():
    return actor_headers(CASHIER_ID, "cashier")


@pytest.fixture
def manager_headers():
    return actor_headers(MANAGER_ID, "manager")
