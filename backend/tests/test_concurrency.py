# Overview: Pytest coverage for concurrent checkouts against a file-backed SQLite database.

"""
Concurrency Tests

Two terminals racing for the last unit: exactly one sale commits, the
other gets a typed stock error, and on-hand never goes negative.
Runs against a file database so each thread gets its own connection.
"""

import threading

import pytest

from poscore import create_app
from poscore.extensions import db
from poscore.models import Order
from poscore.services import catalog_service, checkout_service, inventory_service
from poscore.services.cart_service import Cart, CartLine
from poscore.services.payment_service import Tender
from poscore.validation import ConflictError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'pos.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _seed(app, stock):
    with app.app_context():
        item = catalog_service.create_sellable_item(sku=f"RACE-{stock}", name="Last one", price_cents=500)
        inventory_service.adjust_stock(item.id, stock, notes="Opening stock")
        return item.id


def _race(app, carts):
    """Run one checkout per cart in parallel; returns (orders, errors)."""
    barrier = threading.Barrier(len(carts))
    orders, errors = [], []
    lock = threading.Lock()

    def _terminal(cashier_id, cart):
        with app.app_context():
            barrier.wait()
            try:
                order = checkout_service.process_checkout(
                    cart, [Tender(method="cash", amount_cents=500)], cashier_id=cashier_id
                )
            except ConflictError as exc:
                with lock:
                    errors.append(exc)
            else:
                with lock:
                    orders.append(order.order_number)
            finally:
                db.session.remove()

    threads = [
        threading.Thread(target=_terminal, args=(index + 1, cart))
        for index, cart in enumerate(carts)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return orders, errors


class TestConcurrentCheckout:
    """Writers are serialized; stock checks see committed state."""

    def test_last_unit_sold_once(self, file_app):
        item_id = _seed(file_app, 1)

        orders, errors = _race(file_app, [
            Cart(lines=[CartLine(item_id=item_id, quantity=1)]),
            Cart(lines=[CartLine(item_id=item_id, quantity=1)]),
        ])

        assert len(orders) == 1
        assert len(errors) == 1
        assert errors[0].code == "STOCK_UNAVAILABLE"
        with file_app.app_context():
            assert inventory_service.get_record(item_id).on_hand_quantity == 0
            assert db.session.query(Order).count() == 1
            assert inventory_service.ledger_quantity(item_id) == 0

    def test_parallel_sales_get_distinct_numbers(self, file_app):
        first = _seed(file_app, 5)
        second = _seed(file_app, 6)

        orders, errors = _race(file_app, [
            Cart(lines=[CartLine(item_id=first, quantity=1)]),
            Cart(lines=[CartLine(item_id=second, quantity=1)]),
            Cart(lines=[CartLine(item_id=first, quantity=1)]),
        ])

        assert errors == []
        assert len(orders) == 3
        assert len(set(orders)) == 3
