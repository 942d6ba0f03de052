# Overview: Pytest coverage for atomic checkout, quick cash and held carts.

"""
Checkout Tests

A checkout either commits the whole sale (order, items, payments, stock
movements, drawer movement, sync entry) or leaves no trace at all.
"""

import re
from datetime import timedelta

import pytest

from poscore.models import CashMovement, HeldOrder, Order, OrderItem, Payment, StockMovement, StockReservation, SyncQueueEntry
from poscore.services import cart_service, checkout_service, drawer_service, inventory_service, sequence_service
from poscore.services.cart_service import Cart, CartLine
from poscore.services.checkout_service import CheckoutError, HeldOrderNotFound, InsufficientPaymentError
from poscore.services.payment_service import Tender
from poscore.time_utils import business_date_key, utcnow
from poscore.validation import ValidationError

from conftest import CASHIER_ID


def _cart(item, quantity=2):
    return Cart(lines=[CartLine(item_id=item.id, quantity=quantity)])


def _cash(amount):
    return [Tender(method="cash", amount_cents=amount)]


class TestProcessCheckout:
    """Happy path and the money invariant."""

    def test_cash_sale_with_change(self, db_session, taxed_item):
        order = checkout_service.process_checkout(_cart(taxed_item), _cash(2500), cashier_id=CASHIER_ID)

        assert order.status == "completed"
        assert order.payment_status == "paid"
        assert order.subtotal_cents == 2000
        assert order.tax_amount_cents == 200
        assert order.total_cents == 2200
        assert re.match(r"^POS-\d{8}-0001$", order.order_number)

        payment = order.payments[0]
        assert payment.amount_cents == 2500
        assert payment.change_cents == 300
        assert order.amount_paid_cents == 2200
        assert order.change_cents == 300

        assert inventory_service.get_record(taxed_item.id).on_hand_quantity == 8
        entry = db_session.query(SyncQueueEntry).filter_by(aggregate_type="order", aggregate_id=order.id).one()
        assert entry.action == "create"
        assert entry.status == "pending"

    def test_order_items_snapshot_price_and_tax(self, db_session, taxed_item):
        order = checkout_service.process_checkout(_cart(taxed_item, 3), _cash(5000), cashier_id=CASHIER_ID)

        taxed_item.price_cents = 9999
        db_session.commit()

        line = order.items[0]
        assert line.sku == taxed_item.sku
        assert line.unit_price_cents == 1000
        assert line.tax_rate_bps == 1000
        assert line.tax_cents == 300

    def test_money_invariant_with_discounts(self, db_session, make_item):
        first = make_item(price_cents=1299, tax_rate_bps=825, stock=10)
        second = make_item(price_cents=450, tax_rate_bps=0, stock=10)
        cart = Cart(lines=[
            CartLine(item_id=first.id, quantity=3, discount_type="percentage", discount_value=1500),
            CartLine(item_id=second.id, quantity=2, discount_type="fixed", discount_value=100),
        ])

        order = checkout_service.process_checkout(
            cart, _cash(10_000), cashier_id=CASHIER_ID, cart_discount_cents=250
        )

        assert sum(item.total_cents for item in order.items) == order.subtotal_cents
        assert order.subtotal_cents - order.discount_amount_cents + order.tax_amount_cents == order.total_cents
        assert order.discount_amount_cents == 250

    def test_split_tender(self, db_session, taxed_item):
        tenders = [
            Tender(method="card", amount_cents=1000, reference="AUTH-1"),
            Tender(method="cash", amount_cents=1500),
        ]

        order = checkout_service.process_checkout(_cart(taxed_item), tenders, cashier_id=CASHIER_ID)

        assert [p.method for p in order.payments] == ["card", "cash"]
        assert order.payments[0].change_cents == 0
        assert order.payments[1].change_cents == 300
        assert order.payment_status == "paid"

    def test_non_cash_overpayment_rejected(self, db_session, taxed_item):
        with pytest.raises(ValidationError) as exc_info:
            checkout_service.process_checkout(
                _cart(taxed_item), [Tender(method="card", amount_cents=3000)], cashier_id=CASHIER_ID
            )

        assert exc_info.value.code == "OVERPAYMENT"
        assert db_session.query(Order).count() == 0

    def test_sequential_order_numbers(self, db_session, taxed_item):
        first = checkout_service.process_checkout(_cart(taxed_item, 1), _cash(1100), cashier_id=CASHIER_ID)
        second = checkout_service.process_checkout(_cart(taxed_item, 1), _cash(1100), cashier_id=CASHIER_ID)

        assert first.order_number.endswith("-0001")
        assert second.order_number.endswith("-0002")

    def test_taken_order_number_is_skipped(self, db_session, taxed_item):
        taken = sequence_service.format_order_number("POS-", business_date_key(utcnow()), 1)
        db_session.add(Order(order_number=taken, cashier_id=CASHIER_ID, status="completed"))
        db_session.commit()

        order = checkout_service.process_checkout(_cart(taxed_item, 1), _cash(1100), cashier_id=CASHIER_ID)

        assert order.order_number.endswith("-0002")

    def test_customer_stats_updated(self, db_session, taxed_item, customer):
        checkout_service.process_checkout(
            _cart(taxed_item), _cash(2200), cashier_id=CASHIER_ID, customer_id=customer.id
        )

        db_session.refresh(customer)
        assert customer.total_orders == 1
        assert customer.total_spent_cents == 2200
        assert customer.last_purchase_at is not None

    def test_retained_cash_goes_to_open_drawer(self, db_session, taxed_item):
        session = drawer_service.open_session(CASHIER_ID, 5000)

        order = checkout_service.process_checkout(_cart(taxed_item), _cash(2500), cashier_id=CASHIER_ID)

        movement = db_session.query(CashMovement).filter_by(session_id=session.id).one()
        assert movement.movement_type == "sale"
        assert movement.amount_cents == 2200
        assert movement.order_id == order.id

    def test_reserved_line_is_drawn_down(self, db_session, taxed_item):
        cart = Cart()
        cart_service.add_item(cart, taxed_item.id, 2, reserve=True)

        checkout_service.process_checkout(cart, _cash(2200), cashier_id=CASHIER_ID)

        record = inventory_service.get_record(taxed_item.id)
        assert record.on_hand_quantity == 8
        assert record.reserved_quantity == 0

    def test_holder_sells_its_held_units(self, db_session, make_item):
        item = make_item(stock=2)
        cart = Cart()
        cart_service.add_item(cart, item.id, 2, reserve=True)

        checkout_service.process_checkout(cart, _cash(2000), cashier_id=CASHIER_ID)

        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (0, 0)
        assert db_session.query(StockReservation).count() == 0


class TestCheckoutFailures:
    """Every rejection leaves the database untouched."""

    def _assert_nothing_written(self, db_session, item, on_hand=10):
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(Payment).count() == 0
        assert db_session.query(SyncQueueEntry).count() == 0
        assert db_session.query(StockMovement).filter_by(movement_type="sale").count() == 0
        assert inventory_service.get_record(item.id).on_hand_quantity == on_hand

    def test_empty_cart(self, db_session, taxed_item):
        with pytest.raises(CheckoutError) as exc_info:
            checkout_service.process_checkout(Cart(), _cash(100), cashier_id=CASHIER_ID)

        assert exc_info.value.code == "EMPTY_CART"
        self._assert_nothing_written(db_session, taxed_item)

    def test_stock_unavailable_lists_items(self, db_session, taxed_item):
        with pytest.raises(CheckoutError) as exc_info:
            checkout_service.process_checkout(_cart(taxed_item, 11), _cash(20_000), cashier_id=CASHIER_ID)

        assert exc_info.value.code == "STOCK_UNAVAILABLE"
        [problem] = exc_info.value.details["items"]
        assert problem["item_id"] == taxed_item.id
        assert problem["requested"] == 11
        assert problem["available"] == 10
        self._assert_nothing_written(db_session, taxed_item)

    def test_claimed_reservation_cannot_take_held_units(self, db_session, make_item):
        item = make_item(stock=2)
        holder = Cart()
        cart_service.add_item(holder, item.id, 2, reserve=True)
        rogue = Cart(lines=[CartLine(item_id=item.id, quantity=2, reserved_quantity=2, reservation_token="guess")])

        with pytest.raises(CheckoutError) as exc_info:
            checkout_service.process_checkout(rogue, _cash(2000), cashier_id=CASHIER_ID)

        assert exc_info.value.code == "STOCK_UNAVAILABLE"
        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (2, 2)
        assert db_session.query(Order).count() == 0

    def test_insufficient_payment_reports_shortfall(self, db_session, taxed_item):
        with pytest.raises(InsufficientPaymentError) as exc_info:
            checkout_service.process_checkout(_cart(taxed_item), _cash(2000), cashier_id=CASHIER_ID)

        assert exc_info.value.code == "INSUFFICIENT_PAYMENT"
        assert exc_info.value.details["shortfall_cents"] == 200
        self._assert_nothing_written(db_session, taxed_item)

    def test_invalid_tender_method(self, db_session, taxed_item):
        with pytest.raises(ValidationError) as exc_info:
            checkout_service.process_checkout(
                _cart(taxed_item), [Tender(method="iou", amount_cents=2200)], cashier_id=CASHIER_ID
            )
        assert exc_info.value.code == "INVALID_PAYMENT_METHOD"

    def test_failure_mid_transaction_rolls_everything_back(self, db_session, taxed_item, monkeypatch):
        drawer_service.open_session(CASHIER_ID, 1000)

        def _boom(*args, **kwargs):
            raise RuntimeError("queue unavailable")

        monkeypatch.setattr("poscore.services.sync_service.enqueue", _boom)

        with pytest.raises(RuntimeError):
            checkout_service.process_checkout(_cart(taxed_item), _cash(2500), cashier_id=CASHIER_ID)

        self._assert_nothing_written(db_session, taxed_item)
        assert db_session.query(CashMovement).count() == 0

    def test_failed_checkout_does_not_consume_order_number(self, db_session, taxed_item, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("queue unavailable")

        monkeypatch.setattr("poscore.services.sync_service.enqueue", _boom)
        with pytest.raises(RuntimeError):
            checkout_service.process_checkout(_cart(taxed_item, 1), _cash(1100), cashier_id=CASHIER_ID)
        monkeypatch.undo()

        order = checkout_service.process_checkout(_cart(taxed_item, 1), _cash(1100), cashier_id=CASHIER_ID)

        assert order.order_number.endswith("-0001")


class TestQuickCashAndSummary:
    """Convenience flows on top of process_checkout."""

    def test_quick_cash_returns_change(self, db_session, taxed_item):
        order, change = checkout_service.quick_cash_checkout(_cart(taxed_item), 5000, cashier_id=CASHIER_ID)

        assert change == 2800
        assert order.payments[0].method == "cash"

    def test_summary_writes_nothing(self, db_session, taxed_item):
        summary = checkout_service.checkout_summary(_cart(taxed_item), 0, _cash(2000))

        assert summary["totals"]["total_cents"] == 2200
        assert summary["remaining_cents"] == 200
        assert summary["change_cents"] == 0
        assert db_session.query(Order).count() == 0

    def test_calculate_change(self):
        assert checkout_service.calculate_change(2200, 2500) == 300
        assert checkout_service.calculate_change(2200, 2000) == 0


class TestHeldOrders:
    """Parked carts resume exactly once."""

    def test_hold_and_resume(self, db_session, taxed_item, customer):
        held = checkout_service.hold_order(
            _cart(taxed_item, 3), cashier_id=CASHIER_ID, customer_id=customer.id, notes="Back in 5"
        )

        assert [h.id for h in checkout_service.list_held_orders(cashier_id=CASHIER_ID)] == [held.id]

        cart, customer_id = checkout_service.resume_held_order(held.id)

        assert customer_id == customer.id
        assert cart.lines[0].item_id == taxed_item.id
        assert cart.lines[0].quantity == 3
        assert db_session.query(HeldOrder).count() == 0

    def test_second_resume_fails(self, db_session, taxed_item):
        held = checkout_service.hold_order(_cart(taxed_item), cashier_id=CASHIER_ID)
        checkout_service.resume_held_order(held.id)

        with pytest.raises(HeldOrderNotFound) as exc_info:
            checkout_service.resume_held_order(held.id)

        assert exc_info.value.code == "HELD_ORDER_NOT_FOUND"

    def test_cannot_hold_empty_cart(self, db_session):
        with pytest.raises(ValidationError):
            checkout_service.hold_order(Cart(), cashier_id=CASHIER_ID)

    def test_resumed_cart_is_priced_at_current_prices(self, db_session, taxed_item):
        held = checkout_service.hold_order(_cart(taxed_item, 1), cashier_id=CASHIER_ID)
        taxed_item.price_cents = 2000
        db_session.commit()

        cart, _ = checkout_service.resume_held_order(held.id)

        assert cart_service.price_cart(cart).subtotal_cents == 2000

    def test_held_cart_keeps_its_hold_through_resume(self, db_session, make_item):
        item = make_item(stock=2)
        cart = Cart()
        cart_service.add_item(cart, item.id, 2, reserve=True)
        held = checkout_service.hold_order(cart, cashier_id=CASHIER_ID)

        resumed, _ = checkout_service.resume_held_order(held.id)
        checkout_service.process_checkout(resumed, _cash(2000), cashier_id=CASHIER_ID)

        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (0, 0)


class TestHeldOrderExpiry:
    """Abandoned held carts give their stock back."""

    def test_stale_held_cart_releases_its_hold(self, db_session, make_item):
        item = make_item(stock=5)
        stale_cart = Cart()
        cart_service.add_item(stale_cart, item.id, 3, reserve=True)
        stale = checkout_service.hold_order(stale_cart, cashier_id=CASHIER_ID)
        stale.created_at = utcnow() - timedelta(hours=30)
        fresh_cart = Cart()
        cart_service.add_item(fresh_cart, item.id, 1, reserve=True)
        fresh = checkout_service.hold_order(fresh_cart, cashier_id=CASHIER_ID)
        db_session.commit()

        result = checkout_service.expire_held_orders(max_age_hours=24)

        assert result == {"expired": 1, "units_released": 3}
        assert [h.id for h in checkout_service.list_held_orders()] == [fresh.id]
        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (5, 1)

    def test_default_cutoff_comes_from_config(self, app, db_session, make_item, monkeypatch):
        item = make_item(stock=5)
        cart = Cart()
        cart_service.add_item(cart, item.id, 2, reserve=True)
        held = checkout_service.hold_order(cart, cashier_id=CASHIER_ID)
        held.created_at = utcnow() - timedelta(hours=2)
        db_session.commit()
        monkeypatch.setitem(app.config, "HELD_ORDER_TTL_HOURS", 1)

        assert checkout_service.expire_held_orders()["expired"] == 1
        assert inventory_service.get_available(item.id) == 5

    def test_negative_age_rejected(self, db_session):
        with pytest.raises(ValidationError):
            checkout_service.expire_held_orders(max_age_hours=-1)
