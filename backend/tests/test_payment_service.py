# Overview: Pytest coverage for post-sale payments, voids and payment status.

import pytest

from poscore.services import checkout_service, drawer_service, order_service, payment_service
from poscore.services.cart_service import Cart, CartLine
from poscore.services.payment_service import PaymentError, Tender
from poscore.validation import NotFoundError, ValidationError

from conftest import CASHIER_ID, MANAGER_ID


@pytest.fixture
def card_order(db_session, taxed_item):
    """2200-cent order paid in full by card."""
    cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=2)])
    return checkout_service.process_checkout(
        cart, [Tender(method="card", amount_cents=2200)], cashier_id=CASHIER_ID
    )


class TestPaymentStatus:
    """derive_payment_status thresholds."""

    @pytest.mark.parametrize("paid,expected", [
        (0, "pending"),
        (1, "partial"),
        (2199, "partial"),
        (2200, "paid"),
    ])
    def test_derive(self, paid, expected):
        assert payment_service.derive_payment_status(2200, paid) == expected

    def test_parse_tenders_rejects_empty_list(self):
        with pytest.raises(ValidationError):
            payment_service.parse_tenders([])

    def test_parse_tenders_rejects_float_amount(self):
        with pytest.raises(ValidationError):
            payment_service.parse_tenders([{"method": "cash", "amount_cents": 10.5}])

    def test_parse_tenders(self):
        [tender] = payment_service.parse_tenders([{"method": "card", "amount_cents": 500, "reference": "AUTH"}])
        assert tender == Tender(method="card", amount_cents=500, reference="AUTH")


class TestVoidAndRepay:
    """Void a payment, then collect again."""

    def test_void_returns_order_to_pending(self, db_session, card_order):
        payment_id = card_order.payments[0].id

        order = payment_service.void_payment(payment_id, actor_id=MANAGER_ID, reason="Card declined")

        assert order.payment_status == "pending"
        assert order.payments == []
        assert "Payment voided: Card declined" in order.notes

    def test_void_requires_reason(self, db_session, card_order):
        with pytest.raises(ValidationError):
            payment_service.void_payment(card_order.payments[0].id, actor_id=MANAGER_ID, reason="  ")

    def test_void_unknown_payment(self, db_session):
        with pytest.raises(NotFoundError):
            payment_service.void_payment(424242, actor_id=MANAGER_ID, reason="typo")

    def test_partial_then_cash_with_change(self, db_session, card_order):
        payment_service.void_payment(card_order.payments[0].id, actor_id=MANAGER_ID, reason="Wrong card")

        payment_service.record_payment(card_order.id, "card", 1000, actor_id=CASHIER_ID)
        assert order_service.get_order(card_order.id).payment_status == "partial"

        cash = payment_service.record_payment(card_order.id, "cash", 1500, actor_id=CASHIER_ID)

        assert cash.change_cents == 300
        order = order_service.get_order(card_order.id)
        assert order.payment_status == "paid"
        assert order.amount_paid_cents == 2200

    def test_non_cash_overpayment(self, db_session, card_order):
        payment_service.void_payment(card_order.payments[0].id, actor_id=MANAGER_ID, reason="Wrong card")

        with pytest.raises(PaymentError) as exc_info:
            payment_service.record_payment(card_order.id, "card", 2300, actor_id=CASHIER_ID)

        assert exc_info.value.code == "OVERPAYMENT"
        assert exc_info.value.details["remaining_cents"] == 2200

    def test_already_paid(self, db_session, card_order):
        with pytest.raises(PaymentError) as exc_info:
            payment_service.record_payment(card_order.id, "cash", 100, actor_id=CASHIER_ID)
        assert exc_info.value.code == "ALREADY_PAID"

    def test_cancelled_order_takes_no_payments(self, db_session, card_order):
        order_service.cancel_order(card_order.id, actor_id=MANAGER_ID, reason="Customer left")

        with pytest.raises(PaymentError) as exc_info:
            payment_service.record_payment(card_order.id, "cash", 100, actor_id=CASHIER_ID)
        assert exc_info.value.code == "ORDER_CLOSED"

    def test_voided_cash_is_taken_out_of_drawer(self, db_session, taxed_item):
        session = drawer_service.open_session(CASHIER_ID, 0)
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=1)])
        order = checkout_service.process_checkout(
            cart, [Tender(method="cash", amount_cents=1100)], cashier_id=CASHIER_ID
        )

        payment_service.void_payment(order.payments[0].id, actor_id=CASHIER_ID, reason="Rang up twice")

        assert drawer_service.compute_expected_balance(session) == 0


class TestPaymentSummary:
    def test_summary_breaks_down_by_method(self, db_session, taxed_item):
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=2)])
        order = checkout_service.process_checkout(
            cart,
            [Tender(method="card", amount_cents=1000), Tender(method="cash", amount_cents=2000)],
            cashier_id=CASHIER_ID,
        )

        summary = payment_service.payment_summary(order.id)

        assert summary["total_cents"] == 2200
        assert summary["tendered_cents"] == 3000
        assert summary["paid_cents"] == 2200
        assert summary["change_cents"] == 800
        assert summary["remaining_cents"] == 0
        assert summary["payment_count"] == 2
        assert summary["by_method"] == {"card": 1000, "cash": 1200}
