# Overview: Pytest coverage for cash-drawer sessions and the cash movement log.

import pytest

from poscore.models import CashMovement, ImmutableRowError
from poscore.services import checkout_service, drawer_service, refund_service
from poscore.services.cart_service import Cart, CartLine
from poscore.services.drawer_service import DrawerError
from poscore.services.payment_service import Tender
from poscore.validation import ValidationError

from conftest import CASHIER_ID, OTHER_CASHIER_ID


class TestDrawerLifecycle:
    """Open, trade, close."""

    def test_shift_reconciles_sales_and_refunds(self, db_session, taxed_item):
        session = drawer_service.open_session(CASHIER_ID, 5000)
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=2)])
        order = checkout_service.process_checkout(
            cart, [Tender(method="cash", amount_cents=2500)], cashier_id=CASHIER_ID
        )
        refund_service.partial_refund(order.id, 500, reason="Price match", method="cash", actor_id=CASHIER_ID)

        result = drawer_service.close_session(session.id, 6600)

        assert result["expected"] == 6700
        assert result["actual"] == 6600
        assert result["difference"] == -100
        assert result["session"].status == "closed"

        summary = drawer_service.session_summary(session.id)
        assert summary["totals"]["sale"] == 2200
        assert summary["totals"]["refund"] == 500
        assert summary["has_discrepancy"] is True
        assert summary["is_short"] is True
        assert summary["is_over"] is False

    def test_one_open_session_per_cashier(self, db_session):
        drawer_service.open_session(CASHIER_ID, 1000)

        with pytest.raises(DrawerError) as exc_info:
            drawer_service.open_session(CASHIER_ID, 2000)

        assert exc_info.value.code == "DRAWER_ALREADY_OPEN"
        assert drawer_service.open_session(OTHER_CASHIER_ID, 2000).cashier_id == OTHER_CASHIER_ID

    def test_closing_twice_fails(self, db_session):
        session = drawer_service.open_session(CASHIER_ID, 1000)
        drawer_service.close_session(session.id, 1000)

        with pytest.raises(DrawerError) as exc_info:
            drawer_service.close_session(session.id, 1000)

        assert exc_info.value.code == "DRAWER_NOT_OPEN"

    def test_close_cashier_session_without_one(self, db_session):
        with pytest.raises(DrawerError) as exc_info:
            drawer_service.close_cashier_session(CASHIER_ID, 0)
        assert exc_info.value.code == "DRAWER_NOT_OPEN"

    def test_reopen_after_close(self, db_session):
        first = drawer_service.open_session(CASHIER_ID, 1000)
        drawer_service.close_cashier_session(CASHIER_ID, 1000)

        second = drawer_service.open_session(CASHIER_ID, 500)

        assert second.id != first.id
        assert [s.id for s in drawer_service.list_sessions(cashier_id=CASHIER_ID)] == [second.id, first.id]

    def test_negative_opening_balance(self, db_session):
        with pytest.raises(ValidationError):
            drawer_service.open_session(CASHIER_ID, -1)


class TestCashMovements:
    """Manual movements and the signed log."""

    def test_deposits_and_withdrawals(self, db_session):
        session = drawer_service.open_session(CASHIER_ID, 1000)

        drawer_service.add_movement(CASHIER_ID, "deposit", 2000, reason="Float top-up")
        withdrawal = drawer_service.add_movement(CASHIER_ID, "withdrawal", 500, reason="Bank drop")

        assert withdrawal.amount_cents == -500
        assert drawer_service.compute_expected_balance(session) == 2500

        result = drawer_service.close_session(session.id, 2500)
        assert result["difference"] == 0
        assert drawer_service.session_summary(session.id)["has_discrepancy"] is False

    def test_manual_movement_needs_open_session(self, db_session):
        with pytest.raises(DrawerError) as exc_info:
            drawer_service.add_movement(CASHIER_ID, "deposit", 100, reason="Float")
        assert exc_info.value.code == "DRAWER_NOT_OPEN"

    @pytest.mark.parametrize("movement_type,amount,reason", [
        ("sale", 100, "Sneaky"),
        ("deposit", 0, "Zero"),
        ("deposit", 100, " "),
    ])
    def test_manual_movement_validation(self, db_session, movement_type, amount, reason):
        drawer_service.open_session(CASHIER_ID, 0)
        with pytest.raises(ValidationError):
            drawer_service.add_movement(CASHIER_ID, movement_type, amount, reason=reason)

    def test_sale_without_open_drawer_records_nothing(self, db_session, taxed_item):
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=1)])
        checkout_service.process_checkout(cart, [Tender(method="cash", amount_cents=1100)], cashier_id=CASHIER_ID)

        assert db_session.query(CashMovement).count() == 0

    def test_card_sale_does_not_touch_drawer(self, db_session, taxed_item):
        session = drawer_service.open_session(CASHIER_ID, 1000)
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=1)])
        checkout_service.process_checkout(cart, [Tender(method="card", amount_cents=1100)], cashier_id=CASHIER_ID)

        assert drawer_service.compute_expected_balance(session) == 1000

    def test_movements_are_append_only(self, db_session):
        drawer_service.open_session(CASHIER_ID, 0)
        movement = drawer_service.add_movement(CASHIER_ID, "deposit", 100, reason="Float")

        movement.amount_cents = 100_000
        with pytest.raises(ImmutableRowError):
            db_session.commit()
        db_session.rollback()
