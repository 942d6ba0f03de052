# Overview: Pytest coverage for order lookups, cancellation and the outbound sync queue.

import pytest

from poscore.models import SyncQueueEntry
from poscore.services import checkout_service, inventory_service, order_service, sync_service
from poscore.services.cart_service import Cart, CartLine
from poscore.services.order_service import OrderError
from poscore.services.payment_service import Tender
from poscore.services.sync_service import SyncError
from poscore.validation import NotFoundError, ValidationError

from conftest import CASHIER_ID, MANAGER_ID, OTHER_CASHIER_ID


@pytest.fixture
def order(db_session, taxed_item):
    cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=2)])
    return checkout_service.process_checkout(cart, [Tender(method="card", amount_cents=2200)], cashier_id=CASHIER_ID)


class TestOrderLookups:
    def test_by_id_and_number(self, db_session, order):
        assert order_service.get_order(order.id).id == order.id
        assert order_service.get_order_by_number(order.order_number).id == order.id

    def test_missing_number(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            order_service.get_order_by_number("POS-19990101-0001")
        assert exc_info.value.code == "ORDER_NOT_FOUND"

    def test_list_filters(self, db_session, taxed_item, order):
        cart = Cart(lines=[CartLine(item_id=taxed_item.id, quantity=1)])
        checkout_service.process_checkout(cart, [Tender(method="cash", amount_cents=1100)], cashier_id=OTHER_CASHIER_ID)

        assert [o.id for o in order_service.list_orders(cashier_id=CASHIER_ID)] == [order.id]
        assert len(order_service.list_orders(status="completed")) == 2

    def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            order_service.list_orders(status="lost")


class TestCancel:
    def test_cancel_restores_stock_and_notes_reason(self, db_session, taxed_item, order):
        cancelled = order_service.cancel_order(order.id, actor_id=MANAGER_ID, reason="Customer changed mind")

        assert cancelled.status == "cancelled"
        assert "Order cancelled: Customer changed mind" in cancelled.notes
        assert inventory_service.get_record(taxed_item.id).on_hand_quantity == 10
        actions = [e.action for e in db_session.query(SyncQueueEntry).filter_by(aggregate_id=order.id)]
        assert actions == ["create", "update"]

    def test_cancel_twice(self, db_session, order):
        order_service.cancel_order(order.id, actor_id=MANAGER_ID)

        with pytest.raises(OrderError) as exc_info:
            order_service.cancel_order(order.id, actor_id=MANAGER_ID)

        assert exc_info.value.code == "NOT_CANCELLABLE"


class TestSyncQueue:
    """Drain bookkeeping for the outbound queue."""

    def test_checkout_enqueues_create(self, db_session, order):
        [entry] = sync_service.pending_entries()

        assert (entry.aggregate_type, entry.aggregate_id, entry.action) == ("order", order.id, "create")

    def test_mark_completed_flags_order(self, db_session, order):
        [entry] = sync_service.pending_entries()

        sync_service.mark_completed(entry.id)

        assert order_service.get_order(order.id).is_synced is True
        assert sync_service.pending_entries() == []
        assert sync_service.sync_stats()["last_completed_at"] is not None

        with pytest.raises(SyncError) as exc_info:
            sync_service.mark_completed(entry.id)
        assert exc_info.value.code == "ALREADY_COMPLETED"

    def test_failed_entries_requeue_until_attempt_limit(self, db_session, order):
        [entry] = sync_service.pending_entries()

        sync_service.mark_failed(entry.id, "HQ unreachable")
        assert sync_service.sync_stats()["failed"] == 1
        assert sync_service.requeue_failed(max_attempts=5) == 1
        assert sync_service.get_entry(entry.id).status == "pending"

        sync_service.mark_failed(entry.id, "HQ unreachable")
        assert sync_service.requeue_failed(max_attempts=2) == 0
        assert sync_service.get_entry(entry.id).last_error == "HQ unreachable"

    def test_unknown_action(self, db_session):
        with pytest.raises(ValidationError):
            sync_service.enqueue("order", 1, "delete")
