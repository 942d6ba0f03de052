# Overview: Pytest coverage for the inventory ledger.

"""
Inventory Ledger Tests

Covers soft holds, hard consumption, manual corrections and the
append-only movement log.
"""

import pytest

from poscore.models import ImmutableRowError, InventoryRecord, StockMovement, StockReservation
from poscore.services import inventory_service
from poscore.services.inventory_service import InsufficientStockError, InventoryError
from poscore.validation import ValidationError


class TestReservations:
    """reserve/release move soft holds only."""

    def test_reserve_reduces_available_not_on_hand(self, db_session, make_item):
        item = make_item(stock=5)

        record = inventory_service.reserve_stock(item.id, 2)

        assert record.on_hand_quantity == 5
        assert record.reserved_quantity == 2
        assert record.available_quantity == 3

    def test_reserve_beyond_available_raises_with_quantities(self, db_session, make_item):
        item = make_item(stock=3)
        inventory_service.reserve_stock(item.id, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.reserve_stock(item.id, 2)

        assert exc_info.value.code == "STOCK_UNAVAILABLE"
        assert exc_info.value.details == {"item_id": item.id, "requested": 2, "available": 1}
        assert inventory_service.get_record(item.id).reserved_quantity == 2

    def test_reserve_without_record_creates_it_lazily(self, db_session, make_item):
        item = make_item(stock=0)

        with pytest.raises(InsufficientStockError):
            inventory_service.reserve_stock(item.id, 1)

        assert inventory_service.get_available(item.id) == 0

    def test_double_release_never_goes_negative(self, db_session, make_item):
        item = make_item(stock=5)
        inventory_service.reserve_stock(item.id, 2)

        inventory_service.release_stock(item.id, 2)
        record = inventory_service.release_stock(item.id, 2)

        assert record.reserved_quantity == 0
        assert record.on_hand_quantity == 5

    def test_release_rejects_non_positive_quantity(self, db_session, make_item):
        item = make_item(stock=5)
        with pytest.raises(ValidationError):
            inventory_service.release_stock(item.id, 0)


class TestHolds:
    """A hold is a token-owned share of reserved_quantity."""

    def test_hold_grows_and_shrinks_reserved(self, db_session, make_item):
        item = make_item(stock=5)

        hold = inventory_service.hold_stock(item.id, 2)
        assert inventory_service.get_record(item.id).reserved_quantity == 2

        resized = inventory_service.hold_stock(item.id, 4, token=hold.token)
        assert resized.token == hold.token
        assert inventory_service.get_record(item.id).reserved_quantity == 4

        inventory_service.hold_stock(item.id, 1, token=hold.token)
        assert inventory_service.get_record(item.id).reserved_quantity == 1
        assert inventory_service.held_quantity(hold.token, item.id) == 1

    def test_hold_cannot_exceed_free_stock(self, db_session, make_item):
        item = make_item(stock=3)
        inventory_service.hold_stock(item.id, 2)

        with pytest.raises(InsufficientStockError):
            inventory_service.hold_stock(item.id, 2)

        assert db_session.query(StockReservation).count() == 1

    def test_release_hold_returns_units_once(self, db_session, make_item):
        item = make_item(stock=3)
        hold = inventory_service.hold_stock(item.id, 3)

        assert inventory_service.release_hold(item.id, hold.token) == 3
        assert inventory_service.release_hold(item.id, hold.token) == 0
        assert inventory_service.get_available(item.id) == 3

    def test_unknown_token_holds_nothing(self, db_session, make_item):
        item = make_item(stock=3)

        assert inventory_service.held_quantity("not-a-token", item.id) == 0
        assert inventory_service.held_quantity(None, item.id) == 0


class TestConsumption:
    """consume is the hard decrement at sale commit."""

    def test_consume_decrements_and_draws_down_reservation(self, db_session, make_item):
        item = make_item(stock=5)
        hold = inventory_service.hold_stock(item.id, 2)

        movement = inventory_service.consume_stock(
            item.id, 3, reference_type="order", reference_id=7, hold_token=hold.token
        )

        record = inventory_service.get_record(item.id)
        assert record.on_hand_quantity == 2
        assert record.reserved_quantity == 0
        assert movement.movement_type == "sale"
        assert movement.quantity_delta == -3
        assert movement.quantity_after == 2
        assert movement.reference_type == "order"
        assert movement.reference_id == 7

    def test_consume_cannot_take_units_held_for_another_cart(self, db_session, make_item):
        item = make_item(stock=2)
        hold = inventory_service.hold_stock(item.id, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.consume_stock(item.id, 1)

        assert exc_info.value.available == 0
        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (2, 2)

        inventory_service.consume_stock(item.id, 2, hold_token=hold.token)

        record = inventory_service.get_record(item.id)
        assert (record.on_hand_quantity, record.reserved_quantity) == (0, 0)
        assert db_session.query(StockReservation).count() == 0

    def test_hold_token_for_another_item_is_ignored(self, db_session, make_item):
        held_item = make_item(stock=2)
        other = make_item(stock=2)
        hold = inventory_service.hold_stock(held_item.id, 2)
        inventory_service.hold_stock(other.id, 2)

        with pytest.raises(InsufficientStockError):
            inventory_service.consume_stock(other.id, 2, hold_token=hold.token)

    def test_consume_insufficient_leaves_record_unchanged(self, db_session, make_item):
        item = make_item(stock=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.consume_stock(item.id, 3)

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert inventory_service.get_record(item.id).on_hand_quantity == 2
        assert db_session.query(StockMovement).filter_by(item_id=item.id).count() == 1

    def test_restore_appends_return_movement(self, db_session, make_item):
        item = make_item(stock=2)

        movement = inventory_service.restore_stock(item.id, 3, reference_type="refund", reference_id=1)

        assert movement.movement_type == "return"
        assert inventory_service.get_record(item.id).on_hand_quantity == 5


class TestAdjustments:
    """Manual corrections and counts."""

    def test_adjust_rejects_zero_delta(self, db_session, make_item):
        item = make_item(stock=5)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(item.id, 0)

    def test_adjust_rejects_negative_result(self, db_session, make_item):
        item = make_item(stock=5)

        with pytest.raises(InventoryError) as exc_info:
            inventory_service.adjust_stock(item.id, -6)

        assert exc_info.value.code == "NEGATIVE_STOCK"
        assert inventory_service.get_record(item.id).on_hand_quantity == 5

    def test_count_writes_single_adjustment_for_difference(self, db_session, make_item):
        item = make_item(stock=10)

        record = inventory_service.count_stock(item.id, 7, actor_id=5)

        assert record.on_hand_quantity == 7
        assert record.last_counted_at is not None
        latest = inventory_service.list_movements(item.id, limit=1)[0]
        assert latest.movement_type == "adjustment"
        assert latest.quantity_delta == -3
        assert latest.actor_id == 5

    def test_count_matching_on_hand_writes_no_movement(self, db_session, make_item):
        item = make_item(stock=4)

        inventory_service.count_stock(item.id, 4)

        assert len(inventory_service.list_movements(item.id)) == 1

    def test_bulk_adjust_is_all_or_nothing(self, db_session, make_item):
        first = make_item(stock=5)
        second = make_item(stock=1)

        with pytest.raises(InventoryError):
            inventory_service.bulk_adjust([
                {"item_id": first.id, "quantity_delta": 3},
                {"item_id": second.id, "quantity_delta": -2},
            ])

        assert inventory_service.get_record(first.id).on_hand_quantity == 5
        assert inventory_service.get_record(second.id).on_hand_quantity == 1

    def test_bulk_adjust_applies_every_entry(self, db_session, make_item):
        first = make_item(stock=5)
        second = make_item(stock=1)

        movements = inventory_service.bulk_adjust([
            {"item_id": first.id, "quantity_delta": 3, "notes": "Delivery"},
            {"item_id": second.id, "quantity_delta": -1},
        ])

        assert len(movements) == 2
        assert inventory_service.get_record(first.id).on_hand_quantity == 8
        assert inventory_service.get_record(second.id).on_hand_quantity == 0


class TestLedgerReads:
    """Derived reads and the movement log."""

    def test_ledger_sum_matches_on_hand(self, db_session, make_item):
        item = make_item(stock=10)
        inventory_service.consume_stock(item.id, 4)
        inventory_service.restore_stock(item.id, 1)
        inventory_service.adjust_stock(item.id, -2)

        assert inventory_service.ledger_quantity(item.id) == 5
        assert inventory_service.get_record(item.id).on_hand_quantity == 5

    def test_low_stock_is_inclusive_of_threshold(self, db_session, make_item):
        low = make_item(stock=3, threshold=3)
        healthy = make_item(stock=20, threshold=3)

        ids = [record.item_id for record in inventory_service.list_low_stock()]

        assert low.id in ids
        assert healthy.id not in ids
        assert inventory_service.is_low_stock(low.id) is True
        assert inventory_service.is_low_stock(healthy.id) is False

    def test_in_stock_counts_reservations(self, db_session, make_item):
        item = make_item(stock=3)
        inventory_service.reserve_stock(item.id, 2)

        assert inventory_service.is_in_stock(item.id) is True
        assert inventory_service.is_in_stock(item.id, 2) is False

    def test_stock_status_for_item_without_record(self, db_session, make_item):
        item = make_item(stock=0)

        status = inventory_service.get_stock_status(item.id)

        assert status["on_hand_quantity"] == 0
        assert status["available_quantity"] == 0
        assert status["is_low_stock"] is True

    def test_movements_cannot_be_rewritten(self, db_session, make_item):
        item = make_item(stock=5)
        movement = db_session.query(StockMovement).filter_by(item_id=item.id).first()

        movement.quantity_delta = 500
        with pytest.raises(ImmutableRowError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(InventoryRecord).filter_by(item_id=item.id).first().on_hand_quantity == 5

    def test_movements_cannot_be_deleted(self, db_session, make_item):
        item = make_item(stock=5)
        movement = db_session.query(StockMovement).filter_by(item_id=item.id).first()

        db_session.delete(movement)
        with pytest.raises(ImmutableRowError):
            db_session.commit()
        db_session.rollback()
