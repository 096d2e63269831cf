# Overview: Pytest coverage for allocating master stock to stalls.

"""
Allocation Tests

Verifies:
1. Allocate moves quantity from master to the stall record, creating it on first use
2. Repeated allocations grow the same stall record
3. Rejected allocations leave quantities and the movement log untouched
4. Scope rules: master source only, destination stall in the same site
5. A repeated correlation_id replays the committed result, and only for the same operation
"""

import pytest

from stallstock.errors import (
    InsufficientStockError,
    InvalidScopeError,
    NotFoundError,
    ValidationError,
)
from stallstock.models import StockItem, StockMovement
from stallstock.models import movements as mt
from stallstock.services import stock_service, movement_service


class TestAllocate:
    def test_creates_linked_stall_record(self, db_session, actor, master_item, stall_a, quantity_of):
        result = stock_service.allocate(master_item.id, stall_a.id, 30, actor)

        stall_item = result.items[1]
        assert stall_item.stall_id == stall_a.id
        assert stall_item.original_master_item_id == master_item.id
        assert stall_item.name == "Rice"
        assert stall_item.unit == "kg"
        assert stall_item.price_cents == 250
        assert stall_item.low_stock_threshold == 5

        assert quantity_of(master_item.id) == 70
        assert quantity_of(stall_item.id) == 30

    def test_writes_paired_movements(self, db_session, actor, master_item, stall_a):
        result = stock_service.allocate(master_item.id, stall_a.id, 30, actor)
        out_mv, in_mv = result.movements

        assert out_mv.movement_type == mt.ALLOCATE_TO_STALL
        assert (out_mv.quantity_before, out_mv.quantity_after, out_mv.quantity_change) == (100, 70, -30)
        assert out_mv.notes == "Allocated 30 unit(s) of Rice to stall: Front Counter"

        assert in_mv.movement_type == mt.RECEIVE_ALLOCATION
        assert (in_mv.quantity_before, in_mv.quantity_after, in_mv.quantity_change) == (0, 30, 30)
        assert in_mv.notes == "Received 30 unit(s) of Rice from master stock"
        assert in_mv.linked_stock_item_id == master_item.id
        assert in_mv.master_stock_item_id == master_item.id

        assert out_mv.correlation_id == in_mv.correlation_id == result.correlation_id
        assert out_mv.user_id == "staff-1"
        assert out_mv.user_name == "Alice"

    def test_repeated_allocation_grows_same_record(self, db_session, actor, master_item, stall_a, quantity_of):
        first = stock_service.allocate(master_item.id, stall_a.id, 10, actor)
        second = stock_service.allocate(master_item.id, stall_a.id, 15, actor)

        assert first.items[1].id == second.items[1].id
        assert quantity_of(first.items[1].id) == 25
        assert quantity_of(master_item.id) == 75
        assert db_session.query(StockItem).filter_by(stall_id=stall_a.id).count() == 1

    def test_notes_are_appended(self, db_session, actor, master_item, stall_a):
        result = stock_service.allocate(master_item.id, stall_a.id, 5, actor, notes="morning restock")
        assert result.movements[0].notes.endswith("morning restock")

    def test_whole_master_can_be_allocated(self, db_session, actor, master_item, stall_a, quantity_of):
        stock_service.allocate(master_item.id, stall_a.id, 100, actor)
        assert quantity_of(master_item.id) == 0


class TestAllocateRejections:
    def test_insufficient_master_stock(self, db_session, actor, master_item, stall_a, quantity_of):
        with pytest.raises(InsufficientStockError) as exc:
            stock_service.allocate(master_item.id, stall_a.id, 101, actor)

        assert exc.value.details["available"] == 100
        assert exc.value.details["requested"] == 101
        assert quantity_of(master_item.id) == 100
        assert db_session.query(StockItem).filter_by(stall_id=stall_a.id).count() == 0
        assert movement_service.list_movements(movement_type=mt.ALLOCATE_TO_STALL) == []

    @pytest.mark.parametrize("quantity", [0, -5, "abc", 1.5, True, "1e3"])
    def test_invalid_quantity(self, db_session, actor, master_item, stall_a, quantity):
        with pytest.raises(ValidationError):
            stock_service.allocate(master_item.id, stall_a.id, quantity, actor)

    def test_stall_in_other_site(self, db_session, actor, master_item, other_stall, quantity_of):
        with pytest.raises(InvalidScopeError):
            stock_service.allocate(master_item.id, other_stall.id, 10, actor)
        assert quantity_of(master_item.id) == 100

    def test_stall_record_is_not_an_allocation_source(self, db_session, actor, master_item, stall_a, stall_b):
        stall_item = stock_service.allocate(master_item.id, stall_a.id, 10, actor).items[1]

        with pytest.raises(InvalidScopeError):
            stock_service.allocate(stall_item.id, stall_b.id, 5, actor)

    def test_unknown_master(self, db_session, actor, stall_a):
        with pytest.raises(NotFoundError):
            stock_service.allocate(99999, stall_a.id, 1, actor)

    def test_unknown_stall(self, db_session, actor, master_item):
        with pytest.raises(NotFoundError):
            stock_service.allocate(master_item.id, 99999, 1, actor)


class TestAllocateReplay:
    def test_same_correlation_id_is_applied_once(self, db_session, actor, master_item, stall_a, quantity_of):
        first = stock_service.allocate(master_item.id, stall_a.id, 30, actor, correlation_id="alloc-1")
        second = stock_service.allocate(master_item.id, stall_a.id, 30, actor, correlation_id="alloc-1")

        assert first.replayed is False
        assert second.replayed is True
        assert quantity_of(master_item.id) == 70
        assert [m.id for m in second.movements] == [m.id for m in first.movements]
        assert db_session.query(StockMovement).filter_by(correlation_id="alloc-1").count() == 2

    def test_id_reused_by_other_operation_is_rejected(self, db_session, actor, master_item, stall_a, quantity_of):
        stall_item = stock_service.allocate(master_item.id, stall_a.id, 20, actor, correlation_id="req-1").items[1]

        with pytest.raises(ValidationError) as exc:
            stock_service.return_to_master(stall_item.id, 5, actor, correlation_id="req-1")

        assert exc.value.details == {"correlation_id": "req-1", "operation": "return"}
        assert quantity_of(master_item.id) == 80
        assert quantity_of(stall_item.id) == 20
        assert db_session.query(StockMovement).filter_by(correlation_id="req-1").count() == 2

    def test_id_reused_for_other_master_is_rejected(self, db_session, actor, site, master_item, stall_a, quantity_of):
        beans = stock_service.create_master_item(site.id, actor, name="Beans", category="Food", quantity=10).items[0]
        stock_service.allocate(master_item.id, stall_a.id, 20, actor, correlation_id="req-2")

        with pytest.raises(ValidationError):
            stock_service.allocate(beans.id, stall_a.id, 5, actor, correlation_id="req-2")

        assert quantity_of(beans.id) == 10

    @pytest.mark.parametrize("correlation_id", ["", "   ", "x" * 65, 42])
    def test_malformed_correlation_id(self, db_session, actor, master_item, stall_a, quantity_of, correlation_id):
        with pytest.raises(ValidationError):
            stock_service.allocate(master_item.id, stall_a.id, 5, actor, correlation_id=correlation_id)

        assert quantity_of(master_item.id) == 100
