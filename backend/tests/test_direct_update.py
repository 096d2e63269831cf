# Overview: Pytest coverage for manual quantity corrections.

import pytest

from stallstock.errors import (
    InconsistentPropagationError,
    InvalidScopeError,
    NotFoundError,
    ValidationError,
)
from stallstock.models import movements as mt
from stallstock.services import stock_service, movement_service


class TestDirectUpdate:
    def test_master_update(self, db_session, actor, master_item, quantity_of):
        result = stock_service.direct_update(master_item.id, 90, actor, notes="spoilage")

        assert quantity_of(master_item.id) == 90
        (mv,) = result.movements
        assert mv.movement_type == mt.DIRECT_MASTER_UPDATE
        assert (mv.quantity_before, mv.quantity_after, mv.quantity_change) == (100, 90, -10)
        assert "spoilage" in mv.notes

    def test_linked_decrease_propagates_to_master(self, db_session, actor, master_item, stall_a, quantity_of):
        stall_item = stock_service.allocate(master_item.id, stall_a.id, 30, actor).items[1]

        result = stock_service.direct_update(stall_item.id, 25, actor)

        assert quantity_of(stall_item.id) == 25
        assert quantity_of(master_item.id) == 65
        stall_mv, master_mv = result.movements
        assert stall_mv.movement_type == mt.DIRECT_STALL_UPDATE
        assert master_mv.movement_type == mt.DIRECT_MASTER_UPDATE
        assert (master_mv.quantity_before, master_mv.quantity_after) == (70, 65)
        assert master_mv.linked_stock_item_id == stall_item.id
        assert stall_mv.correlation_id == master_mv.correlation_id

    def test_linked_increase_propagates_to_master(self, db_session, actor, master_item, stall_a, quantity_of):
        stall_item = stock_service.allocate(master_item.id, stall_a.id, 30, actor).items[1]

        stock_service.direct_update(stall_item.id, 40, actor)

        assert quantity_of(stall_item.id) == 40
        assert quantity_of(master_item.id) == 80

    def test_master_cannot_absorb_change(self, db_session, actor, master_item, stall_a, quantity_of):
        stall_item = stock_service.allocate(master_item.id, stall_a.id, 100, actor).items[1]

        with pytest.raises(InconsistentPropagationError) as exc:
            stock_service.direct_update(stall_item.id, 50, actor)

        assert exc.value.details["master_quantity"] == 0
        assert exc.value.details["delta"] == -50
        assert quantity_of(stall_item.id) == 100
        assert quantity_of(master_item.id) == 0
        assert movement_service.list_movements(movement_type=mt.DIRECT_STALL_UPDATE) == []

    def test_unlinked_stall_update_touches_only_itself(self, db_session, actor, site, stall_a, quantity_of):
        direct = stock_service.create_stall_item(
            site.id, stall_a.id, actor, name="Napkins", category="Supplies", quantity=50
        ).items[0]

        result = stock_service.direct_update(direct.id, 45, actor)

        assert quantity_of(direct.id) == 45
        assert [m.movement_type for m in result.movements] == [mt.DIRECT_STALL_UPDATE]

    def test_same_quantity_is_rejected(self, db_session, actor, master_item):
        with pytest.raises(ValidationError):
            stock_service.direct_update(master_item.id, 100, actor)

    @pytest.mark.parametrize("value", [-1, "ten", 2.5])
    def test_invalid_quantity(self, db_session, actor, master_item, value):
        with pytest.raises(ValidationError):
            stock_service.direct_update(master_item.id, value, actor)

    def test_missing_record(self, db_session, actor):
        with pytest.raises(NotFoundError):
            stock_service.direct_update(99999, 1, actor)


class TestItemDetails:
    def test_create_master_logs_creation(self, db_session, actor, site):
        result = stock_service.create_master_item(site.id, actor, name="Tea", category="Drinks", quantity=12)

        (mv,) = result.movements
        assert mv.movement_type == mt.CREATE_MASTER
        assert (mv.quantity_before, mv.quantity_after) == (0, 12)
        assert result.items[0].is_master

    def test_create_stall_item_logs_direct_creation(self, db_session, actor, site, stall_a):
        result = stock_service.create_stall_item(
            site.id, stall_a.id, actor, name="Cups", category="Supplies", quantity=3
        )
        assert result.movements[0].movement_type == mt.CREATE_STALL_DIRECT
        assert result.items[0].original_master_item_id is None

    def test_create_requires_name_and_category(self, db_session, actor, site):
        with pytest.raises(ValidationError):
            stock_service.create_master_item(site.id, actor, name="Tea")

    def test_stall_must_belong_to_site(self, db_session, actor, site, other_stall):
        with pytest.raises(InvalidScopeError):
            stock_service.create_stall_item(site.id, other_stall.id, actor, name="Cups", category="Supplies")

    def test_update_details_writes_no_movement(self, db_session, actor, master_item):
        item = stock_service.update_item_details(master_item.id, {"price_cents": 300, "name": " Basmati "}, actor)

        assert item.price_cents == 300
        assert item.name == "Basmati"
        assert movement_service.list_movements(stock_item_id=master_item.id, limit=10)[0].movement_type == mt.CREATE_MASTER

    def test_update_details_rejects_quantity(self, db_session, actor, master_item):
        with pytest.raises(ValidationError):
            stock_service.update_item_details(master_item.id, {"quantity": 5}, actor)
