# Overview: Pytest coverage for sale processing and sale deletion.

"""
Sale Processing Tests

Verifies:
1. A sale deducts every line from the stall and linked lines from the master too
2. Movements carry the sale id and share the sale's correlation id
3. Any failing line rejects the whole cart with nothing persisted
4. Price mismatch policies (server_wins / reject)
5. Soft deletion: justification required, terminal, excluded from summaries
"""

import pytest

from stallstock.errors import (
    InsufficientStockError,
    InvalidScopeError,
    PriceMismatchError,
    SaleStateError,
    ValidationError,
)
from stallstock.models import SaleTransaction, SaleDeleted, SaleActive, StockMovement
from stallstock.models import movements as mt
from stallstock.services import stock_service, sales_service
from stallstock.services.sales_service import SaleLineRequest


@pytest.fixture
def stall_rice(db_session, actor, master_item, stall_a):
    """30 units of Rice (250 cents) allocated to stall A."""
    return stock_service.allocate(master_item.id, stall_a.id, 30, actor).items[1]


@pytest.fixture
def stall_napkins(db_session, actor, site, stall_a):
    """Unlinked stall record at stall A."""
    return stock_service.create_stall_item(
        site.id, stall_a.id, actor, name="Napkins", category="Supplies", quantity=50, price_cents=10
    ).items[0]


class TestRecordSale:
    def test_linked_sale_deducts_stall_and_master(
        self, db_session, actor, site, stall_a, master_item, stall_rice, quantity_of
    ):
        result = sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 3)], actor)
        sale = result.sale

        assert quantity_of(stall_rice.id) == 27
        assert quantity_of(master_item.id) == 67
        assert sale.total_amount_cents == 750
        assert sale.staff_id == "staff-1"
        assert isinstance(sale.state, SaleActive)

        stall_mv, master_mv = result.movements
        assert stall_mv.movement_type == mt.SALE_FROM_STALL
        assert stall_mv.notes == f"Sale ID: {sale.id}"
        assert master_mv.movement_type == mt.SALE_AFFECTS_MASTER
        assert master_mv.notes == (
            f"Linked to sale of stall item Rice (ID: {stall_rice.id}), Sale ID: {sale.id}"
        )
        assert {m.sale_id for m in result.movements} == {sale.id}
        assert {m.correlation_id for m in result.movements} == {sale.correlation_id}

    def test_unlinked_line_touches_only_stall(self, db_session, actor, site, stall_a, stall_napkins, quantity_of):
        result = sales_service.record_sale(
            site.id, stall_a.id, [{"item_id": stall_napkins.id, "quantity": 5}], actor
        )

        assert quantity_of(stall_napkins.id) == 45
        assert [m.movement_type for m in result.movements] == [mt.SALE_FROM_STALL]

    def test_mixed_cart_line_snapshots(self, db_session, actor, site, stall_a, stall_rice, stall_napkins):
        sale = sales_service.record_sale(
            site.id,
            stall_a.id,
            [SaleLineRequest(stall_rice.id, 2), SaleLineRequest(stall_napkins.id, 10)],
            actor,
        ).sale

        lines = [line.to_dict() for line in sale.lines]
        assert [(l["name"], l["quantity"], l["unit_price_cents"], l["line_total_cents"]) for l in lines] == [
            ("Rice", 2, 250, 500),
            ("Napkins", 10, 10, 100),
        ]
        assert sale.total_amount_cents == 600

    def test_repeated_lines_are_checked_together(
        self, db_session, actor, site, stall_a, master_item, stall_rice, quantity_of
    ):
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.record_sale(
                site.id,
                stall_a.id,
                [SaleLineRequest(stall_rice.id, 20), SaleLineRequest(stall_rice.id, 20)],
                actor,
            )

        assert exc.value.details["items"][0]["requested_quantity"] == 40
        assert quantity_of(stall_rice.id) == 30
        assert quantity_of(master_item.id) == 70
        assert db_session.query(SaleTransaction).count() == 0

    def test_master_shortfall_rejects_sale(
        self, db_session, actor, site, stall_a, master_item, stall_rice, quantity_of
    ):
        stock_service.direct_update(master_item.id, 2, actor)
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError):
            sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 5)], actor)

        assert quantity_of(stall_rice.id) == 30
        assert quantity_of(master_item.id) == 2
        assert db_session.query(StockMovement).count() == movements_before

    def test_empty_cart(self, db_session, actor, site, stall_a):
        with pytest.raises(ValidationError):
            sales_service.record_sale(site.id, stall_a.id, [], actor)

    def test_item_from_other_stall(self, db_session, actor, site, stall_b, stall_rice):
        with pytest.raises(InvalidScopeError):
            sales_service.record_sale(site.id, stall_b.id, [SaleLineRequest(stall_rice.id, 1)], actor)

    def test_stall_outside_site(self, db_session, actor, other_site, stall_a, stall_rice):
        with pytest.raises(InvalidScopeError):
            sales_service.record_sale(other_site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor)

    def test_master_record_cannot_be_sold(self, db_session, actor, site, stall_a, master_item):
        with pytest.raises(InvalidScopeError):
            sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(master_item.id, 1)], actor)

    def test_replay_with_same_correlation_id(self, db_session, actor, site, stall_a, stall_rice, quantity_of):
        first = sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor, correlation_id="till-7-0042"
        )
        second = sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor, correlation_id="till-7-0042"
        )

        assert second.replayed is True
        assert second.sale.id == first.sale.id
        assert quantity_of(stall_rice.id) == 29

    def test_replay_with_different_cart_is_rejected(self, db_session, actor, site, stall_a, stall_rice, quantity_of):
        sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor, correlation_id="till-7-0043"
        )

        with pytest.raises(ValidationError):
            sales_service.record_sale(
                site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 3)], actor, correlation_id="till-7-0043"
            )

        assert quantity_of(stall_rice.id) == 29

    def test_correlation_id_of_stock_operation_is_rejected(
        self, db_session, actor, site, stall_a, master_item, stall_rice, quantity_of
    ):
        stock_service.direct_update(master_item.id, 60, actor, correlation_id="shared-1")

        with pytest.raises(ValidationError):
            sales_service.record_sale(
                site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 2)], actor, correlation_id="shared-1"
            )

        assert quantity_of(stall_rice.id) == 30
        assert db_session.query(SaleTransaction).count() == 0
        assert {m.movement_type for m in db_session.query(StockMovement).filter_by(correlation_id="shared-1")} == {
            mt.DIRECT_MASTER_UPDATE
        }

    @pytest.mark.parametrize("line", [5, "rice", None, [1, 2]])
    def test_non_object_line(self, db_session, actor, site, stall_a, stall_rice, line):
        with pytest.raises(ValidationError, match="Sale line must be an object"):
            sales_service.record_sale(site.id, stall_a.id, [line], actor)


class TestPricePolicy:
    def test_server_price_wins_by_default(self, db_session, actor, site, stall_a, stall_rice):
        sale = sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 2, client_unit_price_cents=100)], actor
        ).sale

        assert sale.lines[0].unit_price_cents == 250
        assert sale.total_amount_cents == 500

    def test_reject_policy(self, db_session, app, monkeypatch, actor, site, stall_a, stall_rice, quantity_of):
        monkeypatch.setitem(app.config, "SALE_PRICE_MISMATCH_POLICY", "reject")

        with pytest.raises(PriceMismatchError) as exc:
            sales_service.record_sale(
                site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 2, client_unit_price_cents=100)], actor
            )

        assert exc.value.details["items"][0]["unit_price_cents"] == 250
        assert quantity_of(stall_rice.id) == 30

    def test_matching_price_passes_reject_policy(self, db_session, app, monkeypatch, actor, site, stall_a, stall_rice):
        monkeypatch.setitem(app.config, "SALE_PRICE_MISMATCH_POLICY", "reject")

        result = sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1, client_unit_price_cents=250)], actor
        )
        assert result.sale.total_amount_cents == 250


class TestDeleteSale:
    def test_soft_delete(self, db_session, actor, site, stall_a, master_item, stall_rice, quantity_of):
        sale_id = sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 3)], actor).sale.id

        sale = sales_service.delete_sale(sale_id, actor, "Rung up twice")

        assert isinstance(sale.state, SaleDeleted)
        assert sale.state.justification == "Rung up twice"
        assert sale.state.actor_id == "staff-1"
        assert quantity_of(stall_rice.id) == 27
        assert quantity_of(master_item.id) == 67

    def test_justification_required(self, db_session, actor, site, stall_a, stall_rice):
        sale_id = sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor).sale.id

        with pytest.raises(ValidationError):
            sales_service.delete_sale(sale_id, actor, "   ")
        assert not sales_service.get_sale(sale_id).is_deleted

    def test_second_delete_is_rejected(self, db_session, actor, site, stall_a, stall_rice):
        sale_id = sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1)], actor).sale.id
        sales_service.delete_sale(sale_id, actor, "Customer walked away")

        with pytest.raises(SaleStateError):
            sales_service.delete_sale(sale_id, actor, "Again")


class TestSalesSummary:
    def test_deleted_sales_are_excluded(self, db_session, actor, site, stall_a, stall_rice, stall_napkins):
        sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 2)], actor)
        sales_service.record_sale(
            site.id, stall_a.id, [SaleLineRequest(stall_rice.id, 1), SaleLineRequest(stall_napkins.id, 5)], actor
        )
        voided = sales_service.record_sale(site.id, stall_a.id, [SaleLineRequest(stall_napkins.id, 20)], actor)
        sales_service.delete_sale(voided.sale.id, actor, "Test entry")

        summary = sales_service.sales_summary(site_id=site.id, stall_id=stall_a.id)

        assert summary["sale_count"] == 2
        assert summary["total_amount_cents"] == 500 + 250 + 50
        assert summary["items"] == [
            {"item_id": stall_rice.id, "name": "Rice", "quantity": 3, "amount_cents": 750},
            {"item_id": stall_napkins.id, "name": "Napkins", "quantity": 5, "amount_cents": 50},
        ]

        assert len(sales_service.list_sales(site_id=site.id)) == 2
        assert len(sales_service.list_sales(site_id=site.id, include_deleted=True)) == 3
