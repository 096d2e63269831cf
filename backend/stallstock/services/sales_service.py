# Overview: Sale processing; converts a cart into one atomic stock deduction plus a sale record.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..actor import Actor
from ..errors import (
    NotFoundError,
    InsufficientStockError,
    InvalidScopeError,
    PriceMismatchError,
    SaleStateError,
    ValidationError,
)
from ..models import StockItem, StockMovement, SaleTransaction, SaleTransactionLine, Stall
from ..models.sales import SALE_STATUS_ACTIVE, SALE_STATUS_DELETED
from stallstock.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .movement_service import movements_for_correlation
from .stock_service import (
    _sell_from_stall_inner,
    check_correlation_id,
    correlation_conflict,
    new_correlation_id,
    resolve_link,
)
from ..validation import require_positive_quantity, coerce_int


PRICE_POLICIES = ("server_wins", "reject")


@dataclass(frozen=True)
class SaleLineRequest:
    item_id: int
    quantity: int
    client_unit_price_cents: int | None = None


@dataclass
class SaleResult:
    sale: SaleTransaction
    movements: list[StockMovement] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "replayed": self.replayed,
        }


def _price_policy() -> str:
    policy = current_app.config.get("SALE_PRICE_MISMATCH_POLICY", "server_wins")
    if policy not in PRICE_POLICIES:
        raise ValueError(f"Unknown SALE_PRICE_MISMATCH_POLICY {policy!r}")
    return policy


def _normalize_lines(lines) -> list[SaleLineRequest]:
    if not lines:
        raise ValidationError("Cannot record a sale with no items")

    normalized = []
    for line in lines:
        if isinstance(line, dict):
            try:
                line = SaleLineRequest(
                    item_id=line["item_id"],
                    quantity=line["quantity"],
                    client_unit_price_cents=line.get("unit_price_cents"),
                )
            except KeyError as exc:
                raise ValidationError(f"Sale line is missing {exc.args[0]}")
        elif not isinstance(line, SaleLineRequest):
            raise ValidationError("Sale line must be an object")
        client_price = line.client_unit_price_cents
        if client_price is not None:
            client_price = coerce_int(client_price, "unit_price_cents")
        normalized.append(
            SaleLineRequest(
                item_id=require_positive_quantity(line.item_id, "item_id"),
                quantity=require_positive_quantity(line.quantity),
                client_unit_price_cents=client_price,
            )
        )
    return normalized


def _validate_on_hand(items: dict[int, StockItem], masters: dict[int, StockItem], lines) -> None:
    """Check stall and linked master quantities against the whole cart at once."""
    item_totals: dict[int, int] = {}
    master_totals: dict[int, int] = {}
    for line in lines:
        item_totals[line.item_id] = item_totals.get(line.item_id, 0) + line.quantity
        master_id = items[line.item_id].original_master_item_id
        if master_id is not None:
            master_totals[master_id] = master_totals.get(master_id, 0) + line.quantity

    insufficient = []
    for item_id, qty in item_totals.items():
        item = items[item_id]
        if item.quantity < qty:
            insufficient.append({
                "item_id": item_id,
                "name": item.name,
                "requested_quantity": qty,
                "on_hand": item.quantity,
            })
    for master_id, qty in master_totals.items():
        master = masters[master_id]
        if master.quantity < qty:
            insufficient.append({
                "master_id": master_id,
                "name": master.name,
                "requested_quantity": qty,
                "on_hand": master.quantity,
            })

    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock to record sale",
            details={"items": insufficient},
        )


def _check_prices(items: dict[int, StockItem], lines) -> None:
    mismatches = []
    for line in lines:
        item = items[line.item_id]
        if line.client_unit_price_cents is not None and line.client_unit_price_cents != item.price_cents:
            mismatches.append({
                "item_id": item.id,
                "name": item.name,
                "client_unit_price_cents": line.client_unit_price_cents,
                "unit_price_cents": item.price_cents,
            })
    if not mismatches:
        return

    if _price_policy() == "reject":
        raise PriceMismatchError(
            "Item prices changed, please re-quote the sale",
            details={"items": mismatches},
        )
    current_app.logger.warning(
        "Sale price mismatch, using stored prices: %s",
        [(m["item_id"], m["client_unit_price_cents"], m["unit_price_cents"]) for m in mismatches],
    )


def record_sale(
    site_id: int,
    stall_id: int,
    lines,
    actor: Actor,
    *,
    correlation_id: str | None = None,
) -> SaleResult:
    """
    Record a sale at a stall: every line deducts its stall record, every linked
    line also deducts the master. All of it commits together or not at all.

    Unit prices always come from the stock record at commit time.
    """
    lines = _normalize_lines(lines)
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        existing = db.session.query(SaleTransaction).filter_by(correlation_id=correlation_id).first()
        if existing is not None:
            same_cart = sorted((ln.stock_item_id, ln.quantity) for ln in existing.lines) == sorted(
                (line.item_id, line.quantity) for line in lines
            )
            if existing.site_id != site_id or existing.stall_id != stall_id or not same_cart:
                raise correlation_conflict(correlation_id, "sale")
            return SaleResult(
                sale=existing,
                movements=movements_for_correlation(correlation_id),
                replayed=True,
            )
        if movements_for_correlation(correlation_id):
            raise correlation_conflict(correlation_id, "sale")

        stall = db.session.get(Stall, stall_id)
        if stall is None:
            raise NotFoundError(f"Stall {stall_id} not found", details={"stall_id": stall_id})
        if stall.site_id != site_id:
            raise InvalidScopeError(
                f"Stall {stall.name} does not belong to site {site_id}",
                details={"stall_id": stall.id, "site_id": site_id},
            )

        items: dict[int, StockItem] = {}
        masters: dict[int, StockItem] = {}
        for item_id in sorted({line.item_id for line in lines}):
            item = lock_for_update(db.session.query(StockItem).filter_by(id=item_id)).first()
            if item is None:
                raise NotFoundError(f"Stock item {item_id} not found", details={"item_id": item_id})
            if item.stall_id != stall.id:
                raise InvalidScopeError(
                    f"{item.name} is not stocked at stall {stall.name}",
                    details={"item_id": item.id, "item_stall_id": item.stall_id, "stall_id": stall.id},
                )
            items[item_id] = item
            if item.original_master_item_id is not None:
                _link, master = resolve_link(item)
                masters[master.id] = master

        _validate_on_hand(items, masters, lines)
        _check_prices(items, lines)

        sale = SaleTransaction(
            site_id=site_id,
            stall_id=stall.id,
            total_amount_cents=0,
            transaction_date=utcnow(),
            staff_id=actor.user_id,
            staff_name=actor.display_name,
            status=SALE_STATUS_ACTIVE,
            correlation_id=correlation_id,
        )
        db.session.add(sale)
        db.session.flush()  # sale.id is referenced by the movements

        movements: list[StockMovement] = []
        total = 0
        for position, line in enumerate(lines, start=1):
            item = items[line.item_id]
            unit_price = item.price_cents
            line_total = unit_price * line.quantity
            sale.lines.append(
                SaleTransactionLine(
                    position=position,
                    stock_item_id=item.id,
                    name=item.name,
                    quantity=line.quantity,
                    unit_price_cents=unit_price,
                    line_total_cents=line_total,
                )
            )
            movements.extend(
                _sell_from_stall_inner(
                    item,
                    line.quantity,
                    actor=actor,
                    correlation_id=correlation_id,
                    sale_id=sale.id,
                )
            )
            total += line_total

        sale.total_amount_cents = total
        db.session.flush()
        return SaleResult(sale=sale, movements=movements)

    result = run_in_transaction(_op)
    current_app.logger.info(
        "sale.recorded sale_id=%s stall_id=%s total_cents=%s correlation_id=%s replayed=%s",
        result.sale.id, stall_id, result.sale.total_amount_cents, correlation_id, result.replayed,
    )
    return result


def delete_sale(sale_id: int, actor: Actor, justification: str | None) -> SaleTransaction:
    """
    Soft-delete a sale (ACTIVE -> DELETED). Stock is not restored; the sale
    only drops out of totals and summaries.
    """
    reason = (justification or "").strip()
    if not reason:
        raise ValidationError("A justification is required to delete a sale")

    def _op():
        sale = lock_for_update(db.session.query(SaleTransaction).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        if sale.is_deleted:
            raise SaleStateError(
                f"Sale {sale_id} is already deleted",
                details={"sale_id": sale_id, "status": sale.status},
            )

        sale.status = SALE_STATUS_DELETED
        sale.deleted_by = actor.user_id
        sale.deleted_by_name = actor.display_name
        sale.deleted_at = utcnow()
        sale.deletion_justification = reason
        db.session.flush()
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("sale.deleted sale_id=%s user_id=%s", sale_id, actor.user_id)
    return sale


def get_sale(sale_id: int) -> SaleTransaction:
    sale = db.session.get(SaleTransaction, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _sales_query(site_id, stall_id, start, end, include_deleted):
    q = db.session.query(SaleTransaction)
    if site_id is not None:
        q = q.filter(SaleTransaction.site_id == site_id)
    if stall_id is not None:
        q = q.filter(SaleTransaction.stall_id == stall_id)
    if start is not None:
        q = q.filter(SaleTransaction.transaction_date >= start)
    if end is not None:
        q = q.filter(SaleTransaction.transaction_date <= end)
    if not include_deleted:
        q = q.filter(SaleTransaction.status == SALE_STATUS_ACTIVE)
    return q


def list_sales(
    site_id: int | None = None,
    stall_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    include_deleted: bool = False,
) -> list[SaleTransaction]:
    q = _sales_query(site_id, stall_id, start, end, include_deleted)
    return q.order_by(SaleTransaction.transaction_date.desc(), SaleTransaction.id.desc()).all()


def sales_summary(
    site_id: int | None = None,
    stall_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Totals over active sales only; deleted sales never count."""
    sales = _sales_query(site_id, stall_id, start, end, include_deleted=False).all()

    per_item: dict[int, dict] = {}
    total = 0
    for sale in sales:
        total += sale.total_amount_cents
        for line in sale.lines:
            row = per_item.setdefault(
                line.stock_item_id,
                {"item_id": line.stock_item_id, "name": line.name, "quantity": 0, "amount_cents": 0},
            )
            row["quantity"] += line.quantity
            row["amount_cents"] += line.line_total_cents

    return {
        "sale_count": len(sales),
        "total_amount_cents": total,
        "items": sorted(per_item.values(), key=lambda r: (-r["amount_cents"], r["item_id"])),
    }
