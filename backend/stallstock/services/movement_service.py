# Overview: Append-only stock movement log; the only writer of StockMovement rows.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..actor import Actor
from ..errors import ValidationError
from ..models import StockMovement, MOVEMENT_TYPES
from stallstock.time_utils import utcnow
"""
Stock Movement Log Invariants (authoritative)

- Append-only: no updates or deletes of existing movements.
- Movements are written inside the same DB transaction as the quantity change
  they record, so an aborted operation leaves no movement behind.
- quantity_before + quantity_change == quantity_after for every entry.
- All entries of one logical operation share a correlation_id.
"""


def append_movement(
    *,
    stock_item_id: int,
    site_id: int,
    movement_type: str,
    quantity_before: int,
    quantity_after: int,
    actor: Actor,
    correlation_id: str,
    item_name: str | None = None,
    stall_id: int | None = None,
    linked_stock_item_id: int | None = None,
    master_stock_item_id: int | None = None,
    sale_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> StockMovement:
    """
    Append one movement entry.

    - No domain logic here.
    - quantity_change is derived, never passed in.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"Unknown movement type {movement_type!r}")
    if not correlation_id:
        raise ValueError("correlation_id is required for stock movements")

    movement = StockMovement(
        stock_item_id=stock_item_id,
        item_name=item_name,
        linked_stock_item_id=linked_stock_item_id,
        master_stock_item_id=master_stock_item_id,
        site_id=site_id,
        stall_id=stall_id,
        movement_type=movement_type,
        quantity_change=quantity_after - quantity_before,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        user_id=actor.user_id,
        user_name=actor.display_name,
        occurred_at=occurred_at or utcnow(),
        notes=notes,
        correlation_id=correlation_id,
        sale_id=sale_id,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def movements_for_correlation(correlation_id: str) -> list[StockMovement]:
    """All entries of one logical operation, in write order."""
    return (
        db.session.query(StockMovement)
        .filter_by(correlation_id=correlation_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def list_movements(
    *,
    site_id: int | None = None,
    stall_id: int | None = None,
    stock_item_id: int | None = None,
    master_stock_item_id: int | None = None,
    movement_type: str | None = None,
    correlation_id: str | None = None,
    sale_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    """Newest-first movement history with optional filters (time bounds inclusive)."""
    if limit is None:
        limit = current_app.config.get("MOVEMENT_LIST_LIMIT", 200)

    q = db.session.query(StockMovement)
    if site_id is not None:
        q = q.filter(StockMovement.site_id == site_id)
    if stall_id is not None:
        q = q.filter(StockMovement.stall_id == stall_id)
    if stock_item_id is not None:
        q = q.filter(StockMovement.stock_item_id == stock_item_id)
    if master_stock_item_id is not None:
        q = q.filter(StockMovement.master_stock_item_id == master_stock_item_id)
    if movement_type is not None:
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Unknown movement type {movement_type!r}")
        q = q.filter(StockMovement.movement_type == movement_type)
    if correlation_id is not None:
        q = q.filter(StockMovement.correlation_id == correlation_id)
    if sale_id is not None:
        q = q.filter(StockMovement.sale_id == sale_id)
    if since is not None:
        q = q.filter(StockMovement.occurred_at >= since)
    if until is not None:
        q = q.filter(StockMovement.occurred_at <= until)

    return q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).limit(limit).all()
