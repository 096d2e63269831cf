# Overview: Allocation engine; every quantity-moving operation on stock records.

# backend/stallstock/services/stock_service.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..actor import Actor
from ..errors import (
    StockError,
    NotFoundError,
    InsufficientStockError,
    InvalidScopeError,
    CrossSiteTransferRejectedError,
    UnlinkedItemError,
    InconsistentPropagationError,
    LinkedItemsExistError,
    ValidationError,
)
from ..models import StockItem, StockMovement, Stall, Site
from ..models import movements as mt
from ..validation import (
    enforce_rules_stock_item,
    require_positive_quantity,
    require_non_negative_quantity,
)
from stallstock.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .movement_service import append_movement, movements_for_correlation
"""
Stock Ledger Invariants (authoritative)

Scope:
- Master record: stall_id IS NULL. Stall record: stall_id set.
- A stall record's original_master_item_id, when set, must name a master
  record of the same site (checked through resolve_link on every read).

Quantities:
- Quantity is never negative; operations that would go below zero are rejected
  before commit, never clamped.
- Allocate / Return / Transfer conserve master + linked stall quantities.
- Sales and direct updates of a linked stall record propagate the same signed
  change to the master; if the master cannot absorb it the whole operation fails.

Atomicity:
- Each public operation is one run_in_transaction unit: re-read (locked) ->
  validate -> mutate -> append movements -> commit.
- One movement per affected record per operation, all sharing a correlation id.
- A caller-supplied correlation_id doubles as an idempotency key: if movements
  with that id already exist the committed result is returned, nothing reapplied.
  Reusing an id for a different operation or record is a ValidationError.
"""

DESCRIPTIVE_FIELDS = (
    "name",
    "category",
    "description",
    "unit",
    "price_cents",
    "cost_price_cents",
    "low_stock_threshold",
    "image_url",
)


@dataclass(frozen=True)
class StockLink:
    """Validated master <-> stall relation for one linked stall record."""
    master_id: int
    stall_item_id: int
    stall_id: int
    site_id: int


@dataclass
class StockOperationResult:
    correlation_id: str
    items: list[StockItem]
    movements: list[StockMovement]
    deleted_item_ids: list[int] = field(default_factory=list)
    replayed: bool = False

    def item(self, item_id: int) -> StockItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "correlation_id": self.correlation_id,
            "replayed": self.replayed,
            "items": [item.to_dict() for item in self.items],
            "deleted_item_ids": list(self.deleted_item_ids),
            "movements": [m.to_dict() for m in self.movements],
        }


@dataclass
class BatchResult:
    """Per-row outcome of a batch; failures only appear in best-effort mode."""
    atomic: bool
    succeeded: list[int] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    correlation_ids: list[str] = field(default_factory=list)
    movements: list[StockMovement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "atomic": self.atomic,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "correlation_ids": list(self.correlation_ids),
            "movements": [m.to_dict() for m in self.movements],
        }


# Matches the String(64) correlation_id columns of movements and sales.
MAX_CORRELATION_ID_LENGTH = 64

# Movement types each operation may write under its correlation id.
OPERATION_MOVEMENT_TYPES = {
    "create_master": frozenset({mt.CREATE_MASTER}),
    "create_stall": frozenset({mt.CREATE_STALL_DIRECT}),
    "allocate": frozenset({mt.ALLOCATE_TO_STALL, mt.RECEIVE_ALLOCATION}),
    "return": frozenset({mt.RETURN_TO_MASTER, mt.RECEIVE_RETURN_FROM_STALL}),
    "transfer": frozenset({mt.TRANSFER_OUT_FROM_STALL, mt.TRANSFER_IN_TO_STALL}),
    "direct_update": frozenset({mt.DIRECT_STALL_UPDATE, mt.DIRECT_MASTER_UPDATE}),
    "delete": frozenset({mt.DELETE_STALL_ITEM, mt.DELETE_MASTER_ITEM, mt.RECEIVE_RETURN_FROM_STALL}),
    "batch_set": frozenset({mt.BATCH_STALL_UPDATE_SET, mt.DIRECT_MASTER_UPDATE}),
    "batch_delete": frozenset({mt.BATCH_STALL_DELETE, mt.RECEIVE_RETURN_FROM_STALL}),
}


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def check_correlation_id(correlation_id) -> str | None:
    """Validate a caller-supplied correlation id; None means one will be generated."""
    if correlation_id is None:
        return None
    if not isinstance(correlation_id, str) or not correlation_id.strip():
        raise ValidationError("correlation_id must be a non-empty string")
    if len(correlation_id) > MAX_CORRELATION_ID_LENGTH:
        raise ValidationError(
            f"correlation_id must be at most {MAX_CORRELATION_ID_LENGTH} characters",
            details={"length": len(correlation_id), "max_length": MAX_CORRELATION_ID_LENGTH},
        )
    return correlation_id


def _with_notes(default: str, notes: str | None) -> str:
    if notes and notes.strip():
        return f"{default}. {notes.strip()}"
    return default


def correlation_conflict(correlation_id: str, operation: str) -> ValidationError:
    return ValidationError(
        f"correlation_id {correlation_id} was already used by a different operation",
        details={"correlation_id": correlation_id, "operation": operation},
    )


def check_replay_matches(
    correlation_id: str,
    movements: list[StockMovement],
    operation: str,
    item_id: int | None = None,
) -> None:
    """
    A stored correlation group replays only for the operation that wrote it:
    same operation kind and, when given, touching the same stock record.
    """
    types = {m.movement_type for m in movements}
    if not types <= OPERATION_MOVEMENT_TYPES[operation]:
        raise correlation_conflict(correlation_id, operation)
    if item_id is not None and item_id not in {m.stock_item_id for m in movements}:
        raise correlation_conflict(correlation_id, operation)


def _replayed_result(
    correlation_id: str | None,
    operation: str,
    item_id: int | None = None,
) -> StockOperationResult | None:
    if not correlation_id:
        return None
    movements = movements_for_correlation(correlation_id)
    if not movements:
        return None
    check_replay_matches(correlation_id, movements, operation, item_id)

    stored_ids: list[int] = []
    for m in movements:
        if m.stock_item_id not in stored_ids:
            stored_ids.append(m.stock_item_id)

    items = []
    deleted = []
    for stored_id in stored_ids:
        item = db.session.get(StockItem, stored_id)
        if item is None:
            deleted.append(stored_id)
        else:
            items.append(item)
    return StockOperationResult(
        correlation_id=correlation_id,
        items=items,
        movements=movements,
        deleted_item_ids=deleted,
        replayed=True,
    )


def _get_item_locked(item_id: int) -> StockItem:
    item = lock_for_update(db.session.query(StockItem).filter_by(id=item_id)).first()
    if item is None:
        raise NotFoundError(f"Stock item {item_id} not found", details={"item_id": item_id})
    return item


def _get_stall(stall_id: int) -> Stall:
    stall = db.session.get(Stall, stall_id)
    if stall is None:
        raise NotFoundError(f"Stall {stall_id} not found", details={"stall_id": stall_id})
    return stall


def resolve_link(stall_item: StockItem) -> tuple[StockLink, StockItem]:
    """
    Validate and lock the master behind a linked stall record.

    Raises UnlinkedItemError when there is no link, NotFoundError when the
    master is gone, InvalidScopeError when the pointer breaks the same-site
    master rule.
    """
    if stall_item.is_master:
        raise InvalidScopeError(
            f"Stock item {stall_item.id} is a master record and has no master link",
            details={"item_id": stall_item.id},
        )
    if stall_item.original_master_item_id is None:
        raise UnlinkedItemError(
            f"Stall item {stall_item.name} (ID: {stall_item.id}) is not linked to a master item",
            details={"item_id": stall_item.id},
        )

    master_id = stall_item.original_master_item_id
    master = lock_for_update(db.session.query(StockItem).filter_by(id=master_id)).first()
    if master is None:
        raise NotFoundError(
            f"Linked master item {master_id} for stall item {stall_item.id} not found",
            details={"item_id": stall_item.id, "master_id": master_id},
        )
    if not master.is_master:
        raise InvalidScopeError(
            f"Linked item {master_id} is not a master record",
            details={"item_id": stall_item.id, "master_id": master_id},
        )
    if master.site_id != stall_item.site_id:
        raise InvalidScopeError(
            f"Linked master item {master_id} belongs to a different site",
            details={
                "item_id": stall_item.id,
                "master_id": master_id,
                "item_site_id": stall_item.site_id,
                "master_site_id": master.site_id,
            },
        )

    link = StockLink(
        master_id=master.id,
        stall_item_id=stall_item.id,
        stall_id=stall_item.stall_id,
        site_id=stall_item.site_id,
    )
    return link, master


def _require_available(item: StockItem, quantity: int) -> None:
    if item.quantity < quantity:
        raise InsufficientStockError(
            f"Not enough stock for {item.name}. Available: {item.quantity}, Requested: {quantity}.",
            details={"item_id": item.id, "available": item.quantity, "requested": quantity},
        )


def _master_context(item: StockItem) -> int | None:
    return item.id if item.is_master else item.original_master_item_id


def _apply_delta(
    item: StockItem,
    delta: int,
    *,
    movement_type: str,
    actor: Actor,
    correlation_id: str,
    linked_item_id: int | None = None,
    sale_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """Change one record's quantity and log it. Callers check availability first."""
    before = item.quantity
    after = before + delta
    if after < 0:
        raise InsufficientStockError(
            f"Not enough stock for {item.name}. Available: {before}, Requested: {-delta}.",
            details={"item_id": item.id, "available": before, "requested": -delta},
        )

    item.quantity = after
    item.last_updated = utcnow()
    db.session.flush()

    return append_movement(
        stock_item_id=item.id,
        item_name=item.name,
        site_id=item.site_id,
        stall_id=item.stall_id,
        movement_type=movement_type,
        quantity_before=before,
        quantity_after=after,
        actor=actor,
        correlation_id=correlation_id,
        linked_stock_item_id=linked_item_id,
        master_stock_item_id=_master_context(item),
        sale_id=sale_id,
        notes=notes,
    )


def _copy_for_stall(source: StockItem, stall: Stall, master_id: int | None) -> StockItem:
    """New zero-quantity stall record carrying the source's descriptive attributes."""
    item = StockItem(
        site_id=stall.site_id,
        stall_id=stall.id,
        original_master_item_id=master_id,
        quantity=0,
        last_updated=utcnow(),
        **{name: getattr(source, name) for name in DESCRIPTIVE_FIELDS},
    )
    db.session.add(item)
    db.session.flush()
    return item


def _log_operation(operation: str, result: StockOperationResult) -> None:
    current_app.logger.info(
        "stock.%s correlation_id=%s items=%s replayed=%s",
        operation,
        result.correlation_id,
        [m.stock_item_id for m in result.movements],
        result.replayed,
    )


# ---------------------------------------------------------------------------
# Record creation and descriptive updates
# ---------------------------------------------------------------------------

def _create_item(
    *,
    site_id: int,
    stall_id: int | None,
    actor: Actor,
    attrs: dict,
    movement_type: str,
    notes: str | None,
    correlation_id: str | None,
) -> StockOperationResult:
    patch = dict(attrs)
    unknown = sorted(set(patch) - set(DESCRIPTIVE_FIELDS) - {"quantity"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")
    for required in ("name", "category"):
        if required not in patch:
            raise ValidationError(f"Missing required fields: {required}")
    enforce_rules_stock_item(patch)
    quantity = patch.pop("quantity", 0)

    operation = "create_master" if movement_type == mt.CREATE_MASTER else "create_stall"
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, operation)
        if replay:
            return replay

        site = db.session.get(Site, site_id)
        if site is None:
            raise NotFoundError(f"Site {site_id} not found", details={"site_id": site_id})
        if stall_id is not None:
            stall = _get_stall(stall_id)
            if stall.site_id != site.id:
                raise InvalidScopeError(
                    f"Stall {stall.id} does not belong to site {site.id}",
                    details={"stall_id": stall.id, "site_id": site.id},
                )

        item = StockItem(
            site_id=site.id,
            stall_id=stall_id,
            original_master_item_id=None,
            quantity=0,
            last_updated=utcnow(),
            **patch,
        )
        db.session.add(item)
        db.session.flush()

        label = "master stock" if stall_id is None else "stall stock"
        movement = _apply_delta(
            item,
            quantity,
            movement_type=movement_type,
            actor=actor,
            correlation_id=correlation_id,
            notes=_with_notes(f"Created {item.name} in {label} with {quantity} {item.unit}", notes),
        )
        return StockOperationResult(correlation_id=correlation_id, items=[item], movements=[movement])

    result = run_in_transaction(_op)
    _log_operation("create", result)
    return result


def create_master_item(
    site_id: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
    **attrs,
) -> StockOperationResult:
    """Create a site-level master record (logs CREATE_MASTER)."""
    return _create_item(
        site_id=site_id,
        stall_id=None,
        actor=actor,
        attrs=attrs,
        movement_type=mt.CREATE_MASTER,
        notes=notes,
        correlation_id=correlation_id,
    )


def create_stall_item(
    site_id: int,
    stall_id: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
    **attrs,
) -> StockOperationResult:
    """Create an unlinked stall record directly at a stall (logs CREATE_STALL_DIRECT)."""
    return _create_item(
        site_id=site_id,
        stall_id=stall_id,
        actor=actor,
        attrs=attrs,
        movement_type=mt.CREATE_STALL_DIRECT,
        notes=notes,
        correlation_id=correlation_id,
    )


def update_item_details(item_id: int, patch: dict, actor: Actor) -> StockItem:
    """
    Update descriptive attributes only.

    Quantity, scope and linkage are not writable here; quantities move through
    the logged operations below. No movement is written.
    """
    patch = dict(patch or {})
    not_allowed = sorted(set(patch) - set(DESCRIPTIVE_FIELDS))
    if not_allowed:
        raise ValidationError(f"Field not allowed: {', '.join(not_allowed)}")
    if not patch:
        raise ValidationError("No fields to update")
    enforce_rules_stock_item(patch)

    def _op():
        item = _get_item_locked(item_id)
        for key, value in patch.items():
            setattr(item, key, value)
        item.last_updated = utcnow()
        db.session.flush()
        return item

    item = run_in_transaction(_op)
    current_app.logger.info(
        "stock.update_details item_id=%s fields=%s user_id=%s", item_id, sorted(patch), actor.user_id
    )
    return item


# ---------------------------------------------------------------------------
# Allocate / Return / Transfer / DirectUpdate
# ---------------------------------------------------------------------------

def allocate(
    master_id: int,
    stall_id: int,
    quantity: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StockOperationResult:
    """
    Move quantity from a master record to its linked record at a stall.

    The stall record for (master, stall) is grown if it exists and created
    (copying the master's attributes) if not.
    """
    quantity = require_positive_quantity(quantity)
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, "allocate", master_id)
        if replay:
            return replay

        master = _get_item_locked(master_id)
        if not master.is_master:
            raise InvalidScopeError(
                f"Stock item {master.id} is a stall item; only master stock can be allocated",
                details={"item_id": master.id},
            )

        stall = _get_stall(stall_id)
        if stall.site_id != master.site_id:
            raise InvalidScopeError(
                f"Stall {stall.name} is not in the master item's site",
                details={"stall_id": stall.id, "stall_site_id": stall.site_id, "master_site_id": master.site_id},
            )

        _require_available(master, quantity)

        stall_item = lock_for_update(
            db.session.query(StockItem).filter_by(original_master_item_id=master.id, stall_id=stall.id)
        ).first()
        if stall_item is None:
            stall_item = _copy_for_stall(master, stall, master_id=master.id)

        out_mv = _apply_delta(
            master,
            -quantity,
            movement_type=mt.ALLOCATE_TO_STALL,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=stall_item.id,
            notes=_with_notes(f"Allocated {quantity} unit(s) of {master.name} to stall: {stall.name}", notes),
        )
        in_mv = _apply_delta(
            stall_item,
            quantity,
            movement_type=mt.RECEIVE_ALLOCATION,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=master.id,
            notes=_with_notes(f"Received {quantity} unit(s) of {master.name} from master stock", notes),
        )
        return StockOperationResult(
            correlation_id=correlation_id,
            items=[master, stall_item],
            movements=[out_mv, in_mv],
        )

    result = run_in_transaction(_op)
    _log_operation("allocate", result)
    return result


def return_to_master(
    stall_item_id: int,
    quantity: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StockOperationResult:
    """Move quantity from a linked stall record back to its master."""
    quantity = require_positive_quantity(quantity)
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, "return", stall_item_id)
        if replay:
            return replay

        stall_item = _get_item_locked(stall_item_id)
        if stall_item.is_master:
            raise InvalidScopeError(
                f"Stock item {stall_item.id} is a master record; only stall stock can be returned",
                details={"item_id": stall_item.id},
            )
        _link, master = resolve_link(stall_item)
        _require_available(stall_item, quantity)

        out_mv = _apply_delta(
            stall_item,
            -quantity,
            movement_type=mt.RETURN_TO_MASTER,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=master.id,
            notes=_with_notes(f"Returned {quantity} unit(s) of {stall_item.name} to master stock", notes),
        )
        in_mv = _apply_delta(
            master,
            quantity,
            movement_type=mt.RECEIVE_RETURN_FROM_STALL,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=stall_item.id,
            notes=_with_notes(
                f"Received {quantity} unit(s) of {master.name} back from stall item {stall_item.id}", notes
            ),
        )
        return StockOperationResult(
            correlation_id=correlation_id,
            items=[stall_item, master],
            movements=[out_mv, in_mv],
        )

    result = run_in_transaction(_op)
    _log_operation("return", result)
    return result


def _find_transfer_destination(source: StockItem, dest_stall: Stall) -> StockItem | None:
    q = db.session.query(StockItem).filter_by(site_id=source.site_id, stall_id=dest_stall.id)
    if source.original_master_item_id is not None:
        q = q.filter_by(original_master_item_id=source.original_master_item_id)
    else:
        q = q.filter(StockItem.original_master_item_id.is_(None)).filter_by(name=source.name)
    return lock_for_update(q.order_by(StockItem.id.asc())).first()


def transfer(
    source_stall_item_id: int,
    dest_stall_id: int,
    quantity: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StockOperationResult:
    """
    Move quantity between two stalls of the same site. Master stock is not touched.

    The destination record keeps the source's master link; unlinked stock is
    matched by name.
    """
    quantity = require_positive_quantity(quantity)
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, "transfer", source_stall_item_id)
        if replay:
            return replay

        source = _get_item_locked(source_stall_item_id)
        if source.is_master:
            raise InvalidScopeError(
                f"Stock item {source.id} is a master record; allocate master stock instead of transferring",
                details={"item_id": source.id},
            )

        dest_stall = _get_stall(dest_stall_id)
        if dest_stall.site_id != source.site_id:
            raise CrossSiteTransferRejectedError(
                f"Cannot transfer {source.name} to stall {dest_stall.name} in another site",
                details={
                    "item_id": source.id,
                    "source_site_id": source.site_id,
                    "dest_site_id": dest_stall.site_id,
                },
            )
        if dest_stall.id == source.stall_id:
            raise ValidationError(
                "Source and destination stall are the same",
                details={"stall_id": dest_stall.id},
            )

        if source.original_master_item_id is not None:
            resolve_link(source)

        _require_available(source, quantity)

        dest = _find_transfer_destination(source, dest_stall)
        if dest is None:
            dest = _copy_for_stall(source, dest_stall, master_id=source.original_master_item_id)

        out_mv = _apply_delta(
            source,
            -quantity,
            movement_type=mt.TRANSFER_OUT_FROM_STALL,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=dest.id,
            notes=_with_notes(f"Transferred {quantity} unit(s) of {source.name} to stall: {dest_stall.name}", notes),
        )
        in_mv = _apply_delta(
            dest,
            quantity,
            movement_type=mt.TRANSFER_IN_TO_STALL,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=source.id,
            notes=_with_notes(
                f"Received {quantity} unit(s) of {source.name} from stall {source.stall_id}", notes
            ),
        )
        return StockOperationResult(
            correlation_id=correlation_id,
            items=[source, dest],
            movements=[out_mv, in_mv],
        )

    result = run_in_transaction(_op)
    _log_operation("transfer", result)
    return result


def _set_quantity_inner(
    item: StockItem,
    new_quantity: int,
    *,
    stall_movement_type: str,
    actor: Actor,
    correlation_id: str,
    notes: str | None,
) -> list[StockMovement]:
    """
    Set an absolute quantity, propagating the signed change of a linked stall
    record to its master. No clamping: a master that cannot absorb the change
    fails the whole transaction.
    """
    delta = new_quantity - item.quantity
    if delta == 0:
        return []

    if item.is_master:
        return [
            _apply_delta(
                item,
                delta,
                movement_type=mt.DIRECT_MASTER_UPDATE,
                actor=actor,
                correlation_id=correlation_id,
                notes=_with_notes(f"Quantity of {item.name} set to {new_quantity}", notes),
            )
        ]

    master = None
    if item.original_master_item_id is not None:
        _link, master = resolve_link(item)
        if master.quantity + delta < 0:
            raise InconsistentPropagationError(
                f"Master item {master.name} has {master.quantity} unit(s); "
                f"cannot absorb a change of {delta} from stall item {item.id}",
                details={
                    "item_id": item.id,
                    "master_id": master.id,
                    "master_quantity": master.quantity,
                    "delta": delta,
                },
            )

    movements = [
        _apply_delta(
            item,
            delta,
            movement_type=stall_movement_type,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=master.id if master is not None else None,
            notes=_with_notes(f"Quantity of {item.name} set to {new_quantity}", notes),
        )
    ]
    if master is not None:
        movements.append(
            _apply_delta(
                master,
                delta,
                movement_type=mt.DIRECT_MASTER_UPDATE,
                actor=actor,
                correlation_id=correlation_id,
                linked_item_id=item.id,
                notes=_with_notes(
                    f"Adjusted by {delta:+d} from linked stall item {item.name} (ID: {item.id})", notes
                ),
            )
        )
    return movements


def direct_update(
    item_id: int,
    new_quantity: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StockOperationResult:
    """Manual correction (miscount, spoilage): set the quantity outright."""
    new_quantity = require_non_negative_quantity(new_quantity, "new_quantity")
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, "direct_update", item_id)
        if replay:
            return replay

        item = _get_item_locked(item_id)
        if item.quantity == new_quantity:
            raise ValidationError(
                f"Quantity of {item.name} is already {new_quantity}",
                details={"item_id": item.id, "quantity": new_quantity},
            )

        movements = _set_quantity_inner(
            item,
            new_quantity,
            stall_movement_type=mt.DIRECT_STALL_UPDATE,
            actor=actor,
            correlation_id=correlation_id,
            notes=notes,
        )
        items = [item]
        if len(movements) > 1:
            items.append(db.session.get(StockItem, movements[1].stock_item_id))
        return StockOperationResult(correlation_id=correlation_id, items=items, movements=movements)

    result = run_in_transaction(_op)
    _log_operation("direct_update", result)
    return result


# ---------------------------------------------------------------------------
# Sale primitive (used by sales_service inside its own transaction)
# ---------------------------------------------------------------------------

def _sell_from_stall_inner(
    item: StockItem,
    quantity: int,
    *,
    actor: Actor,
    correlation_id: str,
    sale_id: int,
) -> list[StockMovement]:
    """Core SALE logic without locking of the stall record, retry or commit."""
    master = None
    if item.original_master_item_id is not None:
        _link, master = resolve_link(item)

    _require_available(item, quantity)
    if master is not None and master.quantity < quantity:
        raise InsufficientStockError(
            f"Not enough master stock for {master.name}. Available: {master.quantity}, Requested: {quantity}.",
            details={"item_id": item.id, "master_id": master.id, "available": master.quantity, "requested": quantity},
        )

    movements = [
        _apply_delta(
            item,
            -quantity,
            movement_type=mt.SALE_FROM_STALL,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=master.id if master is not None else None,
            sale_id=sale_id,
            notes=f"Sale ID: {sale_id}",
        )
    ]
    if master is not None:
        movements.append(
            _apply_delta(
                master,
                -quantity,
                movement_type=mt.SALE_AFFECTS_MASTER,
                actor=actor,
                correlation_id=correlation_id,
                linked_item_id=item.id,
                sale_id=sale_id,
                notes=f"Linked to sale of stall item {item.name} (ID: {item.id}), Sale ID: {sale_id}",
            )
        )
    return movements


# ---------------------------------------------------------------------------
# Deletion and batches
# ---------------------------------------------------------------------------

def _delete_inner(
    item: StockItem,
    *,
    stall_movement_type: str,
    actor: Actor,
    correlation_id: str,
    notes: str | None,
) -> list[StockMovement]:
    """
    Remove a record, logging its final quantity. Remaining stock of a linked
    stall record goes back to the master in the same commit.
    """
    movements: list[StockMovement] = []

    if item.is_master:
        children = db.session.query(StockItem).filter_by(original_master_item_id=item.id).count()
        if children:
            raise LinkedItemsExistError(
                f"Master item {item.name} still has {children} linked stall item(s)",
                details={"item_id": item.id, "linked_items": children},
            )
        movement_type = mt.DELETE_MASTER_ITEM
        master = None
    else:
        movement_type = stall_movement_type
        master = None
        if item.original_master_item_id is not None:
            _link, master = resolve_link(item)

    remaining = item.quantity
    movements.append(
        _apply_delta(
            item,
            -remaining,
            movement_type=movement_type,
            actor=actor,
            correlation_id=correlation_id,
            linked_item_id=master.id if master is not None else None,
            notes=_with_notes(f"Deleted {item.name} holding {remaining} {item.unit}", notes),
        )
    )
    if master is not None and remaining > 0:
        movements.append(
            _apply_delta(
                master,
                remaining,
                movement_type=mt.RECEIVE_RETURN_FROM_STALL,
                actor=actor,
                correlation_id=correlation_id,
                linked_item_id=item.id,
                notes=_with_notes(
                    f"Received {remaining} unit(s) of {master.name} from deleted stall item {item.id}", notes
                ),
            )
        )

    db.session.delete(item)
    db.session.flush()
    return movements


def delete_item(
    item_id: int,
    actor: Actor,
    *,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StockOperationResult:
    correlation_id = check_correlation_id(correlation_id) or new_correlation_id()

    def _op():
        replay = _replayed_result(correlation_id, "delete", item_id)
        if replay:
            return replay

        item = _get_item_locked(item_id)
        movements = _delete_inner(
            item,
            stall_movement_type=mt.DELETE_STALL_ITEM,
            actor=actor,
            correlation_id=correlation_id,
            notes=notes,
        )
        survivors = [db.session.get(StockItem, m.stock_item_id) for m in movements[1:]]
        return StockOperationResult(
            correlation_id=correlation_id,
            items=[s for s in survivors if s is not None],
            movements=movements,
            deleted_item_ids=[item_id],
        )

    result = run_in_transaction(_op)
    _log_operation("delete", result)
    return result


def _require_stall_item(item: StockItem) -> None:
    if item.is_master:
        raise InvalidScopeError(
            f"Stock item {item.id} is a master record; batch operations apply to stall items only",
            details={"item_id": item.id},
        )


def _unique_ids(item_ids) -> list[int]:
    if not item_ids:
        raise ValidationError("item_ids must not be empty")
    seen: list[int] = []
    for raw in item_ids:
        item_id = require_positive_quantity(raw, "item_id")
        if item_id not in seen:
            seen.append(item_id)
    return seen


BATCH_ROW_TYPES = frozenset({mt.BATCH_STALL_UPDATE_SET, mt.BATCH_STALL_DELETE})


def _run_batch(
    item_ids,
    row_op,
    *,
    atomic: bool,
    correlation_id: str | None,
    operation: str,
) -> BatchResult:
    """
    atomic=True: all rows in one transaction, first failure aborts everything.
    atomic=False: one transaction per row; failed rows are reported, others kept.
    """
    ids = _unique_ids(item_ids)
    correlation_id = check_correlation_id(correlation_id)
    result = BatchResult(atomic=atomic)

    if atomic:
        cid = correlation_id or new_correlation_id()

        def _op():
            replay = _replayed_result(cid, operation)
            if replay:
                row_ids = {m.stock_item_id for m in replay.movements if m.movement_type in BATCH_ROW_TYPES}
                if not row_ids <= set(ids):
                    raise correlation_conflict(cid, operation)
                return replay.movements, sorted(row_ids)
            movements: list[StockMovement] = []
            for item_id in ids:
                movements.extend(row_op(item_id, cid))
            return movements, ids

        movements, succeeded = run_in_transaction(_op)
        result.correlation_ids.append(cid)
        result.movements.extend(movements)
        result.succeeded.extend(succeeded)
    else:
        # Derived per-row ids must fit the correlation_id column too.
        row_cids = {
            item_id: check_correlation_id(f"{correlation_id}:{item_id}") if correlation_id else new_correlation_id()
            for item_id in ids
        }
        for item_id in ids:
            cid = row_cids[item_id]

            def _row(item_id=item_id, cid=cid):
                replay = _replayed_result(cid, operation, item_id)
                if replay:
                    return replay.movements
                return row_op(item_id, cid)

            try:
                movements = run_in_transaction(_row)
            except StockError as exc:
                result.failed.append({"item_id": item_id, **exc.to_dict()})
                continue
            result.correlation_ids.append(cid)
            result.movements.extend(movements)
            result.succeeded.append(item_id)

    current_app.logger.info(
        "stock.%s atomic=%s succeeded=%s failed=%s",
        operation, atomic, result.succeeded, [f["item_id"] for f in result.failed],
    )
    return result


def batch_set_quantity(
    item_ids,
    new_quantity: int,
    actor: Actor,
    *,
    atomic: bool = True,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> BatchResult:
    """Set the same absolute quantity on several stall items."""
    new_quantity = require_non_negative_quantity(new_quantity, "new_quantity")

    def row_op(item_id: int, cid: str) -> list[StockMovement]:
        item = _get_item_locked(item_id)
        _require_stall_item(item)
        return _set_quantity_inner(
            item,
            new_quantity,
            stall_movement_type=mt.BATCH_STALL_UPDATE_SET,
            actor=actor,
            correlation_id=cid,
            notes=_with_notes("Batch operation", notes),
        )

    return _run_batch(item_ids, row_op, atomic=atomic, correlation_id=correlation_id, operation="batch_set")


def batch_delete(
    item_ids,
    actor: Actor,
    *,
    atomic: bool = True,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> BatchResult:
    """Delete several stall items, returning linked remainders to their masters."""

    def row_op(item_id: int, cid: str) -> list[StockMovement]:
        item = _get_item_locked(item_id)
        _require_stall_item(item)
        return _delete_inner(
            item,
            stall_movement_type=mt.BATCH_STALL_DELETE,
            actor=actor,
            correlation_id=cid,
            notes=_with_notes("Batch operation", notes),
        )

    return _run_batch(item_ids, row_op, atomic=atomic, correlation_id=correlation_id, operation="batch_delete")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_item(item_id: int) -> StockItem:
    item = db.session.get(StockItem, item_id)
    if item is None:
        raise NotFoundError(f"Stock item {item_id} not found", details={"item_id": item_id})
    return item


def list_items(
    *,
    site_id: int | None = None,
    stall_id: int | None = None,
    masters_only: bool = False,
    low_stock_only: bool = False,
    category: str | None = None,
) -> list[StockItem]:
    q = db.session.query(StockItem)
    if site_id is not None:
        q = q.filter(StockItem.site_id == site_id)
    if masters_only:
        q = q.filter(StockItem.stall_id.is_(None))
    elif stall_id is not None:
        q = q.filter(StockItem.stall_id == stall_id)
    if category:
        q = q.filter(StockItem.category == category)
    if low_stock_only:
        q = q.filter(StockItem.quantity <= StockItem.low_stock_threshold)
    return q.order_by(StockItem.name.asc(), StockItem.id.asc()).all()


def linked_stall_items(master_id: int) -> list[StockItem]:
    return (
        db.session.query(StockItem)
        .filter_by(original_master_item_id=master_id)
        .order_by(StockItem.stall_id.asc())
        .all()
    )
