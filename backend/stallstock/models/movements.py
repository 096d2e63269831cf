from __future__ import annotations

from ..extensions import db
from stallstock.time_utils import to_utc_z


CREATE_MASTER = "CREATE_MASTER"
CREATE_STALL_DIRECT = "CREATE_STALL_DIRECT"
ALLOCATE_TO_STALL = "ALLOCATE_TO_STALL"
RECEIVE_ALLOCATION = "RECEIVE_ALLOCATION"
RETURN_TO_MASTER = "RETURN_TO_MASTER"
RECEIVE_RETURN_FROM_STALL = "RECEIVE_RETURN_FROM_STALL"
SALE_FROM_STALL = "SALE_FROM_STALL"
SALE_AFFECTS_MASTER = "SALE_AFFECTS_MASTER"
DIRECT_STALL_UPDATE = "DIRECT_STALL_UPDATE"
DIRECT_MASTER_UPDATE = "DIRECT_MASTER_UPDATE"
TRANSFER_OUT_FROM_STALL = "TRANSFER_OUT_FROM_STALL"
TRANSFER_IN_TO_STALL = "TRANSFER_IN_TO_STALL"
BATCH_STALL_UPDATE_SET = "BATCH_STALL_UPDATE_SET"
BATCH_STALL_DELETE = "BATCH_STALL_DELETE"
DELETE_STALL_ITEM = "DELETE_STALL_ITEM"
DELETE_MASTER_ITEM = "DELETE_MASTER_ITEM"

MOVEMENT_TYPES = frozenset({
    CREATE_MASTER,
    CREATE_STALL_DIRECT,
    ALLOCATE_TO_STALL,
    RECEIVE_ALLOCATION,
    RETURN_TO_MASTER,
    RECEIVE_RETURN_FROM_STALL,
    SALE_FROM_STALL,
    SALE_AFFECTS_MASTER,
    DIRECT_STALL_UPDATE,
    DIRECT_MASTER_UPDATE,
    TRANSFER_OUT_FROM_STALL,
    TRANSFER_IN_TO_STALL,
    BATCH_STALL_UPDATE_SET,
    BATCH_STALL_DELETE,
    DELETE_STALL_ITEM,
    DELETE_MASTER_ITEM,
})


class StockMovement(db.Model):
    """
    Append-only audit entry for one quantity change on one stock record.

    stock_item_id is not a foreign key: the entry outlives the
    record it describes, so item_name/site_id/stall_id are denormalized
    snapshots taken at write time.

    Entries produced by one logical operation share correlation_id. For any
    record, quantity_after of one entry equals quantity_before of its next
    entry.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_item_occurred", "stock_item_id", "occurred_at"),
        db.Index("ix_movements_site_stall_occurred", "site_id", "stall_id", "occurred_at"),
        db.Index("ix_movements_master_context", "master_stock_item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    stock_item_id = db.Column(db.Integer, nullable=False)
    item_name = db.Column(db.String(255), nullable=True)
    linked_stock_item_id = db.Column(db.Integer, nullable=True)
    master_stock_item_id = db.Column(db.Integer, nullable=True)

    site_id = db.Column(db.Integer, nullable=False)
    stall_id = db.Column(db.Integer, nullable=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    user_id = db.Column(db.String(128), nullable=False)
    user_name = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    notes = db.Column(db.Text, nullable=True)

    correlation_id = db.Column(db.String(64), nullable=False, index=True)
    sale_id = db.Column(db.Integer, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "item_name": self.item_name,
            "linked_stock_item_id": self.linked_stock_item_id,
            "master_stock_item_id": self.master_stock_item_id,
            "site_id": self.site_id,
            "stall_id": self.stall_id,
            "movement_type": self.movement_type,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "occurred_at": to_utc_z(self.occurred_at),
            "notes": self.notes,
            "correlation_id": self.correlation_id,
            "sale_id": self.sale_id,
        }
