from __future__ import annotations

from ..extensions import db
from stallstock.time_utils import to_utc_z


class StockItem(db.Model):
    """
    One unit of tracked inventory.

    SCOPE:
    - stall_id IS NULL: master record, site-level stock not yet allocated.
    - stall_id set: stall record, stock held at one point of sale.

    LINKAGE:
    original_master_item_id is only ever set on stall records and points at the
    master record the stock was allocated from. Masters carry no back-pointer;
    children are found by query. The link must stay inside one site, which the
    stock service checks on every read rather than trusting the stored pointer.

    Quantity is a plain mutable column (not ledger-derived). Every change goes
    through stock_service so that a StockMovement is written in the same commit.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_items_quantity_nonnegative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_stock_items_threshold_nonnegative"),
        db.Index("ix_stock_items_site_stall", "site_id", "stall_id"),
        db.Index("ix_stock_items_master_stall", "original_master_item_id", "stall_id"),
        db.Index("ix_stock_items_site_name", "site_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    stall_id = db.Column(db.Integer, db.ForeignKey("stalls.id"), nullable=True, index=True)
    original_master_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)
    image_url = db.Column(db.String(512), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    site = db.relationship("Site", backref=db.backref("stock_items", lazy=True))
    stall = db.relationship("Stall", backref=db.backref("stock_items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_master(self) -> bool:
        return self.stall_id is None

    @property
    def is_linked(self) -> bool:
        return self.stall_id is not None and self.original_master_item_id is not None

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    def __repr__(self) -> str:
        return (
            f"<StockItem id={self.id} name={self.name!r} site_id={self.site_id} "
            f"stall_id={self.stall_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "stall_id": self.stall_id,
            "original_master_item_id": self.original_master_item_id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "cost_price_cents": self.cost_price_cents,
            "price_cents": self.price_cents,
            "low_stock_threshold": self.low_stock_threshold,
            "image_url": self.image_url,
            "is_master": self.is_master,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "last_updated": to_utc_z(self.last_updated),
        }
