from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from ..extensions import db
from stallstock.time_utils import to_utc_z


SALE_STATUS_ACTIVE = "ACTIVE"
SALE_STATUS_DELETED = "DELETED"


@dataclass(frozen=True)
class SaleActive:
    pass


@dataclass(frozen=True)
class SaleDeleted:
    actor_id: str
    actor_name: str | None
    deleted_at: datetime
    justification: str


SaleState = Union[SaleActive, SaleDeleted]


class SaleTransaction(db.Model):
    """
    Committed point-of-sale transaction at one stall.

    LIFECYCLE: ACTIVE -> DELETED (soft, terminal). Deletion keeps the row for
    audit and only stamps actor/time/justification; deleted sales are left out
    of every aggregate. Use `state` rather than reading the columns directly.

    total_amount_cents always equals the sum of line_total_cents.
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.Index("ix_sales_site_stall_date", "site_id", "stall_id", "transaction_date"),
        db.Index("ix_sales_status_date", "status", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    stall_id = db.Column(db.Integer, db.ForeignKey("stalls.id"), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    staff_id = db.Column(db.String(128), nullable=False)
    staff_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_ACTIVE, index=True)
    deleted_by = db.Column(db.String(128), nullable=True)
    deleted_by_name = db.Column(db.String(255), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deletion_justification = db.Column(db.Text, nullable=True)

    correlation_id = db.Column(db.String(64), nullable=False, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleTransactionLine",
        backref="sale",
        lazy=True,
        order_by="SaleTransactionLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def state(self) -> SaleState:
        if self.status == SALE_STATUS_DELETED:
            return SaleDeleted(
                actor_id=self.deleted_by,
                actor_name=self.deleted_by_name,
                deleted_at=self.deleted_at,
                justification=self.deletion_justification,
            )
        return SaleActive()

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.state, SaleDeleted)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "stall_id": self.stall_id,
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "transaction_date": to_utc_z(self.transaction_date),
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "status": self.status,
            "is_deleted": self.is_deleted,
            "deleted_by": self.deleted_by,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deletion_justification": self.deletion_justification,
            "correlation_id": self.correlation_id,
            "version_id": self.version_id,
        }


class SaleTransactionLine(db.Model):
    """Sold line with name and price snapshots taken at commit time."""
    __tablename__ = "sale_transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "position", name="uq_sale_lines_sale_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Snapshot reference, kept even if the stock record is later deleted
    stock_item_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "item_id": self.stock_item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
