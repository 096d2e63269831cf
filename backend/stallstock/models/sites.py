from __future__ import annotations

from ..extensions import db
from stallstock.time_utils import to_utc_z


STALL_TYPES = (
    "Retail Counter",
    "Storage Room",
    "Pop-up Booth",
    "Display Area",
    "Service Desk",
    "Food Stall",
    "Information Kiosk",
    "Warehouse Section",
    "Other",
)


class Site(db.Model):
    """
    A physical location holding master stock.

    Every stock record and stall belongs to exactly one site. Stock never
    crosses site boundaries.
    """
    __tablename__ = "sites"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Site id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Stall(db.Model):
    """Point of sale inside a site. Stall stock records are scoped to one stall."""
    __tablename__ = "stalls"
    __table_args__ = (
        db.UniqueConstraint("site_id", "name", name="uq_stalls_site_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    stall_type = db.Column(db.String(32), nullable=False, default="Other")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    site = db.relationship("Site", backref=db.backref("stalls", lazy=True))

    def __repr__(self) -> str:
        return f"<Stall id={self.id} name={self.name!r} site_id={self.site_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "name": self.name,
            "stall_type": self.stall_type,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
