from __future__ import annotations

from stallstock.extensions import db
from stallstock.errors import NotFoundError, ValidationError
from stallstock.models import Site, Stall, STALL_TYPES
from stallstock.services.concurrency import run_in_transaction


def _clean_name(name: str | None, label: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < 2:
        raise ValidationError(f"{label} name must be at least 2 characters.")
    return cleaned


def create_site(name: str, location: str | None = None) -> Site:
    cleaned = _clean_name(name, "Site")

    def _op():
        site = Site(name=cleaned, location=(location or "").strip() or None)
        db.session.add(site)
        db.session.flush()
        return site

    return run_in_transaction(_op)


def create_stall(site_id: int, name: str, stall_type: str = "Other") -> Stall:
    cleaned = _clean_name(name, "Stall")
    if stall_type not in STALL_TYPES:
        raise ValidationError(
            f"Unknown stall type {stall_type!r}",
            details={"allowed": list(STALL_TYPES)},
        )

    def _op():
        site = get_site(site_id)

        duplicate = db.session.query(Stall).filter_by(site_id=site.id, name=cleaned).first()
        if duplicate:
            raise ValidationError(f"Stall {cleaned!r} already exists at site {site.name!r}")

        stall = Stall(site_id=site.id, name=cleaned, stall_type=stall_type)
        db.session.add(stall)
        db.session.flush()
        return stall

    return run_in_transaction(_op)


def get_site(site_id: int) -> Site:
    site = db.session.get(Site, site_id)
    if site is None:
        raise NotFoundError(f"Site {site_id} not found", details={"site_id": site_id})
    return site


def get_stall(stall_id: int) -> Stall:
    stall = db.session.get(Stall, stall_id)
    if stall is None:
        raise NotFoundError(f"Stall {stall_id} not found", details={"stall_id": stall_id})
    return stall


def list_sites() -> list[Site]:
    return db.session.query(Site).order_by(Site.name.asc()).all()


def list_stalls(site_id: int) -> list[Stall]:
    get_site(site_id)
    return db.session.query(Stall).filter_by(site_id=site_id).order_by(Stall.name.asc()).all()
