# backend/stallstock/routes/sites.py
"""
Site and stall API routes.
"""
from flask import Blueprint, request, jsonify, current_app

from stallstock.decorators import require_actor
from stallstock.errors import StockError
from stallstock.services import site_service


sites_bp = Blueprint("sites", __name__, url_prefix="/api/sites")


@sites_bp.get("")
def list_sites_route():
    sites = site_service.list_sites()
    return jsonify({"sites": [s.to_dict() for s in sites]}), 200


@sites_bp.post("")
@require_actor
def create_site_route():
    """
    Request body:
    {
        "name": str,
        "location": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        site = site_service.create_site(name=data.get("name"), location=data.get("location"))
        return jsonify(site.to_dict()), 201
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create site")
        return jsonify({"error": "Internal server error"}), 500


@sites_bp.get("/<int:site_id>/stalls")
def list_stalls_route(site_id: int):
    try:
        stalls = site_service.list_stalls(site_id)
        return jsonify({"stalls": [s.to_dict() for s in stalls]}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@sites_bp.post("/<int:site_id>/stalls")
@require_actor
def create_stall_route(site_id: int):
    """
    Request body:
    {
        "name": str,
        "stall_type": str (optional, default "Other")
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        stall = site_service.create_stall(
            site_id=site_id,
            name=data.get("name"),
            stall_type=data.get("stall_type") or "Other",
        )
        return jsonify(stall.to_dict()), 201
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create stall")
        return jsonify({"error": "Internal server error"}), 500
