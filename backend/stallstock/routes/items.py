# backend/stallstock/routes/items.py
"""
Stock record routes: creation, descriptive edits, deletion and reads.

Quantity changes after creation go through /api/stock so that every change
is logged as a movement.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..models import StockItem
from ..errors import StockError
from ..validation import ModelValidationPolicy, validate_payload, coerce_int
from ..decorators import require_actor
from ..services import stock_service


items_bp = Blueprint("items", __name__, url_prefix="/api/items")

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"site_id", "stall_id", "quantity", *stock_service.DESCRIPTIVE_FIELDS},
    required_on_create={"site_id", "name", "category"},
)

ITEM_PATCH_POLICY = ModelValidationPolicy(
    writable_fields=set(stock_service.DESCRIPTIVE_FIELDS),
)


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(raw, name)


def _bool_arg(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


@items_bp.get("")
def list_items_route():
    """
    Query params: site_id, stall_id, masters_only, low_stock_only, category
    """
    try:
        items = stock_service.list_items(
            site_id=_int_arg("site_id"),
            stall_id=_int_arg("stall_id"),
            masters_only=_bool_arg("masters_only"),
            low_stock_only=_bool_arg("low_stock_only"),
            category=request.args.get("category") or None,
        )
        return jsonify({"items": [item.to_dict() for item in items]}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@items_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = stock_service.get_item(item_id)
        payload = item.to_dict()
        if item.is_master:
            payload["linked_stall_items"] = [
                child.to_dict() for child in stock_service.linked_stall_items(item.id)
            ]
        return jsonify(payload), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@items_bp.post("")
@require_actor
def create_item_route():
    """
    Create a master record (no stall_id) or a direct stall record.

    Request body: site_id, name, category, and optionally stall_id, quantity,
    unit, description, price_cents, cost_price_cents, low_stock_threshold,
    image_url, notes, correlation_id.
    """
    data = dict(request.get_json(silent=True) or {})
    notes = data.pop("notes", None)
    correlation_id = data.pop("correlation_id", None)

    try:
        patch = validate_payload(model=StockItem, payload=data, policy=ITEM_CREATE_POLICY, partial=False)
        site_id = patch.pop("site_id")
        stall_id = patch.pop("stall_id", None)

        if stall_id is None:
            result = stock_service.create_master_item(
                site_id, g.actor, notes=notes, correlation_id=correlation_id, **patch
            )
        else:
            result = stock_service.create_stall_item(
                site_id, stall_id, g.actor, notes=notes, correlation_id=correlation_id, **patch
            )
        return jsonify(result.to_dict()), 200 if result.replayed else 201
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create stock item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.patch("/<int:item_id>")
@require_actor
def update_item_route(item_id: int):
    data = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockItem, payload=data, policy=ITEM_PATCH_POLICY, partial=True)
        item = stock_service.update_item_details(item_id, patch, g.actor)
        return jsonify(item.to_dict()), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:item_id>")
@require_actor
def delete_item_route(item_id: int):
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.delete_item(
            item_id,
            g.actor,
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return jsonify(result.to_dict()), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete stock item")
        return jsonify({"error": "Internal server error"}), 500
