# backend/stallstock/routes/movements.py
"""
Movement history (read-only).

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- since/until filtering is inclusive.
"""
from flask import Blueprint, request, jsonify

from ..errors import StockError, ValidationError
from ..validation import coerce_int
from ..services import movement_service
from stallstock.time_utils import parse_iso_datetime


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")

_INT_FILTERS = ("site_id", "stall_id", "stock_item_id", "master_stock_item_id", "sale_id", "limit")


@movements_bp.get("")
def list_movements_route():
    try:
        filters = {}
        for name in _INT_FILTERS:
            raw = request.args.get(name)
            if raw:
                filters[name] = coerce_int(raw, name)
        if filters.get("limit") is not None and filters["limit"] <= 0:
            raise ValidationError("limit must be > 0")

        for name in ("since", "until"):
            raw = request.args.get(name)
            if raw:
                try:
                    filters[name] = parse_iso_datetime(raw)
                except ValueError:
                    raise ValidationError(f"{name} must be an ISO-8601 datetime")

        movements = movement_service.list_movements(
            movement_type=request.args.get("movement_type") or None,
            correlation_id=request.args.get("correlation_id") or None,
            **filters,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
