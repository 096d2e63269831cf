# backend/stallstock/routes/sales.py
"""
Sale routes.

A sale is recorded in one request: the whole cart is validated and committed
together with its stock deductions. Deleted sales stay readable but never count
towards totals.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..errors import StockError, ValidationError
from ..validation import coerce_int
from ..decorators import require_actor
from ..services import sales_service
from stallstock.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if not raw:
        return None
    return coerce_int(raw, name)


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@sales_bp.post("")
@require_actor
def record_sale_route():
    """
    Request body:
    {
        "site_id": int,
        "stall_id": int,
        "items": [{"item_id": int, "quantity": int, "unit_price_cents": int (optional)}],
        "correlation_id": str (optional)
    }

    Returns:
        201: Sale recorded
        200: Earlier sale with the same correlation_id
        409: Insufficient stock, scope or price mismatch
    """
    data = request.get_json(silent=True) or {}

    try:
        lines = data.get("items")
        if lines is not None and not isinstance(lines, list):
            raise ValidationError("items must be a list")

        result = sales_service.record_sale(
            coerce_int(data["site_id"], "site_id"),
            coerce_int(data["stall_id"], "stall_id"),
            lines or [],
            g.actor,
            correlation_id=data.get("correlation_id"),
        )
        return jsonify(result.to_dict()), 200 if result.replayed else 201
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    Query params: site_id, stall_id, start, end, include_deleted
    """
    try:
        sales = sales_service.list_sales(
            site_id=_int_arg("site_id"),
            stall_id=_int_arg("stall_id"),
            start=_date_arg("start"),
            end=_date_arg("end"),
            include_deleted=(request.args.get("include_deleted") or "").lower() in ("1", "true", "yes"),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/summary")
def sales_summary_route():
    try:
        summary = sales_service.sales_summary(
            site_id=_int_arg("site_id"),
            stall_id=_int_arg("stall_id"),
            start=_date_arg("start"),
            end=_date_arg("end"),
        )
        return jsonify(summary), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify(sale.to_dict()), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/<int:sale_id>/delete")
@require_actor
def delete_sale_route(sale_id: int):
    """
    Request body:
    {
        "justification": str
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.delete_sale(sale_id, g.actor, data.get("justification"))
        return jsonify(sale.to_dict()), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
