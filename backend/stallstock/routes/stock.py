# backend/stallstock/routes/stock.py
"""
Quantity-moving operations: allocate, return, transfer, direct update and batches.

Every route answers with the committed records and the movements written,
all sharing one correlation_id. Resending the same correlation_id returns the
earlier result (200, replayed=true) instead of applying the change again.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..errors import StockError, ValidationError
from ..validation import coerce_int
from ..decorators import require_actor
from ..services import stock_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _id(data: dict, key: str) -> int:
    return coerce_int(data[key], key)


def _atomic(data: dict) -> bool:
    value = data.get("atomic", True)
    if not isinstance(value, bool):
        raise ValidationError("atomic must be a JSON boolean", details={"atomic": value})
    return value


def _operation_response(result):
    return jsonify(result.to_dict()), 200 if result.replayed else 201


@stock_bp.post("/allocate")
@require_actor
def allocate_route():
    """
    Request body:
    {
        "master_item_id": int,
        "stall_id": int,
        "quantity": int,
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.allocate(
            _id(data, "master_item_id"),
            _id(data, "stall_id"),
            data["quantity"],
            g.actor,
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return _operation_response(result)
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to allocate stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/return")
@require_actor
def return_route():
    """
    Request body:
    {
        "stall_item_id": int,
        "quantity": int,
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.return_to_master(
            _id(data, "stall_item_id"),
            data["quantity"],
            g.actor,
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return _operation_response(result)
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to return stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/transfer")
@require_actor
def transfer_route():
    """
    Request body:
    {
        "stall_item_id": int,
        "dest_stall_id": int,
        "quantity": int,
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.transfer(
            _id(data, "stall_item_id"),
            _id(data, "dest_stall_id"),
            data["quantity"],
            g.actor,
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return _operation_response(result)
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/update")
@require_actor
def direct_update_route():
    """
    Request body:
    {
        "item_id": int,
        "new_quantity": int,
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.direct_update(
            _id(data, "item_id"),
            data["new_quantity"],
            g.actor,
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return _operation_response(result)
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock quantity")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/batch/set")
@require_actor
def batch_set_route():
    """
    Request body:
    {
        "item_ids": [int],
        "new_quantity": int,
        "atomic": bool (optional, default true),
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.batch_set_quantity(
            data["item_ids"],
            data["new_quantity"],
            g.actor,
            atomic=_atomic(data),
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return jsonify(result.to_dict()), 200
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to run batch quantity update")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/batch/delete")
@require_actor
def batch_delete_route():
    """
    Request body:
    {
        "item_ids": [int],
        "atomic": bool (optional, default true),
        "notes": str (optional),
        "correlation_id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        result = stock_service.batch_delete(
            data["item_ids"],
            g.actor,
            atomic=_atomic(data),
            notes=data.get("notes"),
            correlation_id=data.get("correlation_id"),
        )
        return jsonify(result.to_dict()), 200
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "VALIDATION_ERROR"}), 400
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to run batch delete")
        return jsonify({"error": "Internal server error"}), 500
