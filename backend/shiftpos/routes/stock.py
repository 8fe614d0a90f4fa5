# Overview: Flask API routes for stock levels and manual corrections.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import ServiceError
from ..extensions import db
from ..models import Product
from ..services import inventory_service
from ..validation import MAX_QUANTITY, ValidationError, coerce_int, get_bool, get_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _parse_id_list(raw: str | None) -> list[int]:
    if not raw:
        raise ValidationError("product_ids is required", {"field": "product_ids"})
    return [coerce_int("product_ids", part) for part in raw.split(",") if part.strip()]


@stock_bp.get("/availability")
@require_auth
def availability_route():
    """
    GET /api/stock/availability?location_id=1&product_ids=1,2,3

    Returns {"location_id": 1, "availability": {"1": 5, "2": 0, ...}}.
    """
    try:
        location_id = get_int(request.args, "location_id", required=True)
        product_ids = _parse_id_list(request.args.get("product_ids"))
        available = inventory_service.check_availability(location_id, product_ids)
        return jsonify({
            "location_id": location_id,
            "availability": {str(pid): qty for pid, qty in sorted(available.items())},
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@stock_bp.get("")
@require_auth
def list_stock_route():
    """GET /api/stock?location_id=1&low_only=true"""
    try:
        location_id = get_int(request.args, "location_id", default=g.current_user.location_id)
        if location_id is None:
            raise ValidationError("location_id is required", {"field": "location_id"})

        entries = inventory_service.list_stock(location_id, low_only=get_bool(request.args, "low_only"))
        products = {
            p.id: p
            for p in db.session.query(Product).filter(Product.id.in_([e.product_id for e in entries])).all()
        } if entries else {}

        items = []
        for entry in entries:
            item = entry.to_dict()
            product = products.get(entry.product_id)
            item["sku"] = product.sku if product else None
            item["product_name"] = product.name if product else None
            items.append(item)
        return jsonify({"items": items, "count": len(items)}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@stock_bp.put("/<int:product_id>/<int:location_id>")
@require_auth
def adjust_stock_route(product_id: int, location_id: int):
    """
    Manual stock correction.

    Body: quantity (>= 0), mode (ADD | SUBTRACT | SET, default ADD),
    minimum_threshold (optional), note (optional).
    """
    try:
        data = request.get_json(silent=True) or {}
        quantity = get_int(data, "quantity", required=True, minimum=0, maximum=MAX_QUANTITY)
        entry = inventory_service.adjust_stock(
            location_id,
            product_id,
            quantity,
            data.get("mode") or "ADD",
            minimum_threshold=get_int(data, "minimum_threshold", minimum=0),
            actor=g.current_user,
            note=data.get("note"),
        )
        return jsonify({"stock": entry.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@stock_bp.get("/movements")
@require_auth
def list_movements_route():
    try:
        location_id = get_int(request.args, "location_id", required=True)
        movements = inventory_service.list_movements(
            location_id,
            product_id=get_int(request.args, "product_id"),
            limit=get_int(request.args, "limit", default=100, minimum=1, maximum=500),
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500
