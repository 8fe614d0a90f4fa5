# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import ServiceError
from ..services import sales_service
from ..validation import get_datetime, get_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create and commit a sale.

    Sellers sell inside their open shift; admins may pass location_id to
    sell directly against a location. A 503 means the outcome is unknown
    and the sale was not recorded; it is never retried server-side.
    """
    try:
        data = request.get_json(silent=True)
        sale_request = sales_service.parse_sale_request(data)
        sale = sales_service.create_sale(sale_request, g.current_user)
        return jsonify({"sale": sale.to_dict()}), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, actor=g.current_user)
        return jsonify({"sale": sale.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: location_id, seller_id, shift_id, customer_id,
    payment_method, start, end (ISO-8601), limit (max 500).
    """
    try:
        args = request.args
        sales = sales_service.list_sales(
            actor=g.current_user,
            location_id=get_int(args, "location_id"),
            seller_id=get_int(args, "seller_id"),
            shift_id=get_int(args, "shift_id"),
            customer_id=get_int(args, "customer_id"),
            payment_method=args.get("payment_method"),
            start=get_datetime(args, "start"),
            end=get_datetime(args, "end"),
            limit=get_int(args, "limit", default=100, minimum=1, maximum=500),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500
