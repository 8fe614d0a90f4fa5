# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes.

SECURITY: All routes require authentication.
- Read operations are open to every authenticated user
- Write operations require the ADMIN role
"""
from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN
from ..services import catalog_service
from ..validation import get_bool, get_int

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - include_inactive: bool (optional)
    - q: str (optional) - name or SKU search
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    try:
        return catalog_service.list_products(
            include_inactive=get_bool(request.args, "include_inactive"),
            search=request.args.get("q"),
            page=get_int(request.args, "page"),
            per_page=get_int(request.args, "per_page"),
        )
    except ServiceError as e:
        return e.to_dict(), e.http_status


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return {"product": catalog_service.get_product(product_id).to_dict()}, 200
    except ServiceError as e:
        return e.to_dict(), e.http_status


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.create_product(payload)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    """Partial update; a price change publishes a price.changed event after commit."""
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.update_product(product_id, payload)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"product": product.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    """Soft-delete (deactivate) a product."""
    try:
        catalog_service.deactivate_product(product_id)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    return {"ok": True}, 200
