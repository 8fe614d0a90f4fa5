# Overview: Flask API routes for customers and store credit.

"""
Customer routes.

credit_balance_cents is read-only here except through the top-up route;
sales debit it through the sale transaction only.
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN
from ..services import credit_service
from ..validation import MAX_PRICE_CENTS, get_bool, get_int

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    try:
        customers = credit_service.list_customers(
            search=request.args.get("q"),
            include_inactive=get_bool(request.args, "include_inactive"),
            limit=get_int(request.args, "limit", default=100, minimum=1, maximum=500),
        )
    except ServiceError as e:
        return e.to_dict(), e.http_status
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}, 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    """Opening credit_balance_cents may only be set by an administrator."""
    payload = request.get_json(silent=True) or {}
    try:
        if payload.get("credit_balance_cents") and not g.current_user.is_admin:
            return {
                "error": "FORBIDDEN",
                "message": "Only administrators can grant store credit",
                "details": {},
            }, 403
        customer = credit_service.create_customer(payload, actor=g.current_user)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"customer": customer.to_dict()}, 201


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return {"customer": credit_service.get_customer(customer_id).to_dict()}, 200
    except ServiceError as e:
        return e.to_dict(), e.http_status


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        customer = credit_service.update_customer(customer_id, request.get_json(silent=True) or {})
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"customer": customer.to_dict()}, 200


@customers_bp.post("/<int:customer_id>/credit")
@require_auth
@require_role(ROLE_ADMIN)
def top_up_credit_route(customer_id: int):
    """Body: amount_cents (> 0), reason (optional)."""
    data = request.get_json(silent=True) or {}
    try:
        amount = get_int(data, "amount_cents", required=True, minimum=1, maximum=MAX_PRICE_CENTS)
        customer = credit_service.top_up(customer_id, amount, actor=g.current_user, reason=data.get("reason"))
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to top up credit")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"customer": customer.to_dict()}, 200


@customers_bp.get("/<int:customer_id>/credit-transactions")
@require_auth
def list_credit_transactions_route(customer_id: int):
    try:
        txns = credit_service.list_transactions(
            customer_id,
            limit=get_int(request.args, "limit", default=100, minimum=1, maximum=500),
        )
    except ServiceError as e:
        return e.to_dict(), e.http_status
    return {"items": [t.to_dict() for t in txns], "count": len(txns)}, 200
