# Overview: Flask API routes for shift operations; parses input and returns JSON responses.

"""
Shift API routes

Sellers open, view and close their own shifts. Administrators may open a
shift for any seller (seller_id) and close any shift.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import AccessDeniedError, ServiceError
from ..services import shift_service
from ..validation import MAX_PRICE_CENTS, ValidationError, get_datetime, get_int

shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _error(e: ServiceError):
    return jsonify(e.to_dict()), e.http_status


def _internal(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@shifts_bp.post("/open")
@require_auth
def open_shift_route():
    """
    Open a shift.

    Body: opening_float_cents (>= 0), location_id (defaults to the user's
    home location), seller_id (admins only).
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user

        seller_id = get_int(data, "seller_id", default=user.id)
        if seller_id != user.id and not user.is_admin:
            raise AccessDeniedError("Sellers can only open their own shift", {"seller_id": seller_id})

        location_id = get_int(data, "location_id", default=user.location_id)
        if location_id is None:
            raise ValidationError("location_id is required", {"field": "location_id"})

        opening_float = get_int(data, "opening_float_cents", required=True, minimum=0, maximum=MAX_PRICE_CENTS)

        shift = shift_service.open_shift(seller_id, location_id, opening_float)
        return jsonify({"shift": shift.to_dict()}), 201

    except ServiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to open shift")


@shifts_bp.post("/<int:shift_id>/close")
@require_auth
def close_shift_route(shift_id: int):
    """
    Close a shift and reconcile cash.

    Body: closing_cash_cents (>= 0), notes (optional).
    """
    try:
        data = request.get_json(silent=True) or {}
        closing_cash = get_int(data, "closing_cash_cents", required=True, minimum=0, maximum=MAX_PRICE_CENTS)
        notes = data.get("notes")

        shift = shift_service.close_shift(shift_id, closing_cash, notes, actor=g.current_user)
        return jsonify({"shift": shift.to_dict()}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to close shift")


@shifts_bp.get("/active")
@require_auth
def active_shift_route():
    """The caller's open shift with live totals, or null."""
    try:
        user = g.current_user
        seller_id = get_int(request.args, "seller_id", default=user.id)
        if seller_id != user.id and not user.is_admin:
            raise AccessDeniedError("Sellers can only view their own shift", {"seller_id": seller_id})

        shift = shift_service.get_active_shift(seller_id)
        if shift is None:
            return jsonify({"shift": None}), 200

        data = shift.to_dict()
        data["summary"] = shift_service.shift_totals(shift)
        return jsonify({"shift": data}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to load active shift")


@shifts_bp.get("")
@require_auth
def list_shifts_route():
    try:
        user = g.current_user
        args = request.args
        seller_id = get_int(args, "seller_id")
        if not user.is_admin:
            seller_id = user.id

        shifts = shift_service.list_shifts(
            seller_id=seller_id,
            location_id=get_int(args, "location_id"),
            status=args.get("status"),
            start=get_datetime(args, "start"),
            end=get_datetime(args, "end"),
            limit=get_int(args, "limit", default=100, minimum=1, maximum=500),
        )
        return jsonify({"items": [s.to_dict() for s in shifts], "count": len(shifts)}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to list shifts")


@shifts_bp.get("/<int:shift_id>")
@require_auth
def get_shift_route(shift_id: int):
    try:
        return jsonify({"shift": shift_service.get_shift_summary(shift_id, actor=g.current_user)}), 200
    except ServiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to load shift")
