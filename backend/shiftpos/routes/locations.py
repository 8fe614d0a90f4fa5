# Overview: Flask API routes for selling locations.

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN
from ..services import catalog_service
from ..validation import get_bool

locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
@require_auth
def list_locations_route():
    locations = catalog_service.list_locations(include_inactive=get_bool(request.args, "include_inactive"))
    return {"items": [loc.to_dict() for loc in locations], "count": len(locations)}, 200


@locations_bp.get("/<int:location_id>")
@require_auth
def get_location_route(location_id: int):
    try:
        return {"location": catalog_service.get_location(location_id).to_dict()}, 200
    except ServiceError as e:
        return e.to_dict(), e.http_status


@locations_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_location_route():
    try:
        location = catalog_service.create_location(request.get_json(silent=True) or {})
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create location")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"location": location.to_dict()}, 201


@locations_bp.put("/<int:location_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_location_route(location_id: int):
    try:
        location = catalog_service.update_location(location_id, request.get_json(silent=True) or {})
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update location")
        return {"error": "INTERNAL", "message": "Internal server error"}, 500
    return {"location": location.to_dict()}, 200


@locations_bp.delete("/<int:location_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_location_route(location_id: int):
    """Soft-delete: an inactive location refuses new shifts and sales."""
    try:
        catalog_service.deactivate_location(location_id)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    return {"ok": True}, 200
