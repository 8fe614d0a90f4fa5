# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

Users are created by administrators (CLI `flask users create` or
POST /api/auth/users); there is no self-registration.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_SELLER
from ..services import auth_service
from ..services import session_service
from ..validation import get_int


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "VALIDATION", "message": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "UNAUTHORIZED", "message": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
        }), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session token used for this request."""
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.post("/users")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    """Create a seller or admin account (admins only)."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.create_user(
            data.get("username"),
            data.get("password"),
            role=data.get("role") or ROLE_SELLER,
            email=data.get("email"),
            location_id=get_int(data, "location_id"),
        )
        return jsonify({"user": user.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "INTERNAL", "message": "Internal server error"}), 500
