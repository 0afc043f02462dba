# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Self-registration: the first account becomes admin, later ones wait in
  "pending" until an admin assigns a role
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..permissions import permissions_for_role
from ..decorators import require_auth, handle_domain_errors


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
@handle_domain_errors("register user")
def register_route():
    """
    Register a new account.

    Body: username, email, password, display_name (optional)
    """
    data = request.get_json(silent=True) or {}
    user = auth_service.register_user(
        username=data.get("username"),
        email=data.get("email"),
        password=data.get("password"),
        display_name=data.get("display_name"),
    )
    current_app.logger.info("Registered user %s with role %s", user.username, user.role)
    return jsonify({
        "user": user.to_dict(),
        "pending_approval": user.role == "pending",
    }), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    Pending users can log in; they simply hold no permissions.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(username, password, ip_address=ip_address, user_agent=user_agent)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(permissions_for_role(user.role)),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session token used for this request."""
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user, role and effective permissions."""
    return jsonify({
        "user": g.current_user.to_dict(),
        "permissions": sorted(g.actor.permissions),
        "session": g.session_context.session.to_dict(),
    }), 200
