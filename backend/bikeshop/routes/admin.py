# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes for user management.

- list users (pending ones included, so they can be approved)
- assign a role (approving a pending user)
- delete a user

All endpoints require MANAGE_USERS.
"""

from flask import Blueprint, request, jsonify

from ..services import auth_service
from ..decorators import require_auth, require_permission, handle_domain_errors, current_actor
from ..permissions import MANAGE_USERS

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@require_auth
@require_permission(MANAGE_USERS)
@handle_domain_errors("list users")
def list_users():
    users = auth_service.list_users(actor=current_actor())
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@admin_bp.patch("/users/<int:user_id>/role")
@require_auth
@require_permission(MANAGE_USERS)
@handle_domain_errors("assign role")
def set_role(user_id: int):
    """Body: {"role": "admin" | "editor" | "viewer" | "pending"}"""
    data = request.get_json(silent=True) or {}
    user = auth_service.set_role(user_id, data.get("role"), actor=current_actor())
    return jsonify({"user": user.to_dict()})


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_permission(MANAGE_USERS)
@handle_domain_errors("delete user")
def delete_user(user_id: int):
    auth_service.delete_user(user_id, actor=current_actor())
    return "", 204
