# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/fintrack/routes/admin.py
"""
Admin routes for user management.

Provides endpoints for:
- Listing all users and users awaiting approval
- Approving or rejecting a registration
- Changing a user's role and permissions

All endpoints require an administrator.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..services import auth_service
from ..services.auth_service import UnauthorizedError, UserAdminError
from ..services.remote_client import RemoteError
from ..validation import ValidationError

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_admin
def list_users():
    workspace = g.workspace
    try:
        users = auth_service.list_users(workspace.session, workspace.remote)
    except RemoteError as e:
        current_app.logger.warning("Failed to list users: %s", e.message)
        return jsonify({"error": e.message}), 502
    return jsonify({"users": users, "count": len(users)})


@admin_bp.get("/users/pending")
@require_auth
@require_admin
def list_pending_users():
    workspace = g.workspace
    try:
        users = auth_service.list_pending_users(workspace.session, workspace.remote)
    except RemoteError as e:
        current_app.logger.warning("Failed to list pending users: %s", e.message)
        return jsonify({"error": e.message}), 502
    return jsonify({"users": users, "count": len(users)})


def _user_change(change, *args):
    workspace = g.workspace
    try:
        user = change(workspace.session, workspace.cache, *args)
    except UnauthorizedError as e:
        return jsonify({"error": str(e)}), 403
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except UserAdminError as e:
        return jsonify({"error": str(e)}), 400
    except RemoteError as e:
        current_app.logger.warning("User change failed: %s", e.message)
        return jsonify({"error": e.message}), 502
    return jsonify({"user": user}), 200


@admin_bp.post("/users/<user_id>/approve")
@require_auth
@require_admin
def approve_user(user_id: str):
    return _user_change(auth_service.approve_user, user_id)


@admin_bp.post("/users/<user_id>/reject")
@require_auth
@require_admin
def reject_user(user_id: str):
    return _user_change(auth_service.reject_user, user_id)


@admin_bp.patch("/users/<user_id>/role")
@require_auth
@require_admin
def update_user_role(user_id: str):
    """Body: {"role": "manager", "permissions": ["read", "write"]} (permissions optional)."""
    data = request.get_json(silent=True) or {}
    if not data.get("role"):
        return jsonify({"error": "role required"}), 400
    return _user_change(auth_service.update_user_role, user_id, data["role"], data.get("permissions"))
