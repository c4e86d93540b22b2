# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/fintrack/routes/auth.py
"""
Authentication API routes

The workspace holds one signed-in operator; these routes drive its session
store. Credentials are checked by the hosted auth provider.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..workspace import get_workspace


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(workspace) -> dict:
    state = workspace.session.state
    identity = workspace.session.current_identity()
    return {
        "authenticated": state.authenticated,
        "auth_checked": state.auth_checked,
        "user": identity.to_dict() if identity else None,
        "permissions": (
            sorted(p.value for p in identity.effective_permissions(workspace.session.admin_email))
            if identity else []
        ),
        "is_admin": workspace.session.is_admin(),
        "break_glass": state.break_glass,
        "error": state.error,
    }


@auth_bp.get("/session")
def session_route():
    return jsonify(_session_payload(get_workspace()))


@auth_bp.post("/login")
def login_route():
    """
    Sign in with an email (or the administrative shortcut) and password.

    On success the cached collections are reloaded with the operator's
    bearer token, since row-level security decides what they may read.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("email") or data.get("username") or data.get("identifier")
    password = data.get("password")

    if not identifier or password is None:
        return jsonify({"error": "email and password required"}), 400

    workspace = get_workspace()
    if not workspace.session.login(identifier, password):
        return jsonify({"error": workspace.session.error or "Invalid credentials"}), 401

    try:
        workspace.cache.initialize_data()
    except Exception:
        current_app.logger.exception("Failed to load data after login")

    payload = _session_payload(workspace)
    payload["message"] = "Login successful"
    return jsonify(payload), 200


@auth_bp.post("/logout")
def logout_route():
    workspace = get_workspace()
    workspace.session.logout()
    return jsonify({"message": "Logged out"}), 200


@auth_bp.post("/register")
def register_route():
    """
    Self-registration. New accounts are pending until an administrator
    approves them; registering never signs the caller in.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "email and password required"}), 400
    if data.get("confirm_password") is not None and data["confirm_password"] != password:
        return jsonify({"error": "Passwords do not match"}), 400

    profile = {key: data.get(key) for key in ("username", "name")}
    result = get_workspace().session.register(email, password, profile)
    if not result["success"]:
        return jsonify({"error": result["message"]}), 400
    return jsonify(result), 201


@auth_bp.post("/reset-password")
def reset_password_route():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    if not email:
        return jsonify({"error": "email required"}), 400

    result = get_workspace().session.reset_password(email)
    if not result["success"]:
        return jsonify({"error": result["message"]}), 400
    return jsonify(result), 200


@auth_bp.post("/update-password")
@require_auth
def update_password_route():
    data = request.get_json(silent=True) or {}
    password = data.get("password")
    if not password:
        return jsonify({"error": "password required"}), 400
    if data.get("confirm_password") is not None and data["confirm_password"] != password:
        return jsonify({"error": "Passwords do not match"}), 400

    result = get_workspace().session.update_password(password)
    if not result["success"]:
        return jsonify({"error": result["message"]}), 400
    return jsonify(result), 200
