# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import jsonify, g

from .workspace import get_workspace


def _is_authenticated() -> bool:
    return getattr(g, 'current_user', None) is not None


def require_auth(f):
    """
    Require a signed-in operator.

    Sets the following Flask g attributes:
    - g.current_user: the merged Identity of the signed-in operator
    - g.workspace: the app's Workspace

    Returns 401 when the session store holds no authenticated identity.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        workspace = get_workspace()
        identity = workspace.session.current_identity()
        if identity is None:
            return jsonify({"error": "Authentication required"}), 401

        g.current_user = identity
        g.workspace = workspace
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission: str):
    """Require a permission tag (read, write, delete, approve, admin); admins hold all."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not g.workspace.session.has_permission(permission):
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_admin(f):
    """Require the signed-in operator to be an administrator."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.workspace.session.is_admin():
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated_function
