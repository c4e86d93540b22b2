# backend/fintrack/routes/system.py
"""
System health and diagnostics endpoints.

Reports hosted-project reachability, the local durable store and the cache,
and exposes the connection checks and first-run setup.
"""

import time
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_admin
from ..extensions import db
from ..models import StorageItem
from ..services import diagnostics_service, seed_service
from ..workspace import get_workspace

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_local_storage_health() -> dict:
    """Local durable store (SQLite) round trip."""
    start_time = time.time()
    try:
        keys = db.session.query(StorageItem).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": {"keys": keys}}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Local storage health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_remote_health(workspace) -> dict:
    start_time = time.time()
    project = diagnostics_service.check_project_status(workspace.remote)
    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy" if project["online"] else "unhealthy",
        "latency_ms": round(elapsed_ms, 2),
        "details": project,
    }


@system_bp.get("/health")
def health():
    workspace = get_workspace()
    cache = workspace.cache
    checks = {
        "local_storage": check_local_storage_health(),
        "remote": check_remote_health(workspace),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "cache": {
            "initialized": cache.initialized,
            "error": cache.error,
        },
        "authenticated": workspace.session.is_authenticated,
    }), (200 if healthy else 503)


@system_bp.get("/connection")
def connection_check():
    """API key, project status and (with ?tables=true) table reachability."""
    workspace = get_workspace()
    include_tables = request.args.get("tables", "false").lower() == "true"
    result = diagnostics_service.run_connection_check(
        workspace.remote, workspace.storage, include_tables=include_tables
    )
    return jsonify(result)


@system_bp.post("/setup")
@require_auth
@require_admin
def setup_database():
    workspace = get_workspace()
    result = seed_service.setup_database(
        workspace.remote,
        workspace.storage,
        admin_email=current_app.config["ADMIN_EMAIL"],
    )
    workspace.cache.initialize_data()
    return jsonify(result.to_dict()), (200 if result.success else 207)


@system_bp.get("/setup")
def setup_status():
    workspace = get_workspace()
    return jsonify({"setup": seed_service.is_database_setup(workspace.remote, workspace.storage)})
