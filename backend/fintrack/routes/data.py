# Overview: Flask API routes for the entity cache; collection reads and
# audited create/update/delete, returning JSON responses.

"""
Data API routes

Reads are served from the cache; writes go through the cache to the hosted
backend. A rejected write answers with the cache's classified message.

PERMISSIONS:
- read for every GET
- write for POST/PATCH, approve additionally when a journal entry is
  approved or rejected
- delete for DELETE
- Users can only be written by administrators
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_permission
from ..permissions import Permission
from ..records import ALL_COLLECTIONS, JOURNAL_ENTRIES, USERS
from ..services.entity_service import (
    CollectionNotFoundError,
    DuplicateEntityError,
    EntityNotFoundError,
    ReadOnlyCollectionError,
)
from ..services.journal_service import JournalStatus
from ..services.remote_client import RemoteError

data_bp = Blueprint("data", __name__, url_prefix="/api/data")

_DECISION_STATUSES = (JournalStatus.APPROVED.value, JournalStatus.REJECTED.value)


def failure_response(cache):
    """JSON error for the cache's last rejected write."""
    failure = cache.last_failure
    if isinstance(failure, (CollectionNotFoundError, EntityNotFoundError)):
        status = 404
    elif isinstance(failure, DuplicateEntityError):
        status = 409
    elif isinstance(failure, ReadOnlyCollectionError):
        status = 405
    elif isinstance(failure, RemoteError):
        status = 400 if failure.status_code and failure.status_code < 500 else 502
    else:
        status = 400
    return jsonify({"error": cache.error}), status


def _unknown_collection(collection: str):
    if collection not in ALL_COLLECTIONS:
        return jsonify({"error": f'Table "{collection}" does not exist or is not accessible'}), 404
    return None


def _forbidden_write(collection: str, body: dict):
    session = g.workspace.session
    if collection == USERS and not session.is_admin():
        return jsonify({"error": "Admin access required"}), 403
    if (
        collection == JOURNAL_ENTRIES
        and body.get("status") in _DECISION_STATUSES
        and not session.has_permission(Permission.APPROVE)
    ):
        return jsonify({
            "error": "Permission denied",
            "required_permission": Permission.APPROVE.value,
        }), 403
    return None


@data_bp.get("/<collection>")
@require_auth
@require_permission(Permission.READ)
def list_entities(collection: str):
    """
    Query params:
    - field, value: equality filter (compared as strings)
    """
    missing = _unknown_collection(collection)
    if missing:
        return missing

    cache = g.workspace.cache
    field = request.args.get("field")
    if field:
        records = cache.filter_entities(collection, field, request.args.get("value", ""))
    else:
        records = cache.get_entities(collection)
    return jsonify({"items": records, "count": len(records)})


@data_bp.get("/<collection>/<entity_id>")
@require_auth
@require_permission(Permission.READ)
def get_entity(collection: str, entity_id: str):
    record = g.workspace.cache.get_entity_by_id(collection, entity_id)
    if record is None:
        return jsonify({"error": f'Entity with ID "{entity_id}" not found in {collection}'}), 404
    return jsonify(record)


@data_bp.post("/<collection>")
@require_auth
@require_permission(Permission.WRITE)
def create_entity(collection: str):
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "JSON object body required"}), 400

    forbidden = _forbidden_write(collection, body)
    if forbidden:
        return forbidden

    cache = g.workspace.cache
    record = cache.add_entity(collection, body)
    if record is None:
        return failure_response(cache)
    return jsonify(record), 201


@data_bp.patch("/<collection>/<entity_id>")
@require_auth
@require_permission(Permission.WRITE)
def update_entity(collection: str, entity_id: str):
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "JSON object body required"}), 400

    forbidden = _forbidden_write(collection, body)
    if forbidden:
        return forbidden

    cache = g.workspace.cache
    if not cache.update_entity(collection, entity_id, body):
        return failure_response(cache)
    return jsonify(cache.get_entity_by_id(collection, entity_id))


@data_bp.delete("/<collection>/<entity_id>")
@require_auth
@require_permission(Permission.DELETE)
def delete_entity(collection: str, entity_id: str):
    forbidden = _forbidden_write(collection, {})
    if forbidden:
        return forbidden

    cache = g.workspace.cache
    if not cache.delete_entity(collection, entity_id):
        return failure_response(cache)
    return jsonify({"deleted": entity_id}), 200


@data_bp.post("/refresh")
@require_auth
def refresh_route():
    """Reload every collection, or one collection with ?collection=."""
    cache = g.workspace.cache
    collection = request.args.get("collection")
    if collection:
        missing = _unknown_collection(collection)
        if missing:
            return missing
        try:
            records = cache.refresh_collection(collection)
        except RemoteError as e:
            current_app.logger.warning("Refresh of %s failed: %s", collection, e.message)
            return jsonify({"error": e.message}), 502
        return jsonify({"collection": collection, "count": len(records)})

    cache.initialize_data()
    return jsonify({"counts": cache.counts(), "initialized": cache.initialized})


@data_bp.get("/status")
@require_auth
def status_route():
    cache = g.workspace.cache
    return jsonify({
        "initialized": cache.initialized,
        "loading": cache.loading,
        "unsaved_changes": cache.unsaved_changes,
        "error": cache.error,
        "counts": cache.counts(),
    })


@data_bp.get("/error")
@require_auth
def get_error():
    return jsonify({"error": g.workspace.cache.error})


@data_bp.delete("/error")
@require_auth
def clear_error():
    g.workspace.cache.clear_error()
    return jsonify({"error": None})
