# Overview: Connection diagnostics; API key verification, project status and
# table reachability, with the last result kept in durable storage.

from __future__ import annotations

import json
import logging

from .remote_client import REST_PATH, RemoteClient, RemoteError
from ..records import ALL_COLLECTIONS
from ..time_utils import now_iso

logger = logging.getLogger(__name__)

SUPABASE_URL_KEY = "supabaseUrl"
LAST_CONNECTION_CHECK_KEY = "lastConnectionCheck"

# Gateway/server codes that mean the project itself is down or paused
OFFLINE_STATUSES = (500, 502, 503, 504)


def verify_api_key(remote: RemoteClient) -> dict:
    """
    401 means the key was rejected. 2xx and 404 both mean the key was
    accepted (the REST root has no GET handler on some deployments).
    """
    try:
        response = remote.probe(f"{REST_PATH}/")
    except RemoteError as exc:
        return {"valid": False, "status": None, "message": exc.message}

    status = response.status_code
    if status == 401:
        return {
            "valid": False,
            "status": status,
            "message": "API key rejected (401 Unauthorized). Your API key appears to be invalid or expired.",
        }
    if response.is_success or status == 404:
        return {"valid": True, "status": status, "message": "API key appears to be valid! Connection successful."}
    return {
        "valid": False,
        "status": status,
        "message": f"Unexpected response ({status}). There might be an issue with your project configuration.",
    }


def check_project_status(remote: RemoteClient) -> dict:
    try:
        response = remote.probe("/", with_key=False)
    except RemoteError as exc:
        return {"online": False, "status": None, "message": f"Cannot connect to project: {exc.message}"}

    status = response.status_code
    return {
        "online": status not in OFFLINE_STATUSES,
        "status": status,
        "message": "Project is online!" if response.is_success else f"Project returned status {status}",
    }


def check_tables(remote: RemoteClient, tables=ALL_COLLECTIONS) -> dict[str, dict]:
    results = {}
    for table in tables:
        try:
            remote.select(table, columns="id", limit=1)
            results[table] = {"accessible": True}
        except RemoteError as exc:
            results[table] = {"accessible": False, "code": exc.code, "message": exc.message}
    return results


def run_connection_check(remote: RemoteClient, storage=None, *, include_tables: bool = True) -> dict:
    """Every check at once; the summary is also recorded in durable storage."""
    result = {
        "url": remote.url,
        "checkedAt": now_iso(),
        "apiKey": verify_api_key(remote),
        "project": check_project_status(remote),
    }
    if include_tables:
        result["tables"] = check_tables(remote)
    result["success"] = result["apiKey"]["valid"] and result["project"]["online"]

    if not result["success"]:
        logger.warning("Connection check against %s failed", remote.url)

    if storage is not None:
        storage.set_item(SUPABASE_URL_KEY, remote.url)
        storage.set_item(LAST_CONNECTION_CHECK_KEY, json.dumps({
            "checkedAt": result["checkedAt"],
            "success": result["success"],
        }))
    return result
