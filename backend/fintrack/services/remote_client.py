# Overview: Remote data client; table operations against the hosted project's
# REST endpoint (/rest/v1). Owns no domain state.

"""
Remote Data Client

WHY: Every table lives on the hosted backend. This module is the only place
that knows the REST dialect (eq. filters, Prefer headers, error bodies); the
entity cache above it deals in plain dict records.

AUTHENTICATION:
- The static project key is always sent as the `apikey` header
- The bearer token is the signed-in session's access token when there is
  one, otherwise the project key itself (anonymous role)

ERRORS:
- Non-2xx responses raise RemoteError carrying the provider's code, message,
  details and hint (e.g. code 23503 for a foreign-key violation)
- Transport failures (DNS, refused connection, timeout) raise RemoteError
  with code NETWORK so callers handle both the same way
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

REST_PATH = "/rest/v1"

# Error codes used by the classification in entity_service
NETWORK_ERROR = "NETWORK"
NOT_NULL_VIOLATION = "23502"
FOREIGN_KEY_VIOLATION = "23503"
UNIQUE_VIOLATION = "23505"
UNDEFINED_TABLE = "42P01"
SCHEMA_CACHE_MISS = "PGRST205"
MULTIPLE_ROWS = "PGRST116"


class RemoteError(Exception):
    """Raised when the hosted backend rejects a call or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "hint": self.hint,
            "status_code": self.status_code,
        }


def project_ref(url: str) -> str:
    """https://abcd.supabase.co -> abcd (used for provider storage keys)."""
    host = urlparse(url).hostname or "local"
    return host.split(".")[0]


def _eq_filters(filters: Mapping[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for field, value in (filters or {}).items():
        if value is None:
            params[field] = "is.null"
        elif isinstance(value, bool):
            params[field] = f"is.{str(value).lower()}"
        else:
            params[field] = f"eq.{value}"
    return params


def error_from_response(response: httpx.Response) -> RemoteError:
    """Build a RemoteError from a PostgREST error body (or a bare status)."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("message") or body.get("msg") or body.get("error_description") \
            or body.get("error") or f"HTTP {response.status_code}"
        code = body.get("code") or body.get("error_code")
        return RemoteError(
            str(message),
            code=str(code) if code is not None else None,
            details=body.get("details"),
            hint=body.get("hint"),
            status_code=response.status_code,
        )

    text = response.text.strip() or f"HTTP {response.status_code}"
    return RemoteError(text, status_code=response.status_code)


class RemoteClient:
    """
    Thin synchronous client for the hosted project's table API.

    Usage:
        remote = RemoteClient(url, anon_key)
        rows = remote.select("Suppliers", {"status": "Active"})
        remote.insert("Suppliers", {"id": "SUP001", "code": "SUP001", "name": "Acme"})
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._access_token: str | None = None
        self.http = httpx.Client(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": anon_key},
        )

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    def set_access_token(self, token: str | None) -> None:
        """Called by the auth client whenever the session changes."""
        self._access_token = token

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token or self.anon_key}"}

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Issue one call; non-2xx and transport failures raise RemoteError."""
        merged = self.auth_headers()
        if headers:
            merged.update(headers)

        try:
            response = self.http.request(method, path, params=params, json=json, headers=merged)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise RemoteError(f"Connection error: {exc}", code=NETWORK_ERROR) from exc

        if response.is_error:
            error = error_from_response(response)
            logger.warning(
                "%s %s -> %s (code=%s): %s",
                method, path, response.status_code, error.code, error.message,
            )
            raise error

        return response

    def close(self) -> None:
        self.http.close()

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def _table_path(self, table: str) -> str:
        return f"{REST_PATH}/{table}"

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        params: dict[str, Any] = {"select": columns, **_eq_filters(filters)}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        response = self.request("GET", self._table_path(table), params=params)
        data = response.json()
        return data if isinstance(data, list) else []

    def select_one(self, table: str, filters: Mapping[str, Any]) -> dict | None:
        """
        Zero-or-one row lookup.

        Returns None when nothing matches; raises RemoteError (PGRST116)
        when the filter is ambiguous.
        """
        rows = self.select(table, filters, limit=2)
        if not rows:
            return None
        if len(rows) > 1:
            raise RemoteError(
                "JSON object requested, multiple (or no) rows returned",
                code=MULTIPLE_ROWS,
                status_code=406,
            )
        return rows[0]

    def exists(self, table: str, filters: Mapping[str, Any]) -> bool:
        return bool(self.select(table, filters, columns="id", limit=1))

    def insert(self, table: str, records: dict | list[dict]) -> list[dict]:
        response = self.request(
            "POST",
            self._table_path(table),
            json=records,
            headers={"Prefer": "return=representation"},
        )
        return _rows(response)

    def update(self, table: str, filters: Mapping[str, Any], updates: dict) -> list[dict]:
        if not filters:
            raise ValueError("update requires at least one filter")
        response = self.request(
            "PATCH",
            self._table_path(table),
            params=_eq_filters(filters),
            json=updates,
            headers={"Prefer": "return=representation"},
        )
        return _rows(response)

    def delete(self, table: str, filters: Mapping[str, Any]) -> None:
        if not filters:
            raise ValueError("delete requires at least one filter")
        self.request("DELETE", self._table_path(table), params=_eq_filters(filters))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def probe(self, path: str, *, with_key: bool = True) -> httpx.Response:
        """
        Raw GET used by connection diagnostics; status codes are returned,
        not raised. Transport failures still raise RemoteError.
        """
        headers = self.auth_headers() if with_key else {"apikey": ""}
        try:
            return self.http.get(path, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteError(f"Connection error: {exc}", code=NETWORK_ERROR) from exc


def _rows(response: httpx.Response) -> list[dict]:
    if not response.content:
        return []
    data = response.json()
    if isinstance(data, dict):
        return [data]
    return data or []
