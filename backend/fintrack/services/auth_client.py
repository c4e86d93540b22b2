# Overview: Auth sub-protocol client (/auth/v1); sign-up, sign-in, session
# retrieval with refresh, sign-out, password reset and auth-state events.

"""
Auth Client

WHY: The hosted provider owns credentials and tokens. This client holds the
provider session (access + refresh token), keeps the table client's bearer
token in sync, and notifies subscribers when the session changes, the same
way the provider's own SDK does.

EVENTS (delivered as callback(event, session)):
- SIGNED_IN        after a successful password sign-in
- TOKEN_REFRESHED  after an expired access token was refreshed
- USER_UPDATED     after update_user
- SIGNED_OUT       after sign_out, or when the provider refuses a refresh
                   (hard expiry). A 5xx or transport failure during a
                   refresh raises RemoteError and keeps the session

PERSISTENCE: when a storage object is supplied the session is written under
the provider key `sb-<project-ref>-auth-token` so it survives a restart.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from .remote_client import RemoteClient, RemoteError, project_ref
from ..time_utils import from_epoch, parse_iso_datetime, to_utc_z, utcnow

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth/v1"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

# Refresh slightly before the provider would reject the token
EXPIRY_MARGIN = timedelta(seconds=30)


class AuthError(RemoteError):
    """Raised when the auth provider rejects a request (bad credentials, etc.)."""


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    user: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: dict) -> "Session":
        expires_at = from_epoch(payload.get("expires_at"))
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = utcnow() + timedelta(seconds=int(payload["expires_in"]))
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            user=payload.get("user") or {},
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=parse_iso_datetime(data.get("expires_at")),
            user=data.get("user") or {},
        )

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": to_utc_z(self.expires_at),
            "user": self.user,
        }

    def is_expired(self, margin: timedelta = EXPIRY_MARGIN) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= utcnow() + margin

    @property
    def email(self) -> str | None:
        return self.user.get("email")


class Subscription:
    """Handle returned by on_auth_state_change."""

    def __init__(self, client: "AuthClient", callback: Callable):
        self._client = client
        self.callback = callback

    def unsubscribe(self) -> None:
        self._client._remove_listener(self.callback)


def _is_refusal(exc: RemoteError) -> bool:
    """A 4xx answer is the provider saying no; 5xx and transport errors are outages."""
    return exc.status_code is not None and 400 <= exc.status_code < 500


def _auth_error(exc: RemoteError) -> AuthError:
    return AuthError(
        exc.message,
        code=exc.code,
        details=exc.details,
        hint=exc.hint,
        status_code=exc.status_code,
    )


class AuthClient:
    def __init__(self, remote: RemoteClient, *, storage=None, storage_key: str | None = None):
        self.remote = remote
        self.storage = storage
        self.storage_key = storage_key or f"sb-{project_ref(remote.url)}-auth-token"
        self._session: Session | None = None
        self._listeners: list[Callable[[str, Session | None], Any]] = []
        self._lock = threading.RLock()
        self._load_persisted_session()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_auth_state_change(self, callback: Callable[[str, Session | None], Any]) -> Subscription:
        with self._lock:
            self._listeners.append(callback)
        return Subscription(self, callback)

    def _remove_listener(self, callback) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, event: str, session: Session | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, session)
            except Exception:
                logger.exception("Auth state listener failed for %s", event)

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    def _load_persisted_session(self) -> None:
        if self.storage is None:
            return
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return
        try:
            self._set_session(Session.from_dict(json.loads(raw)), persist=False)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable persisted auth session")
            self.storage.remove_item(self.storage_key)

    def _set_session(self, session: Session | None, *, persist: bool = True) -> None:
        with self._lock:
            self._session = session
        self.remote.set_access_token(session.access_token if session else None)
        if self.storage is None or not persist:
            return
        if session is None:
            self.storage.remove_item(self.storage_key)
        else:
            self.storage.set_item(self.storage_key, json.dumps(session.to_dict()))

    @property
    def current_session(self) -> Session | None:
        """The locally held session, without any refresh attempt."""
        return self._session

    def _post(self, path: str, *, params=None, json_body=None, bearer: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {bearer}"} if bearer else None
        try:
            response = self.remote.request(
                "POST", f"{AUTH_PATH}{path}", params=params, json=json_body, headers=headers
            )
        except RemoteError as exc:
            if not _is_refusal(exc):
                # outage; keep it a plain RemoteError
                raise
            raise _auth_error(exc) from exc
        return response.json() if response.content else {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sign_up(self, email: str, password: str, data: dict | None = None) -> dict:
        """
        Create an auth identity.

        Returns {"user": {...}, "session": Session | None}. The provider only
        returns a session when email confirmation is disabled; sign-up never
        establishes the local session here.
        """
        payload = self._post("/signup", json_body={"email": email, "password": password, "data": data or {}})
        if "access_token" in payload:
            return {"user": payload.get("user") or {}, "session": Session.from_response(payload)}
        return {"user": payload.get("user") or payload, "session": None}

    def sign_in_with_password(self, email: str, password: str) -> Session:
        payload = self._post(
            "/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        session = Session.from_response(payload)
        self._set_session(session)
        logger.info("Signed in as %s", session.email)
        self._notify(SIGNED_IN, session)
        return session

    def refresh_session(self) -> Session | None:
        current = self._session
        if current is None or not current.refresh_token:
            return None
        try:
            payload = self._post(
                "/token",
                params={"grant_type": "refresh_token"},
                json_body={"refresh_token": current.refresh_token},
            )
        except AuthError:
            # refresh refused: hard expiry
            logger.info("Refresh token rejected; session ended")
            self._set_session(None)
            self._notify(SIGNED_OUT, None)
            return None

        session = Session.from_response(payload)
        self._set_session(session)
        self._notify(TOKEN_REFRESHED, session)
        return session

    def get_session(self) -> Session | None:
        """
        Current session, refreshed first when the access token has expired.

        Transport failures during the refresh raise RemoteError; the held
        session is left untouched so a later call can retry.
        """
        current = self._session
        if current is None:
            return None
        if current.is_expired():
            return self.refresh_session()
        return current

    def sign_out(self) -> None:
        current = self._session
        try:
            if current is not None:
                self._post("/logout", bearer=current.access_token)
        finally:
            self._set_session(None)
            self._notify(SIGNED_OUT, None)

    def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._post("/recover", params=params, json_body={"email": email})

    def update_user(self, *, password: str | None = None, data: dict | None = None) -> dict:
        current = self._session
        if current is None:
            raise AuthError("Auth session missing!", code="session_not_found", status_code=401)

        body: dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if data is not None:
            body["data"] = data

        try:
            response = self.remote.request(
                "PUT",
                f"{AUTH_PATH}/user",
                json=body,
                headers={"Authorization": f"Bearer {current.access_token}"},
            )
        except RemoteError as exc:
            if not _is_refusal(exc):
                raise
            raise _auth_error(exc) from exc

        user = response.json() if response.content else {}
        session = Session(
            access_token=current.access_token,
            refresh_token=current.refresh_token,
            expires_at=current.expires_at,
            user=user or current.user,
        )
        self._set_session(session)
        self._notify(USER_UPDATED, session)
        return user
