# Overview: Session store; the signed-in identity, its durable mirror,
# periodic reconciliation with the auth provider and auth-state events.

"""
Session Store

WHY: The operator must see their signed-in state immediately after a
restart, before the hosted provider has answered. The identity is mirrored
to durable storage and restored first; the provider is consulted afterwards
and only ever refines that state.

STATE MODEL:
- One frozen SessionState, replaced by `reduce(state, event)`.
- Every change (login, logout, restore, reconcile tick, provider push) is
  an event dispatched under one lock; nothing else writes the state or the
  durable keys currentUser / sessionTimestamp / isAuthenticated.

INVARIANTS:
- A failed or empty provider check never clears an identity that is held
  locally; only SIGNED_OUT (explicit or refused refresh) does.
- Registration never authenticates.

BREAK-GLASS: when enabled in configuration, a failed sign-in with the
administrative shortcut may authenticate a local administrator whose
password verifies against the configured bcrypt hash. Every use is logged.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace

from . import auth_service
from .auth_client import (
    SIGNED_IN,
    SIGNED_OUT,
    AuthClient,
    Session,
)
from .remote_client import RemoteClient, RemoteError
from ..identity import Identity
from ..permissions import ALL_PERMISSIONS, Role, UserStatus
from ..records import USERS
from ..time_utils import now_iso

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"
SESSION_TIMESTAMP_KEY = "sessionTimestamp"
IS_AUTHENTICATED_KEY = "isAuthenticated"
DURABLE_KEYS = (CURRENT_USER_KEY, SESSION_TIMESTAMP_KEY, IS_AUTHENTICATED_KEY)


# ----------------------------------------------------------------------
# State and events
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SessionState:
    identity: Identity | None = None
    authenticated: bool = False
    loading: bool = True
    auth_checked: bool = False
    error: str | None = None
    break_glass: bool = False


@dataclass(frozen=True)
class Restored:
    identity: Identity


@dataclass(frozen=True)
class SessionResolved:
    identity: Identity
    break_glass: bool = False


@dataclass(frozen=True)
class SessionMissing:
    pass


@dataclass(frozen=True)
class RemoteFailed:
    message: str


@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class ErrorCleared:
    pass


def reduce(state: SessionState, event) -> SessionState:
    """Pure transition function; the only place session state changes."""
    if isinstance(event, Restored):
        return replace(state, identity=event.identity, authenticated=True)
    if isinstance(event, SessionResolved):
        return replace(
            state,
            identity=event.identity,
            authenticated=True,
            loading=False,
            auth_checked=True,
            error=None,
            break_glass=event.break_glass,
        )
    if isinstance(event, SessionMissing):
        if state.identity is None:
            return replace(state, authenticated=False, loading=False, auth_checked=True)
        return replace(state, loading=False, auth_checked=True)
    if isinstance(event, RemoteFailed):
        return replace(state, loading=False, auth_checked=True, error=event.message)
    if isinstance(event, SignedOut):
        return SessionState(loading=False, auth_checked=True)
    if isinstance(event, ErrorCleared):
        return replace(state, error=None)
    raise TypeError(f"Unknown session event: {event!r}")


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

class SessionStore:
    """
    Usage:
        store = SessionStore(auth, remote, storage, admin_email="admin@kiosc.com")
        store.restore_from_durable_storage()
        store.initialize()
        if store.login("admin", password):
            ...
    """

    def __init__(
        self,
        auth: AuthClient,
        remote: RemoteClient,
        storage,
        *,
        admin_email: str,
        admin_shortcut: str = "admin",
        break_glass_enabled: bool = False,
        break_glass_hash: str = "",
        reset_redirect: str | None = None,
    ):
        self.auth = auth
        self.remote = remote
        self.storage = storage
        self.admin_email = admin_email
        self.admin_shortcut = admin_shortcut
        self.break_glass_enabled = break_glass_enabled
        self.break_glass_hash = break_glass_hash
        self.reset_redirect = reset_redirect
        self._state = SessionState()
        self._lock = threading.RLock()
        self._subscription = auth.on_auth_state_change(self._on_auth_event)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def current_identity(self) -> Identity | None:
        return self._state.identity if self._state.authenticated else None

    @property
    def is_authenticated(self) -> bool:
        return self._state.authenticated

    @property
    def error(self) -> str | None:
        return self._state.error

    def clear_error(self) -> None:
        self.dispatch(ErrorCleared())

    def dispatch(self, event) -> SessionState:
        with self._lock:
            old = self._state
            new = reduce(old, event)
            self._state = new
            self._mirror(old, new, event)
            return new

    def _mirror(self, old: SessionState, new: SessionState, event) -> None:
        """Keep the durable keys in step with the state (called under the lock)."""
        if isinstance(event, SignedOut) or (old.authenticated and not new.authenticated):
            for key in DURABLE_KEYS:
                self.storage.remove_item(key)
            return
        if isinstance(event, Restored):
            return
        if new.authenticated and new.identity is not None and (
            new.identity != old.identity or not old.authenticated
        ):
            self.storage.set_item(CURRENT_USER_KEY, json.dumps(new.identity.to_dict()))
            self.storage.set_item(IS_AUTHENTICATED_KEY, "true")
            self.storage.set_item(SESSION_TIMESTAMP_KEY, now_iso())

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------

    def _fetch_profile(self, email: str | None, **filters) -> dict | None:
        if not email and not filters:
            return None
        try:
            return self.remote.select_one(USERS, filters or {"email": email})
        except RemoteError as exc:
            logger.warning("Could not load user profile: %s", exc.message)
            return None

    def _resolve(self, session: Session) -> Identity:
        identity = Identity.from_auth_user(session.user)
        return identity.merged_with_profile(self._fetch_profile(identity.email))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def restore_from_durable_storage(self) -> bool:
        stored = self.storage.get_item(CURRENT_USER_KEY)
        flag = self.storage.get_item(IS_AUTHENTICATED_KEY)
        if not stored or flag != "true":
            return False
        try:
            identity = Identity.from_dict(json.loads(stored))
        except (ValueError, TypeError):
            logger.warning("Discarding unreadable stored identity")
            for key in DURABLE_KEYS:
                self.storage.remove_item(key)
            return False
        self.dispatch(Restored(identity))
        logger.info("Restored session for %s", identity.email)
        return True

    def initialize(self) -> SessionState:
        """Ask the provider for the session; never clears a restored identity on failure."""
        try:
            session = self.auth.get_session()
        except RemoteError as exc:
            logger.warning("Session check failed: %s", exc.message)
            return self.dispatch(RemoteFailed(exc.message))

        if session is None:
            return self.dispatch(SessionMissing())
        return self.dispatch(SessionResolved(self._resolve(session)))

    def reconcile(self) -> SessionState:
        """One background tick; same rules as initialize."""
        return self.initialize()

    def _on_auth_event(self, event: str, session: Session | None) -> None:
        if event == SIGNED_OUT:
            self.dispatch(SignedOut())
            return
        if event == SIGNED_IN:
            # login resolves the identity itself
            return
        if session is not None:
            self.dispatch(SessionResolved(self._resolve(session)))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str) -> bool:
        email = auth_service.normalize_identifier(identifier, self.admin_shortcut, self.admin_email)
        try:
            session = self.auth.sign_in_with_password(email, password)
        except RemoteError as exc:
            logger.info("Sign-in failed for %s: %s", email, exc.message)
            if email == self.admin_email and self.break_glass_enabled:
                return self._break_glass_login(password)
            self.dispatch(RemoteFailed(exc.message))
            return False

        self.dispatch(SessionResolved(self._resolve(session)))
        return True

    def _break_glass_login(self, password: str) -> bool:
        if not auth_service.verify_password(password, self.break_glass_hash):
            logger.warning("Break-glass admin login refused: password did not verify")
            self.dispatch(RemoteFailed("Invalid password for admin user"))
            return False

        profile = self._fetch_profile(None, username=self.admin_shortcut)
        identity = Identity(
            id=str(profile["id"]) if profile and profile.get("id") is not None else "admin-id",
            email=self.admin_email,
            username=self.admin_shortcut,
            name=(profile or {}).get("name") or "Administrator",
            role=Role.ADMIN,
            permissions=ALL_PERMISSIONS,
            status=UserStatus.ACTIVE,
            app_metadata={"role": Role.ADMIN.value},
            user_metadata={"name": "Administrator"},
        )
        logger.warning("Break-glass admin login used for %s", self.admin_email)
        self.dispatch(SessionResolved(identity, break_glass=True))
        return True

    def logout(self) -> None:
        """Remote sign-out only with a live provider session; local state is always cleared."""
        try:
            if self.auth.current_session is not None:
                self.auth.sign_out()
        except RemoteError as exc:
            logger.warning("Remote sign-out failed: %s", exc.message)
        finally:
            self.dispatch(SignedOut())

    def register(self, email: str, password: str, profile: dict | None = None) -> dict:
        """
        Create the auth identity and its Users row. Never authenticates.

        Returns {"success", "status", "message", "requires_email_verification"}.
        """
        profile = profile or {}
        try:
            result = self.auth.sign_up(
                email,
                password,
                data={"name": profile.get("name"), "role": profile.get("role") or "user"},
            )
        except RemoteError as exc:
            logger.info("Registration failed for %s: %s", email, exc.message)
            self.dispatch(RemoteFailed(exc.message))
            return {"success": False, "message": exc.message}

        user = result["user"] or {}
        row = auth_service.registration_profile(email, profile, user.get("id"))
        try:
            self.remote.insert(USERS, row)
        except RemoteError as exc:
            # the auth identity exists; an administrator can add the profile later
            logger.error("Could not create profile for %s: %s", email, exc.message)

        pending = row["status"] == UserStatus.PENDING.value
        return {
            "success": True,
            "status": row["status"],
            "requires_email_verification": user.get("identities") == [],
            "message": (
                "Your account has been created but requires admin approval."
                if pending else "Your account has been created successfully."
            ),
        }

    def reset_password(self, email: str) -> dict:
        try:
            self.auth.reset_password_for_email(email, self.reset_redirect)
        except RemoteError as exc:
            self.dispatch(RemoteFailed(exc.message))
            return {"success": False, "message": exc.message}
        return {"success": True, "message": "Password reset email sent. Please check your inbox."}

    def update_password(self, new_password: str) -> dict:
        try:
            self.auth.update_user(password=new_password)
        except RemoteError as exc:
            self.dispatch(RemoteFailed(exc.message))
            return {"success": False, "message": exc.message}
        return {"success": True, "message": "Password updated successfully."}

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def has_permission(self, permission) -> bool:
        identity = self.current_identity()
        return identity is not None and identity.has_permission(permission, self.admin_email)

    def is_admin(self) -> bool:
        identity = self.current_identity()
        return identity is not None and identity.is_admin(self.admin_email)

    def close(self) -> None:
        self._subscription.unsubscribe()


class SessionReconciler:
    """Daemon thread calling SessionStore.reconcile every `interval` seconds."""

    def __init__(self, store: SessionStore, interval: float = 300.0):
        self.store = store
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-reconciler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.store.reconcile()
            except Exception:
                logger.exception("Session reconcile tick failed")
