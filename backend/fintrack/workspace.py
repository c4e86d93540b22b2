# Overview: The single-operator workspace; wires the remote client, auth
# client, session store and entity cache for one Flask app.

"""
Workspace

WHY: The browser original held one signed-in operator per tab. This app
plays the same role for one local operator, so the stores are built once per
app and shared by every request (and by the reconciler thread).

STARTUP (first request or first CLI command that needs it):
1. restore the identity from durable storage
2. ask the auth provider for the session
3. load every collection (INITIALIZE_DATA_ON_STARTUP)
4. start the background session reconciler (SESSION_RECONCILER_ENABLED)
"""

from __future__ import annotations

import logging
import threading

import httpx
from flask import Flask, current_app

from .services.auth_client import AuthClient
from .services.entity_service import EntityCache
from .services.remote_client import RemoteClient
from .services.session_service import SessionReconciler, SessionStore
from .services.storage_service import DatabaseStorage

logger = logging.getLogger(__name__)

EXTENSION_KEY = "fintrack"


class Workspace:
    def __init__(self, app: Flask, transport: httpx.BaseTransport | None = None):
        config = app.config
        self.storage = DatabaseStorage(app)
        self.remote = RemoteClient(
            config["SUPABASE_URL"],
            config["SUPABASE_ANON_KEY"],
            timeout=config["REMOTE_TIMEOUT"],
            transport=transport,
        )
        self.auth = AuthClient(self.remote, storage=self.storage)
        self.session = SessionStore(
            self.auth,
            self.remote,
            self.storage,
            admin_email=config["ADMIN_EMAIL"],
            admin_shortcut=config["ADMIN_SHORTCUT"],
            break_glass_enabled=config["BREAK_GLASS_ENABLED"],
            break_glass_hash=config["BREAK_GLASS_PASSWORD_HASH"],
            reset_redirect=config["PASSWORD_RESET_REDIRECT"],
        )
        self.cache = EntityCache(self.remote, actor_provider=self.session.current_identity)
        self.reconciler = SessionReconciler(self.session, config["SESSION_REFRESH_INTERVAL"])

        self._load_data = config["INITIALIZE_DATA_ON_STARTUP"]
        self._reconcile = config["SESSION_RECONCILER_ENABLED"]
        self._started = False
        self._start_lock = threading.Lock()

    def ensure_started(self) -> None:
        with self._start_lock:
            if self._started:
                return
            self._started = True
            self.session.restore_from_durable_storage()
            self.session.initialize()
            if self._load_data:
                self.cache.initialize_data()
            if self._reconcile:
                self.reconciler.start()
            logger.info("Workspace started against %s", self.remote.url)

    def shutdown(self) -> None:
        self.reconciler.stop()
        self.session.close()
        self.remote.close()


def get_workspace() -> Workspace:
    return current_app.extensions[EXTENSION_KEY]
