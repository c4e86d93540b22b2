# backend/fintrack/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Hosted project (PostgREST under /rest/v1, auth under /auth/v1)
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "http://127.0.0.1:54321")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    REMOTE_TIMEOUT = float(os.environ.get("REMOTE_TIMEOUT", "10"))

    # Durable local storage (currentUser, isAuthenticated, ...)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fintrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session reconciliation
    SESSION_REFRESH_INTERVAL = float(os.environ.get("SESSION_REFRESH_INTERVAL", "300"))
    SESSION_RECONCILER_ENABLED = _env_bool("SESSION_RECONCILER_ENABLED", "true")

    # Administrative shortcut: "admin" logs in as ADMIN_EMAIL
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@kiosc.com")
    ADMIN_SHORTCUT = os.environ.get("ADMIN_SHORTCUT", "admin")

    # Break-glass admin login when the auth provider is unreachable.
    # Off unless explicitly enabled; the hash comes from `flask auth hash-password`.
    BREAK_GLASS_ENABLED = _env_bool("BREAK_GLASS_ENABLED")
    BREAK_GLASS_PASSWORD_HASH = os.environ.get("BREAK_GLASS_PASSWORD_HASH", "")

    PASSWORD_RESET_REDIRECT = os.environ.get(
        "PASSWORD_RESET_REDIRECT", "http://localhost:3000/reset-password"
    )

    # Load every collection on startup
    INITIALIZE_DATA_ON_STARTUP = _env_bool("INITIALIZE_DATA_ON_STARTUP", "true")
