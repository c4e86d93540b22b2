# Overview: Service-layer operations for accounts; password hashing,
# login identifier normalization and administrator user management.

"""
Account Service

WHY: Credentials live with the hosted auth provider. The only password this
application ever checks itself is the break-glass administrator password,
and it is stored as a bcrypt hash in configuration, never in code.

USER ADMINISTRATION:
- Listing, approving, rejecting and re-roling users is admin only.
- Changes go through the entity cache so they are audited and the cached
  Users collection stays in step with the table.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Break-glass passwords must meet the strength rules below
"""

from __future__ import annotations

import logging
import re

import bcrypt

from .entity_service import EntityCache
from .remote_client import RemoteClient
from ..permissions import UserStatus, encode_permissions, parse_role
from ..records import USERS, Record, user_to_local
from ..validation import ValidationError

logger = logging.getLogger(__name__)


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UnauthorizedError(Exception):
    """Raised when a non-administrator calls an administrator operation."""


class UserAdminError(Exception):
    """Raised when a user administration write is rejected."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    An empty or malformed hash never verifies.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        logger.warning("Configured password hash is not a valid bcrypt hash")
        return False


def normalize_identifier(identifier: str, admin_shortcut: str, admin_email: str) -> str:
    """The administrative shortcut (or the admin email in any case) maps to the admin email."""
    value = (identifier or "").strip()
    if value.lower() in (admin_shortcut.lower(), admin_email.lower()):
        return admin_email
    return value


def registration_profile(email: str, profile: dict | None, user_id=None) -> Record:
    """
    Users row written after sign-up.

    Defaults: username is the email prefix, role user, permissions read,
    status pending (awaiting administrator approval).
    """
    profile = profile or {}
    row: Record = {
        "username": profile.get("username") or email.split("@")[0],
        "name": profile.get("name"),
        "email": email,
        "role": profile.get("role") or "user",
        "permissions": encode_permissions(profile.get("permissions") or "read"),
        "status": profile.get("status") or UserStatus.PENDING.value,
    }
    if user_id is not None:
        row["id"] = user_id
    return row


# ----------------------------------------------------------------------
# User administration (admin only)
# ----------------------------------------------------------------------

def _require_admin(session_store) -> None:
    if not session_store.is_admin():
        raise UnauthorizedError("Unauthorized access")


def list_users(session_store, remote: RemoteClient) -> list[Record]:
    _require_admin(session_store)
    return [user_to_local(row) for row in remote.select(USERS)]


def list_pending_users(session_store, remote: RemoteClient) -> list[Record]:
    _require_admin(session_store)
    rows = remote.select(USERS, {"status": UserStatus.PENDING.value})
    return [user_to_local(row) for row in rows]


def _update_user(session_store, cache: EntityCache, user_id, updates: Record) -> Record:
    _require_admin(session_store)
    if cache.get_entity_by_id(USERS, user_id) is None:
        # a user registered after the cache was loaded
        cache.refresh_collection(USERS)
    if not cache.update_entity(USERS, user_id, updates):
        raise UserAdminError(cache.error or f"Could not update user {user_id}")
    logger.info("User %s updated: %s", user_id, sorted(updates))
    return cache.get_entity_by_id(USERS, user_id)


def approve_user(session_store, cache: EntityCache, user_id) -> Record:
    return _update_user(session_store, cache, user_id, {"status": UserStatus.ACTIVE.value})


def reject_user(session_store, cache: EntityCache, user_id) -> Record:
    return _update_user(session_store, cache, user_id, {"status": UserStatus.REJECTED.value})


def update_user_role(session_store, cache: EntityCache, user_id, role, permissions=None) -> Record:
    """Permissions are left unchanged when not supplied."""
    parsed = parse_role(role)
    if parsed is None:
        raise ValidationError(f"Unknown role: {role}")
    updates: Record = {"role": parsed.value}
    if permissions is not None:
        updates["permissions"] = encode_permissions(permissions)
    return _update_user(session_store, cache, user_id, updates)
