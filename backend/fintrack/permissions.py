# Overview: Permission tags, roles and account statuses for identities.
# Permissions are a set internally; the Users table stores them as a
# comma-delimited string, converted only at the remote boundary.

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    APPROVE = "approve"
    ADMIN = "admin"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    VIEWER = "viewer"


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"


ALL_PERMISSIONS = frozenset(Permission)

PERMISSION_SEPARATOR = ","


def decode_permissions(value) -> frozenset[Permission]:
    """
    Parse the wire format ("read,write") or any iterable of tags into a set.

    Unknown tags are dropped with a warning; the hosted table is free-text.
    """
    if value is None or value == "":
        return frozenset()
    if isinstance(value, str):
        tags: Iterable = value.split(PERMISSION_SEPARATOR)
    else:
        tags = value

    result = set()
    for tag in tags:
        if isinstance(tag, Permission):
            result.add(tag)
            continue
        tag = str(tag).strip().lower()
        if not tag:
            continue
        try:
            result.add(Permission(tag))
        except ValueError:
            logger.warning("Ignoring unknown permission tag %r", tag)
    return frozenset(result)


def encode_permissions(permissions) -> str:
    """Set of permissions -> "admin,read,write" (sorted, stable)."""
    if isinstance(permissions, str):
        permissions = decode_permissions(permissions)
    return PERMISSION_SEPARATOR.join(sorted(p.value for p in decode_permissions(permissions)))


def parse_role(value) -> Role | None:
    if value is None or value == "":
        return None
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown role %r", value)
        return None


def parse_status(value, default: UserStatus | None = None) -> UserStatus | None:
    if value is None or value == "":
        return default
    try:
        return UserStatus(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown user status %r", value)
        return default
