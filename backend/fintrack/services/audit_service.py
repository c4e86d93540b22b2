# Overview: Audit trail builder; derives immutable AuditLog entries for
# mutating operations.

"""
Audit Trail Invariants (authoritative)

- One entry per mutating operation (CREATE, UPDATE, DELETE, APPROVE, REJECT).
- Entries are never updated or deleted.
- The builder is pure: no I/O. The entity cache persists the result remotely
  and locally.
- When no one is signed in the actor is the "system" sentinel.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from ..encoding import dumps
from ..identity import Identity
from ..time_utils import monotonic_id, now_iso

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


def serialize_changes(changes: Any) -> str:
    """Change payloads are stored as text; strings pass through untouched."""
    if changes is None:
        return ""
    if isinstance(changes, str):
        return changes
    return dumps(changes)


def build_audit_entry(
    *,
    entity_type: str,
    entity_id,
    action: AuditAction | str,
    changes: Any,
    description: str,
    actor: Identity | None,
) -> dict:
    """
    Build one AuditLog row.

    The id is derived from a nanosecond timestamp so two entries created in
    the same millisecond still get distinct ids.
    """
    action = AuditAction(action)
    return {
        "id": monotonic_id("AUDIT"),
        "entityType": entity_type,
        "entityId": str(entity_id),
        "action": action.value,
        "userId": actor.id if actor and actor.id else SYSTEM_ACTOR,
        "username": actor.username if actor and actor.username else SYSTEM_ACTOR,
        "timestamp": now_iso(),
        "changes": serialize_changes(changes),
        "description": description,
    }
