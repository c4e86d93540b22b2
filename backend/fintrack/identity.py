# Overview: The merged identity of the signed-in user (auth-provider fields
# plus the application's Users profile row).

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .permissions import (
    ALL_PERMISSIONS,
    Permission,
    Role,
    UserStatus,
    decode_permissions,
    parse_role,
    parse_status,
)

# Profile columns that override auth-provider fields on merge
PROFILE_FIELDS = ("username", "name", "role", "permissions", "status")


@dataclass(frozen=True)
class Identity:
    id: str | None
    email: str | None
    username: str | None = None
    name: str | None = None
    role: Role | None = None
    permissions: frozenset[Permission] = frozenset()
    status: UserStatus | None = None
    app_metadata: dict = field(default_factory=dict)
    user_metadata: dict = field(default_factory=dict)

    @classmethod
    def from_auth_user(cls, user: dict) -> "Identity":
        user_metadata = user.get("user_metadata") or {}
        return cls(
            id=str(user["id"]) if user.get("id") is not None else None,
            email=user.get("email"),
            name=user_metadata.get("name"),
            app_metadata=dict(user.get("app_metadata") or {}),
            user_metadata=dict(user_metadata),
        )

    def merged_with_profile(self, profile: dict | None) -> "Identity":
        """Profile row fields win over the auth user's; the auth id is kept."""
        if not profile:
            return self
        return replace(
            self,
            username=profile.get("username", self.username),
            name=profile.get("name", self.name),
            role=parse_role(profile.get("role")) or self.role,
            permissions=decode_permissions(profile.get("permissions")),
            status=parse_status(profile.get("status"), self.status),
        )

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_admin(self, admin_email: str | None = None) -> bool:
        return (
            self.role is Role.ADMIN
            or (admin_email is not None and self.email == admin_email)
            or self.app_metadata.get("role") == Role.ADMIN.value
        )

    def has_permission(self, permission, admin_email: str | None = None) -> bool:
        """Administrators hold every permission regardless of their explicit set."""
        if self.is_admin(admin_email):
            return True
        wanted = decode_permissions([permission])
        return bool(wanted) and wanted <= self.permissions

    def effective_permissions(self, admin_email: str | None = None) -> frozenset[Permission]:
        if self.is_admin(admin_email):
            return ALL_PERMISSIONS
        return self.permissions

    @property
    def display_name(self) -> str:
        return self.username or self.name or self.email or "system"

    # ------------------------------------------------------------------
    # Serialization (durable storage, JSON responses)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "name": self.name,
            "role": self.role.value if self.role else None,
            "permissions": sorted(p.value for p in self.permissions),
            "status": self.status.value if self.status else None,
            "app_metadata": self.app_metadata,
            "user_metadata": self.user_metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Identity":
        if not isinstance(data, dict):
            raise ValueError("identity payload must be an object")
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            email=data.get("email"),
            username=data.get("username"),
            name=data.get("name"),
            role=parse_role(data.get("role")),
            permissions=decode_permissions(data.get("permissions")),
            status=parse_status(data.get("status")),
            app_metadata=dict(data.get("app_metadata") or {}),
            user_metadata=dict(data.get("user_metadata") or {}),
        )
