# Overview: Local SQLAlchemy models. Every domain table lives on the hosted
# backend; the only local table is the durable key/value store that lets a
# signed-in identity survive a restart.

from .extensions import db
from .time_utils import to_utc_z


class StorageItem(db.Model):
    """
    Durable local storage entry (one key, one string value).

    Keys in use:
    - currentUser / sessionTimestamp / isAuthenticated (session store only)
    - sb-<project-ref>-auth-token (auth client session persistence)
    - supabaseUrl / lastConnectionCheck / databaseSetup (diagnostics)
    """
    __tablename__ = "local_storage"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.Text, nullable=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
