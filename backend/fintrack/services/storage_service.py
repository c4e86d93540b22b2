# Overview: Durable local storage; a string key/value store backed by the
# local_storage table.

"""
Durable Local Storage

WHY: A restart must be able to render the signed-in state before the hosted
backend has confirmed the session. The browser original used localStorage;
here the same keys live in a small SQLite table.

Every call opens its own application context so the store can be used from
the reconciler thread as well as from request handlers.
"""

from __future__ import annotations

from flask import Flask

from ..extensions import db
from ..models import StorageItem


class DatabaseStorage:
    """localStorage-like get/set/remove over the local_storage table."""

    def __init__(self, app: Flask):
        self._app = app

    def get_item(self, key: str) -> str | None:
        with self._app.app_context():
            item = db.session.get(StorageItem, key)
            return item.value if item else None

    def set_item(self, key: str, value: str) -> None:
        with self._app.app_context():
            item = db.session.get(StorageItem, key)
            if item is None:
                db.session.add(StorageItem(key=key, value=value))
            else:
                item.value = value
            db.session.commit()

    def remove_item(self, key: str) -> None:
        with self._app.app_context():
            db.session.query(StorageItem).filter_by(key=key).delete()
            db.session.commit()

    def keys(self) -> list[str]:
        with self._app.app_context():
            return [row.key for row in db.session.query(StorageItem.key).order_by(StorageItem.key)]
