# Overview: Entity cache; in-memory shadow of every hosted collection with
# create/read/update/delete, audit derivation and error classification.

"""
Entity Cache

WHY: The view layer reads from local state only; every write goes to the
hosted backend first and is mirrored locally when it succeeds.

STATE:
- One immutable snapshot: collection name -> tuple of records. Writers build
  a new snapshot and swap it in under the cache lock; readers take the
  current snapshot without locking and receive copies.
- `error` is the last classified failure message (None when clear).
- `unsaved_changes` is set by every successful mutation.

FAILURE POLICY:
- Local precondition failures (unknown collection, missing record, id
  collision, invalid journal status change, invalid lines) are detected
  before any remote call.
- Those and remote failures set `error` and return None/False.
- Anything else propagates.

KNOWN GAP: multi-step writes (journal entry + lines, entity + audit entry)
are independent remote calls. A failure part-way leaves the hosted tables
partially written; local state only reflects the steps that succeeded.
"""

from __future__ import annotations

import copy
import logging
import re
import threading
import uuid
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from . import journal_service
from .audit_service import AuditAction, build_audit_entry
from .journal_service import InvalidTransitionError
from .remote_client import (
    FOREIGN_KEY_VIOLATION,
    NOT_NULL_VIOLATION,
    SCHEMA_CACHE_MISS,
    UNDEFINED_TABLE,
    UNIQUE_VIOLATION,
    RemoteClient,
    RemoteError,
)
from ..identity import Identity
from ..permissions import UserStatus, decode_permissions
from ..records import (
    ALL_COLLECTIONS,
    AUDIT_LOG,
    EXPENSES,
    JOURNAL_ENTRIES,
    JOURNAL_LINES,
    PROGRAMS,
    USERS,
    CollectionSpec,
    Record,
    get_spec,
    same_id,
)
from ..time_utils import now_iso
from ..validation import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PROGRAMS = (
    {"id": "PROG1", "name": "Program 1", "description": "Default Program 1", "status": "Active"},
    {"id": "PROG2", "name": "Program 2", "description": "Default Program 2", "status": "Active"},
    {"id": "PROG3", "name": "Program 3", "description": "Default Program 3", "status": "Active"},
)

_COLUMN_PATTERN = re.compile(r'column "([^"]+)"')


class CollectionNotFoundError(LookupError):
    """Raised when a collection name is not one of the known tables."""


class EntityNotFoundError(LookupError):
    """Raised when a record id is not present in the local cache."""


class DuplicateEntityError(Exception):
    """Raised when a new record's id already exists locally."""


class ReadOnlyCollectionError(Exception):
    """Raised on update or delete of an append-only collection (AuditLog)."""


LOCAL_FAILURES = (
    CollectionNotFoundError,
    EntityNotFoundError,
    DuplicateEntityError,
    ReadOnlyCollectionError,
    InvalidTransitionError,
    ValidationError,
)

_VERB_PREPOSITION = {"add": "to", "update": "in", "delete": "from"}


def classify_error(exc: RemoteError, collection: str, verb: str) -> str:
    """
    Rewrite a provider error into a user-facing message.

    Provider codes are checked first; the message text is the fallback for
    errors relayed without a code.
    """
    code = exc.code or ""
    message = exc.message or ""
    lower = message.lower()

    if code in (UNDEFINED_TABLE, SCHEMA_CACHE_MISS) or (
        "relation" in lower and "does not exist" in lower
    ) or "could not find the table" in lower:
        return f'Table "{collection}" does not exist or is not accessible'

    if code == FOREIGN_KEY_VIOLATION or "foreign key constraint" in lower:
        return "One of the reference IDs is invalid or missing"

    if code == NOT_NULL_VIOLATION or "not-null constraint" in lower:
        match = _COLUMN_PATTERN.search(message) or _COLUMN_PATTERN.search(exc.details or "")
        if match:
            return f"Missing required field: {match.group(1)}"
        return f"Missing required field in {collection}"

    if code == UNIQUE_VIOLATION or "duplicate key" in lower:
        return f"Duplicate value violates a unique constraint in {collection}"

    preposition = _VERB_PREPOSITION.get(verb, "in")
    return f"Failed to {verb} entity {preposition} {collection}: {message}"


class EntityCache:
    """
    Usage:
        cache = EntityCache(remote, actor_provider=session_store.current_identity)
        cache.initialize_data()
        supplier = cache.add_entity("Suppliers", {"code": "SUP001", "name": "Acme"})
        if supplier is None:
            print(cache.error)
    """

    def __init__(self, remote: RemoteClient, actor_provider: Callable[[], Identity | None] | None = None):
        self.remote = remote
        self._actor_provider = actor_provider or (lambda: None)
        self._data: Mapping[str, tuple[Record, ...]] = MappingProxyType({})
        self._lock = threading.RLock()
        self.error: str | None = None
        self.last_failure: Exception | None = None
        self.initialized = False
        self.loading = False
        self.unsaved_changes = False

    # ------------------------------------------------------------------
    # Snapshot plumbing
    # ------------------------------------------------------------------

    def snapshot(self) -> Mapping[str, tuple[Record, ...]]:
        """The current immutable snapshot (records must not be mutated)."""
        return self._data

    def _records(self, collection: str) -> tuple[Record, ...]:
        return self._data.get(collection, ())

    def _swap(self, changes: Mapping[str, Iterable[Record]]) -> None:
        data = dict(self._data)
        for collection, records in changes.items():
            data[collection] = tuple(records)
        self._data = MappingProxyType(data)

    def _set_error(self, message: str, failure: Exception | None = None) -> None:
        self.error = message
        self.last_failure = failure

    def clear_error(self) -> None:
        self.error = None
        self.last_failure = None

    def _actor(self) -> Identity | None:
        return self._actor_provider()

    def _spec(self, collection: str) -> CollectionSpec:
        spec = get_spec(collection)
        if spec is None:
            raise CollectionNotFoundError(f'Table "{collection}" does not exist or is not accessible')
        return spec

    def _find(self, collection: str, entity_id) -> Record | None:
        for record in self._records(collection):
            if same_id(record.get("id"), entity_id):
                return record
        return None

    def _check_writable(self, collection: str) -> None:
        if collection == AUDIT_LOG:
            raise ReadOnlyCollectionError(f"{collection} entries cannot be changed or removed")

    def _require(self, collection: str, entity_id) -> Record:
        existing = self._find(collection, entity_id)
        if existing is None:
            raise EntityNotFoundError(f'Entity with ID "{entity_id}" not found in {collection}')
        return existing

    # ------------------------------------------------------------------
    # Reads (never fail)
    # ------------------------------------------------------------------

    def get_entities(self, collection: str) -> list[Record]:
        return [copy.deepcopy(record) for record in self._records(collection)]

    def get_entity_by_id(self, collection: str, entity_id) -> Record | None:
        record = self._find(collection, entity_id)
        return copy.deepcopy(record) if record is not None else None

    def filter_entities(self, collection: str, field: str, value) -> list[Record]:
        return [
            copy.deepcopy(record)
            for record in self._records(collection)
            if str(record.get(field)) == str(value)
        ]

    def counts(self) -> dict[str, int]:
        return {collection: len(self._records(collection)) for collection in ALL_COLLECTIONS}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_collection(self, collection: str) -> list[Record]:
        spec = self._spec(collection)
        return [spec.local(row) for row in self.remote.select(collection)]

    def initialize_data(self) -> bool:
        """
        Load every collection. A collection that fails to load is kept empty;
        an empty Programs collection is seeded with the default programs.
        """
        with self._lock:
            self.loading = True
            self.clear_error()
            try:
                loaded: dict[str, list[Record]] = {}
                for collection in ALL_COLLECTIONS:
                    try:
                        loaded[collection] = self._load_collection(collection)
                        logger.info("Loaded %d records from %s", len(loaded[collection]), collection)
                    except RemoteError as exc:
                        logger.warning("Could not load %s: %s", collection, exc.message)
                        loaded[collection] = []

                if not loaded[PROGRAMS]:
                    loaded[PROGRAMS] = self._seed_programs()

                loaded[JOURNAL_ENTRIES] = journal_service.attach_lines(
                    loaded[JOURNAL_ENTRIES], loaded[JOURNAL_LINES]
                )

                self._swap(loaded)
                self.initialized = True
                self.unsaved_changes = False
                return True
            finally:
                self.loading = False

    def _seed_programs(self) -> list[Record]:
        logger.info("No programs found, initializing default programs")
        seeded = []
        for program in DEFAULT_PROGRAMS:
            try:
                seeded.extend(self.remote.insert(PROGRAMS, dict(program)))
            except RemoteError as exc:
                logger.error("Could not seed program %s: %s", program["id"], exc.message)
        try:
            return self._load_collection(PROGRAMS)
        except RemoteError:
            return seeded

    def refresh_collection(self, collection: str) -> list[Record]:
        """Re-read one collection from the backend; the old copy is kept on failure."""
        with self._lock:
            records = self._load_collection(collection)
            changes = {collection: records}
            if collection == JOURNAL_ENTRIES:
                records = changes[collection] = journal_service.attach_lines(records, self._records(JOURNAL_LINES))
            elif collection == JOURNAL_LINES:
                # entries embed their lines; re-join them in the same swap
                changes[JOURNAL_ENTRIES] = journal_service.attach_lines(self._records(JOURNAL_ENTRIES), records)
            self._swap(changes)
            return [copy.deepcopy(record) for record in records]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_audit(self, entity_type: str, entity_id, action: AuditAction, changes, description: str) -> Record | None:
        """
        Persist one audit entry remotely, then locally.

        The entity write has already succeeded at this point; a failure here
        is reported on `error` but does not undo that write.
        """
        entry = build_audit_entry(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes,
            description=description,
            actor=self._actor(),
        )
        with self._lock:
            try:
                self.remote.insert(AUDIT_LOG, entry)
            except RemoteError as exc:
                logger.error("Audit entry for %s %s not recorded: %s", entity_type, entity_id, exc.message)
                self._set_error(f"Saved, but the audit entry could not be recorded: {exc.message}", exc)
                return None
            self._swap({AUDIT_LOG: self._records(AUDIT_LOG) + (entry,)})
            return entry

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def add_entity(self, collection: str, record: Record) -> Record | None:
        """Returns the stored record, or None with `error` set."""
        with self._lock:
            try:
                stored = self._add(collection, record)
            except LOCAL_FAILURES as exc:
                logger.info("Add to %s rejected: %s", collection, exc)
                self._set_error(str(exc), exc)
                return None
            except RemoteError as exc:
                logger.error("Error adding entity to %s: %s", collection, exc.message)
                self._set_error(classify_error(exc, collection, "add"), exc)
                return None
            self.unsaved_changes = True
            return copy.deepcopy(stored)

    def _add(self, collection: str, record: Record) -> Record:
        spec = self._spec(collection)
        new = dict(record)
        new["id"] = new.get("id") or str(uuid.uuid4())

        if self._find(collection, new["id"]) is not None:
            raise DuplicateEntityError(f'Entity with ID "{new["id"]}" already exists in {collection}')

        if collection == EXPENSES:
            return self._add_expense(spec, new)
        if collection == JOURNAL_ENTRIES and "lines" in new:
            return self._add_journal(new)

        if collection == USERS:
            # admin-created accounts are active immediately
            new.setdefault("status", UserStatus.ACTIVE.value)

        inserted = self.remote.insert(collection, spec.remote(new))
        stored = spec.local(inserted[0] if inserted else spec.remote(new))
        self._swap({collection: self._records(collection) + (stored,)})
        self.record_audit(collection, stored["id"], AuditAction.CREATE, "", f"Created new {spec.singular}")
        return stored

    def _add_expense(self, spec: CollectionSpec, new: Record) -> Record:
        actor = self._actor()
        new["createdBy"] = actor.display_name if actor else "system"
        new["createdAt"] = now_iso()

        payload = spec.remote(new)
        inserted = self.remote.insert(EXPENSES, payload)
        stored = spec.local(inserted[0] if inserted else payload)
        self._swap({EXPENSES: self._records(EXPENSES) + (stored,)})
        self.record_audit(
            EXPENSES,
            stored["id"],
            AuditAction.CREATE,
            "",
            f"Created new expense for {stored.get('description') or 'unnamed'}",
        )
        return stored

    def _add_journal(self, new: Record) -> Record:
        lines = journal_service.validate_lines(new.pop("lines"))
        journal_service.check_transition(None, new.get("status"))
        new.setdefault("status", journal_service.JournalStatus.DRAFT.value)
        new["totalAmount"] = journal_service.compute_total(lines)

        inserted = self.remote.insert(JOURNAL_ENTRIES, new)
        entry = inserted[0] if inserted else new

        line_rows = journal_service.build_line_rows(new["id"], lines)
        if line_rows:
            self.remote.insert(JOURNAL_LINES, line_rows)

        stored = {**entry, "lines": [journal_service.to_entry_line(row) for row in line_rows]}
        self._swap({
            JOURNAL_ENTRIES: self._records(JOURNAL_ENTRIES) + (stored,),
            JOURNAL_LINES: self._records(JOURNAL_LINES) + tuple(line_rows),
        })
        self.record_audit(
            JOURNAL_ENTRIES,
            new["id"],
            AuditAction.CREATE,
            {"lines": len(line_rows), "totalAmount": new["totalAmount"]},
            f"Created journal entry {new.get('reference') or new['id']}",
        )
        return stored

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_entity(self, collection: str, entity_id, updates: Record) -> bool:
        with self._lock:
            try:
                self._update(collection, entity_id, dict(updates or {}))
            except LOCAL_FAILURES as exc:
                logger.info("Update of %s %s rejected: %s", collection, entity_id, exc)
                self._set_error(str(exc), exc)
                return False
            except RemoteError as exc:
                logger.error("Error updating %s %s: %s", collection, entity_id, exc.message)
                self._set_error(classify_error(exc, collection, "update"), exc)
                return False
            self.unsaved_changes = True
            return True

    def _replace_record(self, collection: str, entity_id, record: Record) -> None:
        self._swap({
            collection: tuple(
                record if same_id(item.get("id"), entity_id) else item
                for item in self._records(collection)
            )
        })

    def _update(self, collection: str, entity_id, updates: Record) -> None:
        spec = self._spec(collection)
        self._check_writable(collection)
        existing = self._require(collection, entity_id)
        updates.pop("id", None)

        if collection == EXPENSES:
            self._update_expense(spec, existing, updates)
            return
        if collection == JOURNAL_ENTRIES:
            self._update_journal(existing, updates)
            return

        payload = spec.remote(updates, partial=True)
        if payload:
            self.remote.update(collection, {"id": existing["id"]}, payload)

        local_updates = dict(payload)
        if collection == USERS and "permissions" in updates:
            local_updates["permissions"] = decode_permissions(updates["permissions"])
        self._replace_record(collection, entity_id, {**existing, **local_updates})

        self.record_audit(
            collection,
            existing["id"],
            AuditAction.UPDATE,
            {"before": existing, "after": updates},
            f"Updated {spec.singular} {existing['id']}",
        )

    def _update_expense(self, spec: CollectionSpec, existing: Record, updates: Record) -> None:
        payload = spec.remote(updates, partial=True)
        returned = []
        if payload:
            returned = self.remote.update(EXPENSES, {"id": existing["id"]}, payload)

        merged_source = returned[0] if returned else {**existing, **payload}
        merged = {**existing, **spec.local(merged_source)}
        self._replace_record(EXPENSES, existing["id"], merged)

        self.record_audit(
            EXPENSES,
            existing["id"],
            AuditAction.UPDATE,
            {
                "before": {"amount": existing.get("amount"), "status": existing.get("status")},
                "after": {"amount": merged.get("amount"), "status": merged.get("status")},
            },
            f"Updated expense {existing.get('description') or existing['id']}",
        )

    def _update_journal(self, existing: Record, updates: Record) -> None:
        entry_id = existing["id"]
        old_status = existing.get("status")
        new_status = updates.get("status", old_status)
        journal_service.check_transition(old_status, new_status)

        new_lines = None
        if "lines" in updates:
            new_lines = journal_service.validate_lines(updates.pop("lines"))
            updates["totalAmount"] = journal_service.compute_total(new_lines)

        action = journal_service.status_action(old_status, new_status)
        if action in (AuditAction.APPROVE, AuditAction.REJECT):
            actor = self._actor()
            updates["approvedBy"] = actor.display_name if actor else "system"
            updates["approvedAt"] = now_iso()

        if updates:
            self.remote.update(JOURNAL_ENTRIES, {"id": entry_id}, updates)

        changes: dict = {"oldStatus": old_status, "newStatus": new_status}
        line_changes: dict = {}
        if new_lines is not None:
            # replace, never patch: drop every line of this entry, then insert the new set
            self.remote.delete(JOURNAL_LINES, {"journalId": entry_id})
            remaining = tuple(
                row for row in self._records(JOURNAL_LINES) if not same_id(row.get("journalId"), entry_id)
            )
            self._swap({JOURNAL_LINES: remaining})

            line_rows = journal_service.build_line_rows(entry_id, new_lines)
            if line_rows:
                self.remote.insert(JOURNAL_LINES, line_rows)
            self._swap({JOURNAL_LINES: remaining + tuple(line_rows)})

            line_changes["lines"] = [journal_service.to_entry_line(row) for row in line_rows]
            changes.update(totalAmount=updates["totalAmount"], lines=len(line_rows))
        else:
            changes.update(before=existing, after=updates)

        self._replace_record(JOURNAL_ENTRIES, entry_id, {**existing, **updates, **line_changes})

        if action is AuditAction.UPDATE:
            description = f"Updated journal entry {existing.get('reference') or entry_id}"
        else:
            description = f"Status changed from {old_status} to {new_status}"
        self.record_audit(JOURNAL_ENTRIES, entry_id, action, changes, description)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_entity(self, collection: str, entity_id) -> bool:
        with self._lock:
            try:
                self._delete(collection, entity_id)
            except LOCAL_FAILURES as exc:
                logger.info("Delete of %s %s rejected: %s", collection, entity_id, exc)
                self._set_error(str(exc), exc)
                return False
            except RemoteError as exc:
                logger.error("Error deleting %s %s: %s", collection, entity_id, exc.message)
                self._set_error(classify_error(exc, collection, "delete"), exc)
                return False
            self.unsaved_changes = True
            return True

    def _delete(self, collection: str, entity_id) -> None:
        spec = self._spec(collection)
        self._check_writable(collection)
        existing = self._require(collection, entity_id)

        if collection == JOURNAL_ENTRIES:
            self.remote.delete(JOURNAL_LINES, {"journalId": existing["id"]})
            self._swap({
                JOURNAL_LINES: tuple(
                    row for row in self._records(JOURNAL_LINES)
                    if not same_id(row.get("journalId"), existing["id"])
                )
            })

        self.remote.delete(collection, {"id": existing["id"]})
        self._swap({
            collection: tuple(
                item for item in self._records(collection) if not same_id(item.get("id"), entity_id)
            )
        })

        self.record_audit(
            collection,
            existing["id"],
            AuditAction.DELETE,
            existing,
            f"Deleted {spec.singular} {existing['id']}",
        )
