# Overview: Per-collection record rules; the hosted table each collection
# maps to and how records are converted at the remote boundary.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .permissions import decode_permissions, encode_permissions
from .time_utils import now_iso

Record = dict[str, Any]

USERS = "Users"
SUPPLIERS = "Suppliers"
PAYMENT_CENTERS = "PaymentCenters"
PAYMENT_TYPES = "PaymentTypes"
EXPENSE_STATUS = "ExpenseStatus"
PAYMENT_CENTER_BUDGETS = "PaymentCenterBudgets"
EXPENSES = "Expenses"
JOURNAL_ENTRIES = "JournalEntries"
JOURNAL_LINES = "JournalLines"
AUDIT_LOG = "AuditLog"
PROGRAMS = "Programs"

# Load order matters only for seeding (references first)
ALL_COLLECTIONS = (
    USERS,
    SUPPLIERS,
    PAYMENT_CENTERS,
    PAYMENT_TYPES,
    EXPENSE_STATUS,
    PAYMENT_CENTER_BUDGETS,
    EXPENSES,
    JOURNAL_ENTRIES,
    JOURNAL_LINES,
    AUDIT_LOG,
    PROGRAMS,
)

# (application alias, table column)
EXPENSE_ALIASES = (
    ("supplierId", "supplier"),
    ("paymentTypeId", "paymentType"),
    ("paymentCenterId", "paymentCenter"),
    ("programId", "program"),
    ("statusId", "status"),
)

EXPENSE_COLUMNS = (
    "id", "date", "description", "supplier", "amount", "paymentType",
    "paymentCenter", "program", "status", "notes", "invoiceDate",
    "paymentDate", "createdBy", "createdAt",
)

# written once on create; never sent in an update
CREATION_COLUMNS = ("id", "createdBy", "createdAt")


def _identity(record: Record) -> Record:
    return dict(record)


def _to_number(value, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _reference(value):
    """Numeric lookup ids arrive as strings from forms; send them as ints."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


# -- Users --

def user_to_remote(record: Record) -> Record:
    out = dict(record)
    if "permissions" in out:
        out["permissions"] = encode_permissions(out["permissions"])
    return out


def user_to_local(row: Record) -> Record:
    out = dict(row)
    out["permissions"] = decode_permissions(out.get("permissions"))
    return out


# -- Expenses --

def expense_to_remote(record: Record, *, partial: bool = False) -> Record:
    """
    Map application field names onto the Expenses table.

    A full mapping fills defaults the way a new expense needs them; a
    partial mapping (updates) only carries the fields that were supplied so
    an edit of one field cannot reset the others.
    """
    source = dict(record)
    for alias, column in EXPENSE_ALIASES:
        if source.get(alias) not in (None, ""):
            source[column] = source[alias]
        source.pop(alias, None)

    if partial:
        out = {k: v for k, v in source.items() if k in EXPENSE_COLUMNS and k not in CREATION_COLUMNS}
        for column in ("paymentType", "paymentCenter", "program"):
            if column in out:
                out[column] = _reference(out[column])
        if "amount" in out:
            out["amount"] = _to_number(out["amount"])
        return out

    return {
        "id": source.get("id"),
        "date": source.get("date"),
        "description": source.get("description") or "",
        "supplier": source.get("supplier"),
        "amount": _to_number(source.get("amount")),
        "paymentType": _reference(source.get("paymentType") or 1),
        "paymentCenter": _reference(source.get("paymentCenter") or 1),
        "program": _reference(source.get("program")) if source.get("program") not in (None, "") else None,
        "status": source.get("status") or "Committed",
        "notes": source.get("notes") or "",
        "invoiceDate": source.get("invoiceDate") or None,
        "paymentDate": source.get("paymentDate") or None,
        "createdBy": source.get("createdBy") or "system",
        "createdAt": source.get("createdAt") or now_iso(),
    }


def expense_to_local(row: Record) -> Record:
    out = dict(row)
    for alias, column in EXPENSE_ALIASES:
        if column in row:
            out[alias] = row[column]
    return out


# -- Budgets --

def budget_to_remote(record: Record) -> Record:
    out = dict(record)
    if out.get("budget") is not None:
        # stored as text on the hosted table
        out["budget"] = str(out["budget"])
    return out


@dataclass(frozen=True)
class CollectionSpec:
    """
    How one collection crosses the remote boundary.

    - to_remote(record, partial): shape sent on insert (partial=False) or
      update (partial=True)
    - to_local(row): shape kept in the entity cache
    """
    name: str
    singular: str
    to_remote: Callable[..., Record]
    to_local: Callable[[Record], Record] = _identity

    def remote(self, record: Record, *, partial: bool = False) -> Record:
        return self.to_remote(record, partial=partial)

    def local(self, row: Record) -> Record:
        return self.to_local(row)


def _plain(record: Record, *, partial: bool = False) -> Record:
    return dict(record)


def _users_remote(record: Record, *, partial: bool = False) -> Record:
    return user_to_remote(record)


def _budgets_remote(record: Record, *, partial: bool = False) -> Record:
    return budget_to_remote(record)


COLLECTION_SPECS: dict[str, CollectionSpec] = {
    USERS: CollectionSpec(USERS, "User", _users_remote, user_to_local),
    SUPPLIERS: CollectionSpec(SUPPLIERS, "Supplier", _plain),
    PAYMENT_CENTERS: CollectionSpec(PAYMENT_CENTERS, "PaymentCenter", _plain),
    PAYMENT_TYPES: CollectionSpec(PAYMENT_TYPES, "PaymentType", _plain),
    EXPENSE_STATUS: CollectionSpec(EXPENSE_STATUS, "ExpenseStatus", _plain),
    PAYMENT_CENTER_BUDGETS: CollectionSpec(PAYMENT_CENTER_BUDGETS, "PaymentCenterBudget", _budgets_remote),
    EXPENSES: CollectionSpec(EXPENSES, "Expense", expense_to_remote, expense_to_local),
    JOURNAL_ENTRIES: CollectionSpec(JOURNAL_ENTRIES, "JournalEntry", _plain),
    JOURNAL_LINES: CollectionSpec(JOURNAL_LINES, "JournalLine", _plain),
    AUDIT_LOG: CollectionSpec(AUDIT_LOG, "AuditLog", _plain),
    PROGRAMS: CollectionSpec(PROGRAMS, "Program", _plain),
}


def get_spec(collection: str) -> CollectionSpec | None:
    return COLLECTION_SPECS.get(collection)


def same_id(a, b) -> bool:
    """Ids arrive as ints from some tables and strings from others."""
    return str(a) == str(b)
