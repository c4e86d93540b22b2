# Overview: First-run setup of the hosted tables; reference data, default
# programs, the default administrator profile and current-year budgets.

"""
Database Setup

WHY: A fresh project has empty lookup tables, and expenses cannot be entered
until payment centers, payment types and statuses exist.

- Each table is seeded only when it is empty; existing rows are never
  touched, so running setup twice is harmless.
- A failure on one table is logged and reported; the others still run.
- Success is remembered under the durable `databaseSetup` key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .entity_service import DEFAULT_PROGRAMS
from .remote_client import RemoteClient, RemoteError
from ..permissions import UserStatus
from ..records import (
    EXPENSE_STATUS,
    PAYMENT_CENTER_BUDGETS,
    PAYMENT_CENTERS,
    PAYMENT_TYPES,
    PROGRAMS,
    USERS,
    Record,
)
from ..time_utils import now_iso, utcnow

logger = logging.getLogger(__name__)

DATABASE_SETUP_KEY = "databaseSetup"

DEFAULT_PAYMENT_CENTERS = (
    {"id": "1", "name": "GDC", "description": "GDC Payment Center"},
    {"id": "2", "name": "VCES", "description": "VCES Payment Center"},
    {"id": "3", "name": "Commercial", "description": "Commercial Payment Center"},
    {"id": "4", "name": "Operation", "description": "Operation Payment Center"},
)

DEFAULT_PAYMENT_TYPES = (
    {"id": "1", "name": "PO", "description": "Purchase Order"},
    {"id": "2", "name": "Credit Card", "description": "Credit Card Payment"},
    {"id": "3", "name": "Activiti", "description": "Activiti Invoice"},
)

DEFAULT_EXPENSE_STATUSES = (
    {"id": "1", "name": "Committed", "description": "Expense is committed but not paid"},
    {"id": "2", "name": "Invoiced", "description": "Invoice received but not paid"},
    {"id": "3", "name": "Paid", "description": "Expense is paid"},
)

# paymentCenterId -> default budget
DEFAULT_BUDGETS = (("1", "150000"), ("2", "80000"), ("3", "120000"), ("4", "50000"))


def default_admin_profile(admin_email: str, username: str = "admin") -> Record:
    return {
        "username": username,
        "name": "Administrator",
        "email": admin_email,
        "role": "admin",
        "permissions": "admin,approve,delete,read,write",
        "status": UserStatus.ACTIVE.value,
        "createdAt": now_iso(),
    }


def default_budgets(year: int | None = None) -> list[Record]:
    year = year or utcnow().year
    timestamp = now_iso()
    return [
        {
            "id": f"budget-{center_id}-{year}",
            "paymentCenterId": center_id,
            "year": year,
            "budget": amount,
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        for center_id, amount in DEFAULT_BUDGETS
    ]


@dataclass
class SetupResult:
    seeded: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "seeded": self.seeded,
            "skipped": self.skipped,
            "errors": self.errors,
            "message": (
                "Database setup completed successfully"
                if self.success else "Database setup finished with errors"
            ),
        }


def _seed_if_empty(remote: RemoteClient, table: str, rows, result: SetupResult) -> None:
    try:
        if remote.select(table, columns="id", limit=1):
            result.skipped.append(table)
            return
        inserted = remote.insert(table, [dict(row) for row in rows])
        result.seeded[table] = len(inserted)
        logger.info("Seeded %d rows into %s", len(inserted), table)
    except RemoteError as exc:
        logger.error("Error seeding %s: %s", table, exc.message)
        result.errors[table] = exc.message


def create_default_admin(remote: RemoteClient, admin_email: str, result: SetupResult) -> None:
    try:
        if remote.select_one(USERS, {"username": "admin"}) is not None:
            logger.info("Admin user already exists")
            result.skipped.append(USERS)
            return
        remote.insert(USERS, default_admin_profile(admin_email))
        result.seeded[USERS] = 1
    except RemoteError as exc:
        logger.error("Error creating default admin: %s", exc.message)
        result.errors[USERS] = exc.message


def setup_database(remote: RemoteClient, storage, *, admin_email: str, year: int | None = None) -> SetupResult:
    """Seed every empty reference table, then mark the database as set up."""
    result = SetupResult()
    create_default_admin(remote, admin_email, result)
    _seed_if_empty(remote, PAYMENT_CENTERS, DEFAULT_PAYMENT_CENTERS, result)
    _seed_if_empty(remote, PAYMENT_TYPES, DEFAULT_PAYMENT_TYPES, result)
    _seed_if_empty(remote, EXPENSE_STATUS, DEFAULT_EXPENSE_STATUSES, result)
    _seed_if_empty(remote, PROGRAMS, DEFAULT_PROGRAMS, result)
    _seed_if_empty(remote, PAYMENT_CENTER_BUDGETS, default_budgets(year), result)

    if result.success and storage is not None:
        storage.set_item(DATABASE_SETUP_KEY, "true")
    return result


def is_database_setup(remote: RemoteClient, storage) -> bool:
    """The durable flag first; otherwise any admin profile counts."""
    if storage is not None and storage.get_item(DATABASE_SETUP_KEY) == "true":
        return True
    try:
        return bool(remote.select(USERS, {"role": "admin"}, columns="id", limit=1))
    except RemoteError:
        return False
