# Overview: Budget reconciliation; per payment center, per year budget rows
# keyed by a composite id and saved by check-then-insert-or-update.

"""
Payment Center Budgets

- One row per (payment center, year), id `budget-<centerId>-<year>`.
- The amount is stored as text on the hosted table.
- A save validates the whole batch before any write: one invalid amount
  rejects every amount.
- Each row is looked up remotely first, then updated or inserted. There is no
  upsert, and concurrent savers of the same row race (last write wins).
- Every write is audited and the cached budgets are re-read afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from .audit_service import AuditAction
from .entity_service import EntityCache
from .remote_client import RemoteError
from ..records import PAYMENT_CENTER_BUDGETS, PAYMENT_CENTERS, Record
from ..time_utils import now_iso, utcnow
from ..validation import ValidationError, is_non_negative_number, parse_amount

logger = logging.getLogger(__name__)


class BudgetValidationError(ValidationError):
    """Raised when any amount in a budget batch is not a non-negative number."""

    def __init__(self, message: str, invalid: list):
        super().__init__(message)
        self.invalid = invalid


@dataclass
class BudgetSaveResult:
    saved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    def to_dict(self) -> dict:
        return {
            "saved": self.saved,
            "failed": self.failed,
            "message": f"{self.saved_count} budgets saved successfully!",
        }


def budget_id(center_id, year) -> str:
    return f"budget-{center_id}-{year}"


def current_year() -> int:
    return utcnow().year


def _budget_text(value) -> str:
    if isinstance(value, str):
        return value.strip()
    amount: Decimal = parse_amount(value, allow_negative=False)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return str(amount)


def budget_rows(cache: EntityCache, year) -> list[Record]:
    """Every payment center with its budget for `year` ("0" when none is stored)."""
    year_budgets = [
        row for row in cache.get_entities(PAYMENT_CENTER_BUDGETS)
        if str(row.get("year")) == str(year)
    ]
    rows = []
    for center in cache.get_entities(PAYMENT_CENTERS):
        center_id = str(center.get("id"))
        existing = next(
            (row for row in year_budgets if str(row.get("paymentCenterId")) == center_id),
            None,
        )
        rows.append({
            "id": existing["id"] if existing else budget_id(center_id, year),
            "paymentCenterId": center_id,
            "paymentCenterName": center.get("name"),
            "year": int(year),
            "budget": existing.get("budget") if existing else "0",
        })
    return rows


def validate_amounts(amounts: Mapping) -> None:
    invalid = [center for center, value in amounts.items() if not is_non_negative_number(value)]
    if invalid:
        raise BudgetValidationError("Invalid budget values. Please enter valid numbers.", invalid)


def save_budgets(cache: EntityCache, year, amounts: Mapping) -> BudgetSaveResult:
    """
    Save {paymentCenterId: amount} for one year.

    Raises BudgetValidationError before any remote call when an amount is
    invalid. A remote failure on one row is recorded and the others proceed.
    """
    validate_amounts(amounts)
    year = int(year)
    remote = cache.remote
    result = BudgetSaveResult()

    for center_id, value in amounts.items():
        row_id = budget_id(center_id, year)
        text = _budget_text(value)
        timestamp = now_iso()
        try:
            if remote.exists(PAYMENT_CENTER_BUDGETS, {"id": row_id}):
                remote.update(
                    PAYMENT_CENTER_BUDGETS,
                    {"id": row_id},
                    {"budget": text, "updatedAt": timestamp},
                )
                action, verb = AuditAction.UPDATE, "Updated"
            else:
                remote.insert(PAYMENT_CENTER_BUDGETS, {
                    "id": row_id,
                    "paymentCenterId": str(center_id),
                    "year": year,
                    "budget": text,
                    "createdAt": timestamp,
                    "updatedAt": timestamp,
                })
                action, verb = AuditAction.CREATE, "Created"
        except RemoteError as exc:
            logger.error("Error saving budget %s: %s", row_id, exc.message)
            result.failed[row_id] = exc.message
            continue

        result.saved.append(row_id)
        cache.record_audit(
            PAYMENT_CENTER_BUDGETS,
            row_id,
            action,
            {"paymentCenterId": str(center_id), "year": year, "budget": text},
            f"{verb} {year} budget for payment center {center_id}",
        )

    try:
        cache.refresh_collection(PAYMENT_CENTER_BUDGETS)
    except RemoteError as exc:
        logger.warning("Could not refresh budgets after save: %s", exc.message)

    if result.saved:
        cache.unsaved_changes = True
    logger.info("Saved %d budgets for %d", result.saved_count, year)
    return result
