# Overview: Journal entry helpers; line expansion, derived totals, line
# reconstruction and status transitions.

"""
Journal Entries

- An entry aggregates typed lines (debit/credit), each tagged with a program
  and a payment center.
- totalAmount is the sum of debit-typed line amounts and is recomputed on
  every save; credit lines never count.
- Lines are replaced wholesale on edit: ids are <entryId>-L<n>, numbered
  from 1 in the order given.
- Status moves Draft -> Approved or Draft -> Rejected only; the reviewer and
  time are recorded on the entry.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable

from .audit_service import AuditAction
from ..records import Record
from ..time_utils import now_iso
from ..validation import ValidationError, parse_amount


class LineType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class JournalStatus(str, Enum):
    DRAFT = "Draft"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class InvalidTransitionError(Exception):
    """Raised when a journal status change is not Draft -> Approved/Rejected."""


LINE_FIELDS = ("id", "type", "program", "paymentCenter", "amount")


def _line_type(line: dict) -> str:
    return str(line.get("type") or "").strip().lower()


def compute_total(lines: Iterable[dict]) -> float:
    """Sum of debit-typed amounts."""
    total = Decimal("0")
    for index, line in enumerate(lines, start=1):
        amount = parse_amount(line.get("amount"), f"line {index} amount")
        if _line_type(line) == LineType.DEBIT.value:
            total += amount
    return float(total)


def validate_lines(lines) -> list[dict]:
    if not isinstance(lines, (list, tuple)):
        raise ValidationError("lines must be a list")
    for index, line in enumerate(lines, start=1):
        if not isinstance(line, dict):
            raise ValidationError(f"line {index} must be an object")
        if _line_type(line) not in (LineType.DEBIT.value, LineType.CREDIT.value):
            raise ValidationError(f"line {index} type must be debit or credit")
        parse_amount(line.get("amount"), f"line {index} amount")
    return list(lines)


def line_id(entry_id, line_number: int) -> str:
    return f"{entry_id}-L{line_number}"


def build_line_rows(entry_id, lines: Iterable[dict]) -> list[Record]:
    """Expand form lines into JournalLines rows."""
    created_at = now_iso()
    rows = []
    for index, line in enumerate(lines, start=1):
        rows.append({
            "id": line_id(entry_id, index),
            "journalId": entry_id,
            "lineNumber": index,
            "type": _line_type(line),
            "program": line.get("program") or "",
            "paymentCenter": line.get("paymentCenter"),
            "amount": line.get("amount"),
            "createdAt": created_at,
        })
    return rows


def to_entry_line(row: Record) -> Record:
    return {key: row.get(key) for key in LINE_FIELDS}


def attach_lines(entries: Iterable[Record], line_rows: Iterable[Record]) -> list[Record]:
    """Join entries with their lines (grouped by journalId, ordered by lineNumber)."""
    grouped: dict[str, list[Record]] = {}
    for row in line_rows:
        grouped.setdefault(str(row.get("journalId")), []).append(row)

    joined = []
    for entry in entries:
        rows = sorted(grouped.get(str(entry.get("id")), []), key=lambda r: int(r.get("lineNumber") or 0))
        joined.append({**entry, "lines": [to_entry_line(row) for row in rows]})
    return joined


def status_action(old_status, new_status) -> AuditAction:
    if new_status is None or new_status == old_status:
        return AuditAction.UPDATE
    if new_status == JournalStatus.APPROVED.value:
        return AuditAction.APPROVE
    if new_status == JournalStatus.REJECTED.value:
        return AuditAction.REJECT
    return AuditAction.UPDATE


def check_transition(old_status, new_status) -> None:
    """
    Only a Draft (or status-less) entry may change status, and only to
    Approved or Rejected.
    """
    if new_status is None or new_status == old_status:
        return
    if old_status in (None, "") and new_status == JournalStatus.DRAFT.value:
        return
    allowed_from = (None, "", JournalStatus.DRAFT.value)
    allowed_to = (JournalStatus.APPROVED.value, JournalStatus.REJECTED.value)
    if old_status not in allowed_from or new_status not in allowed_to:
        raise InvalidTransitionError(
            f"Invalid journal status transition: {old_status or 'none'} -> {new_status}"
        )
