# Overview: JSON encoding for records that carry sets, enums and datetimes.

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from .time_utils import to_utc_z


def json_default(obj):
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(json_default(item) if isinstance(item, Enum) else item for item in obj)
    if isinstance(obj, datetime):
        return to_utc_z(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(obj) -> str:
    return json.dumps(obj, default=json_default, sort_keys=True)
