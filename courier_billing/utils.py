"""
Utility functions shared across services and blueprints. This includes:
- parse_decimal / parse_optional_int / parse_bool / parse_date: lenient input parsing.
- json_body: request JSON as a dict (or list) with a clear error when missing.
- pagination_args: page/limit/offset from the query string.
- format_money / format_date: Jinja filters used by the printable documents.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import request

from .errors import ValidationError

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def parse_decimal(value: Any) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot). None for empty/invalid."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        parsed = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def parse_optional_int(value: Any) -> int | None:
    """Parse optional int from JSON/query. None for empty/invalid."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in _TRUE_STRINGS:
        return True
    if raw in _FALSE_STRINGS:
        return False
    return default


def parse_date(value: Any) -> date | None:
    """ISO date (YYYY-MM-DD) or ISO datetime -> date. None for empty/invalid."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def json_body(allow_list: bool = False):
    """Return the parsed JSON body; raise ValidationError if it is absent or the wrong shape."""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be JSON")
    if isinstance(payload, dict):
        return payload
    if allow_list and isinstance(payload, list):
        return payload
    raise ValidationError("Request body must be a JSON object")


def pagination_args(default_limit: int = 50, max_limit: int = 100) -> tuple[int, int]:
    """(limit, offset) from ?limit=&offset= or ?page=&limit=, clamped to sane bounds."""
    limit = parse_optional_int(request.args.get("limit")) or default_limit
    limit = max(1, min(limit, max_limit))

    offset = parse_optional_int(request.args.get("offset"))
    if offset is None:
        page = parse_optional_int(request.args.get("page")) or 1
        offset = (max(page, 1) - 1) * limit
    return limit, max(offset, 0)


def format_money(value: Any) -> str:
    """'₹1234.50' style; blank for values that are not numbers."""
    amount = parse_decimal(value)
    if amount is None:
        return ""
    return f"₹{amount.quantize(Decimal('0.01'))}"


def format_date(value: Any) -> str:
    """dd/mm/yyyy, the way bills are dated."""
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        value = parse_date(value)
    return value.strftime("%d/%m/%Y") if value else ""
