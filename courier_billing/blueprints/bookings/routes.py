"""
courier_billing/blueprints/bookings/routes.py

Account and cash bookings: the shipment records bills are assembled from.

- /api/account-bookings   GET (?sender=&month=YYYY-MM), POST
- /api/cash-bookings      GET (?sender=&month=YYYY-MM), POST
- DELETE /<id> on either (admin)

`sender` is matched the same way the bill assembler matches it: trimmed and
case-insensitive.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Tuple

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...models import AccountBooking, CashBooking
from ...security import role_required
from ...services.billing import month_window
from ...utils import json_body, pagination_args, parse_date, parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api")


# booking kind -> (model, date column, money fields, text fields)
BOOKING_KINDS: Dict[str, Tuple[Any, str, Tuple[str, ...], Tuple[str, ...]]] = {
    "account-bookings": (
        AccountBooking,
        "booking_date",
        ("gross_amount", "other_charges", "insurance_amount", "parcel_value", "net_amount"),
        ("sender", "center", "receiver", "mobile", "carrier", "reference_number",
         "consignment_number", "package_type", "weight", "remarks", "status"),
    ),
    "cash-bookings": (
        CashBooking,
        "date",
        ("gross_amount", "fuel_charge_percent", "insurance_amount", "cgst", "sgst", "net_amount"),
        ("sender", "sender_mobile", "center", "receiver", "carrier", "reference_number",
         "package_type", "weight", "remarks"),
    ),
}


def _kind(kind: str):
    entry = BOOKING_KINDS.get(kind)
    if entry is None:
        raise NotFoundError("Not found")
    return entry


def _month_arg(value: str | None):
    """'YYYY-MM' -> (first day, last day); None when absent."""
    if not value:
        return None
    try:
        year, month = (int(part) for part in value.split("-", 1))
        return month_window(date(year, month, 1))
    except ValueError:
        raise ValidationError("month must be YYYY-MM", fields=["month"]) from None


def _booking_values(payload: Dict[str, Any], date_field: str, money_fields, text_fields) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    invalid: List[str] = []

    booking_date = parse_date(payload.get(date_field) or payload.get("date"))
    if booking_date is None:
        invalid.append(date_field)
    values[date_field] = booking_date

    for field in text_fields:
        raw = payload.get(field)
        if raw is not None:
            values[field] = str(raw).strip() or None
    if not values.get("sender"):
        invalid.append("sender")

    for field in money_fields:
        raw = payload.get(field)
        if raw in (None, ""):
            continue
        amount = parse_decimal(raw)
        if amount is None or amount < 0:
            invalid.append(field)
        values[field] = amount

    if payload.get("number_of_boxes") not in (None, ""):
        boxes = parse_optional_int(payload.get("number_of_boxes"))
        if boxes is None or boxes < 0:
            invalid.append("number_of_boxes")
        values["number_of_boxes"] = boxes

    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return values


@bookings_bp.route("/<any('account-bookings', 'cash-bookings'):kind>", methods=["GET"])
@role_required("billing_operator")
def list_bookings(kind: str):
    model, date_field, _, _ = _kind(kind)
    date_column = getattr(model, date_field)
    limit, offset = pagination_args()

    query = model.query
    sender = (request.args.get("sender") or "").strip()
    if sender:
        query = query.filter(func.lower(func.trim(model.sender)) == sender.lower())
    window = _month_arg(request.args.get("month"))
    if window:
        query = query.filter(date_column >= window[0]).filter(date_column <= window[1])

    total = query.count()
    rows = query.order_by(date_column.desc(), model.id.desc()).limit(limit).offset(offset).all()
    return jsonify({"items": [r.to_dict() for r in rows], "total": total, "limit": limit, "offset": offset})


@bookings_bp.route("/<any('account-bookings', 'cash-bookings'):kind>", methods=["POST"])
@role_required("billing_operator")
def create_booking(kind: str):
    model, date_field, money_fields, text_fields = _kind(kind)
    booking = model(**_booking_values(json_body(), date_field, money_fields, text_fields))
    db.session.add(booking)
    db.session.commit()
    logger.info("Created %s %s for %s", kind, booking.id, booking.sender)
    return jsonify(booking.to_dict()), 201


@bookings_bp.route("/<any('account-bookings', 'cash-bookings'):kind>/<int:booking_id>", methods=["DELETE"])
@role_required("admin")
def delete_booking(kind: str, booking_id: int):
    model, _, _, _ = _kind(kind)
    booking = db.session.get(model, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    db.session.delete(booking)
    db.session.commit()
    logger.info("Deleted %s %s", kind, booking_id)
    return jsonify({"ok": True})
