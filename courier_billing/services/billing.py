"""
courier_billing/services/billing.py

Bill assembler.

A bill's bookings come from exactly one of two sources, decided once per bill:

- ExplicitMapping: the bill has bill_bookings rows; fetch exactly those
  account/cash bookings.
- ImplicitMatch: no mapping; take every booking whose sender equals the
  party name (trimmed, case-insensitive) inside the bill's calendar month.

Account bookings come first, then cash bookings, each newest first. The merged
list is not re-sorted.

Rendering returns an HTML document (printed to PDF by the browser).
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from flask import current_app, render_template
from num2words import num2words
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    BOOKING_TYPES,
    AccountBooking,
    Bill,
    BillBooking,
    CashBooking,
    Company,
    Operator,
    Party,
    User,
    _money,
    _to_decimal,
)
from ..utils import parse_bool, parse_date, parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)

BILL_TEMPLATES = {
    "Template 1": "bills/template1.html",
    "Template 2": "bills/template2.html",
}
DEFAULT_BILL_TEMPLATE = "bills/default.html"
TEMPLATE_NAMES = ("Default",) + tuple(BILL_TEMPLATES)

_ONES = [
    "", "ONE", "TWO", "THREE", "FOUR", "FIVE", "SIX", "SEVEN", "EIGHT", "NINE", "TEN",
    "ELEVEN", "TWELVE", "THIRTEEN", "FOURTEEN", "FIFTEEN", "SIXTEEN", "SEVENTEEN",
    "EIGHTEEN", "NINETEEN",
]
_TENS = ["", "", "TWENTY", "THIRTY", "FORTY", "FIFTY", "SIXTY", "SEVENTY", "EIGHTY", "NINETY"]

LARGE_NUMBER = "LARGE NUMBER"
AMOUNT_FIELDS = (
    "base_amount",
    "service_charges",
    "fuel_charges",
    "other_charges",
    "cgst_amount",
    "sgst_amount",
    "igst_amount",
)


# ----------------------------------------------------------------------
# Amount in words
# ----------------------------------------------------------------------
def _convert_below_thousand(num: int) -> str:
    if num < 20:
        return _ONES[num]
    if num < 100:
        return _TENS[num // 10] + (" " + _ONES[num % 10] if num % 10 else "")
    if num < 1000:
        rest = num % 100
        return _ONES[num // 100] + " HUNDRED" + (" " + _convert_below_thousand(rest) if rest else "")
    return LARGE_NUMBER


def number_to_words(amount: Any) -> str:
    """
    Integer part of `amount` in words, suffixed with ONLY.

    Covers 0-999; anything from 1000 up yields the LARGE NUMBER sentinel.
    """
    value = int(_to_decimal(parse_decimal(amount)))
    if value == 0:
        return "ZERO ONLY"
    if value < 0:
        return "MINUS " + number_to_words(-value)
    return _convert_below_thousand(value) + " ONLY"


def amount_in_words(amount: Any, full: bool = False) -> str:
    """Words for bills: the short converter, or full Indian numbering when `full`."""
    if not full:
        return number_to_words(amount)
    value = int(_to_decimal(parse_decimal(amount)))
    if value == 0:
        return "ZERO ONLY"
    words = num2words(value, lang="en_IN").replace(",", "").replace("-", " ")
    return words.upper() + " ONLY"


# ----------------------------------------------------------------------
# Booking resolution
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ExplicitMapping:
    account_ids: Tuple[int, ...]
    cash_ids: Tuple[int, ...]


@dataclass(frozen=True)
class ImplicitMatch:
    party_name: str
    month_start: date
    month_end: date


BookingSource = Union[ExplicitMapping, ImplicitMatch]


def month_window(day: date) -> Tuple[date, date]:
    """First and last day of the calendar month containing `day`."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def booking_source_for(bill: Bill) -> BookingSource:
    mappings = BillBooking.query.filter_by(bill_id=bill.id).all()
    if mappings:
        return ExplicitMapping(
            account_ids=tuple(m.booking_id for m in mappings if m.booking_type == "account"),
            cash_ids=tuple(m.booking_id for m in mappings if m.booking_type == "cash"),
        )
    start, end = month_window(bill.bill_date)
    return ImplicitMatch(party_name=bill.party.party_name, month_start=start, month_end=end)


def _account_line(booking: AccountBooking) -> Dict[str, Any]:
    return {
        "booking_type": "account",
        "id": booking.id,
        "date": booking.booking_date,
        "receiver": booking.receiver,
        "center": booking.center,
        "consignment_no": booking.reference_number,
        "remark": booking.remarks,
        "package_type": booking.package_type,
        "carrier": booking.carrier,
        "weight": booking.weight,
        "charges": _to_decimal(booking.net_amount),
    }


def _cash_line(booking: CashBooking) -> Dict[str, Any]:
    return {
        "booking_type": "cash",
        "id": booking.id,
        "date": booking.date,
        "receiver": booking.receiver,
        "center": booking.center,
        "consignment_no": booking.reference_number,
        "remark": booking.remarks,
        "package_type": booking.package_type,
        "carrier": booking.carrier,
        "weight": booking.weight,
        "charges": _to_decimal(booking.net_amount),
    }


def _sender_matches(column, party_name: str):
    return func.lower(func.trim(column)) == party_name.strip().lower()


def resolve_bookings(source: BookingSource) -> List[Dict[str, Any]]:
    """Booking lines for a bill: account first, then cash, each newest first."""
    if isinstance(source, ExplicitMapping):
        account_rows = []
        if source.account_ids:
            account_rows = (
                AccountBooking.query.filter(AccountBooking.id.in_(source.account_ids))
                .order_by(AccountBooking.booking_date.desc(), AccountBooking.id.desc())
                .all()
            )
        cash_rows = []
        if source.cash_ids:
            cash_rows = (
                CashBooking.query.filter(CashBooking.id.in_(source.cash_ids))
                .order_by(CashBooking.date.desc(), CashBooking.id.desc())
                .all()
            )
    elif isinstance(source, ImplicitMatch):
        account_rows = (
            AccountBooking.query.filter(_sender_matches(AccountBooking.sender, source.party_name))
            .filter(AccountBooking.booking_date >= source.month_start)
            .filter(AccountBooking.booking_date <= source.month_end)
            .order_by(AccountBooking.booking_date.desc(), AccountBooking.id.desc())
            .all()
        )
        cash_rows = (
            CashBooking.query.filter(_sender_matches(CashBooking.sender, source.party_name))
            .filter(CashBooking.date >= source.month_start)
            .filter(CashBooking.date <= source.month_end)
            .order_by(CashBooking.date.desc(), CashBooking.id.desc())
            .all()
        )
    else:
        raise TypeError(f"Unknown booking source: {source!r}")

    return [_account_line(b) for b in account_rows] + [_cash_line(b) for b in cash_rows]


# ----------------------------------------------------------------------
# Display amounts & rendering
# ----------------------------------------------------------------------
def display_amounts(bill: Bill) -> Dict[str, Decimal]:
    """
    Amounts printed on the bill.

    base falls back to BILL_DEFAULT_BASE_AMOUNT when absent or zero, fuel to
    BILL_DEFAULT_FUEL_CHARGES when absent or not positive. total is the stored
    total, never recomputed from the booking lines.
    """
    config = current_app.config
    base = parse_decimal(bill.base_amount)
    if not base:
        base = Decimal(str(config["BILL_DEFAULT_BASE_AMOUNT"]))
    fuel = parse_decimal(bill.fuel_charges)
    if fuel is None or fuel <= 0:
        fuel = Decimal(str(config["BILL_DEFAULT_FUEL_CHARGES"]))
    return {
        "base_amount": _money(base),
        "fuel_charges": _money(fuel),
        "total_amount": _money(_to_decimal(bill.total_amount)),
    }


def template_for(name: Optional[str]) -> str:
    return BILL_TEMPLATES.get(name or "", DEFAULT_BILL_TEMPLATE)


def active_company() -> Optional[Company]:
    return Company.query.filter_by(is_active=True).order_by(Company.id.asc()).first()


@dataclass
class BillDocument:
    bill: Bill
    bookings: List[Dict[str, Any]]
    html: str

    @property
    def filename(self) -> str:
        return f"bill-{self.bill.bill_number}.html"


def load_bill(bill_id: int) -> Bill:
    bill = db.session.get(Bill, bill_id)
    if bill is None:
        raise NotFoundError("Bill not found")
    return bill


def build_bill(bill_id: int) -> BillDocument:
    """Load the bill, resolve its bookings and render the selected template."""
    bill = load_bill(bill_id)

    bookings = resolve_bookings(booking_source_for(bill))
    amounts = display_amounts(bill)
    full_words = current_app.config.get("AMOUNT_IN_WORDS_FULL", False)

    html = render_template(
        template_for(bill.template),
        bill=bill,
        party=bill.party,
        company=active_company(),
        bookings=bookings,
        amounts=amounts,
        amount_words=amount_in_words(amounts["total_amount"], full=full_words),
        month_label=bill.bill_date.strftime("%b %Y").upper(),
        fuel_label=current_app.config["BILL_FUEL_PERCENT_LABEL"],
    )
    logger.info("Rendered bill %s with %d bookings", bill.bill_number, len(bookings))
    return BillDocument(bill=bill, bookings=bookings, html=html)


# ----------------------------------------------------------------------
# Bill creation & listing
# ----------------------------------------------------------------------
def _selected_bookings(raw: Any) -> List[Tuple[str, int]]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValidationError("selected_bookings must be a list", fields=["selected_bookings"])
    selected: List[Tuple[str, int]] = []
    for item in raw:
        booking_id = parse_optional_int(item.get("id")) if isinstance(item, dict) else None
        booking_type = str(item.get("booking_type") or "account").lower() if isinstance(item, dict) else ""
        if booking_id is None or booking_type not in BOOKING_TYPES:
            raise ValidationError("Invalid entry in selected_bookings", fields=["selected_bookings"])
        if (booking_type, booking_id) not in selected:
            selected.append((booking_type, booking_id))
    return selected


def _check_bookings_belong_to(party: Party, selected: List[Tuple[str, int]]) -> None:
    for booking_type, model in (("account", AccountBooking), ("cash", CashBooking)):
        ids = [booking_id for kind, booking_id in selected if kind == booking_type]
        if not ids:
            continue
        matched = (
            model.query.filter(model.id.in_(ids))
            .filter(_sender_matches(model.sender, party.party_name))
            .count()
        )
        if matched != len(ids):
            raise ValidationError(
                f"Selected {booking_type} bookings do not match the selected party",
                fields=["selected_bookings"],
            )


def preferred_template(username: Optional[str]) -> Optional[str]:
    """The operator's saved bill template, if any."""
    if not username:
        return None
    operator = Operator.query.join(User, Operator.user_id == User.id).filter(User.username == username).first()
    if operator is None or operator.bill_template not in TEMPLATE_NAMES:
        return None
    return operator.bill_template


def next_bill_number(bill_date: date) -> str:
    prefix = f"BILL-{bill_date:%Y%m}-"
    count = Bill.query.filter(Bill.bill_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:04d}"


def create_bill(payload: Dict[str, Any], created_by: Optional[str] = None) -> Bill:
    """
    Persist a bill and (optionally) its explicit booking selection.

    Every selected booking must have been sent by the bill's party.
    A missing total_amount is the sum of the charge components.
    """
    party_id = parse_optional_int(payload.get("party_id"))
    if party_id is None:
        raise ValidationError("party_id is required", fields=["party_id"])
    party = db.session.get(Party, party_id)
    if party is None:
        raise ValidationError("Invalid party selected", fields=["party_id"])

    bill_date = parse_date(payload.get("invoice_date") or payload.get("bill_date")) or date.today()

    amounts: Dict[str, Decimal] = {}
    invalid: List[str] = []
    for field in AMOUNT_FIELDS:
        raw = payload.get(field)
        parsed = parse_decimal(raw)
        if raw not in (None, "") and (parsed is None or parsed < 0):
            invalid.append(field)
        amounts[field] = parsed or Decimal("0")

    total = parse_decimal(payload.get("total_amount"))
    if payload.get("total_amount") not in (None, "") and (total is None or total < 0):
        invalid.append("total_amount")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    if total is None:
        total = sum(amounts.values(), Decimal("0"))

    template = payload.get("template") or preferred_template(created_by) or "Default"
    if template not in TEMPLATE_NAMES:
        raise ValidationError(f"Unknown template: {template}", fields=["template"])

    selected = _selected_bookings(payload.get("selected_bookings"))
    _check_bookings_belong_to(party, selected)

    bill_number = (payload.get("invoice_number") or payload.get("bill_number") or "").strip()
    bill = Bill(
        party_id=party.id,
        bill_number=bill_number or next_bill_number(bill_date),
        bill_date=bill_date,
        total_amount=_money(total),
        template=template,
        email_sent=parse_bool(payload.get("send_email")),
        status="generated",
        bill_type=(payload.get("bill_type") or "monthly").strip(),
        created_by=created_by,
        **{field: _money(value) for field, value in amounts.items()},
    )
    db.session.add(bill)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            f"Bill number {bill.bill_number} already exists",
            details={"bill_number": bill.bill_number},
        ) from exc

    for booking_type, booking_id in selected:
        db.session.add(BillBooking(bill_id=bill.id, booking_type=booking_type, booking_id=booking_id))

    db.session.commit()
    if bill.email_sent:
        logger.info("Bill %s flagged for e-mail delivery", bill.bill_number)
    logger.info("Generated bill %s for party %s (%d bookings)", bill.bill_number, party.id, len(selected))
    return bill


def bill_to_dict(bill: Bill) -> Dict[str, Any]:
    data = bill.to_dict()
    data["party_name"] = bill.party.party_name if bill.party else None
    data["bookings"] = [
        {"booking_type": m.booking_type, "booking_id": m.booking_id} for m in bill.bookings
    ]
    return data


def list_bills(limit: int, offset: int, party_id: Optional[int] = None) -> Tuple[List[Bill], int]:
    query = Bill.query
    if party_id is not None:
        query = query.filter(Bill.party_id == party_id)
    total = query.count()
    bills = query.order_by(Bill.bill_date.desc(), Bill.id.desc()).limit(limit).offset(offset).all()
    return bills, total
