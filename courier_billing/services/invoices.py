"""
courier_billing/services/invoices.py

Itemized invoices, party payments and the allocation of payments to invoices.

Totals:
    subtotal = sum of item total_price (an item without one is priced
    quantity * unit_price); total_amount = subtotal + tax_amount +
    additional_charges.

Payments:
    A party payment can be split over several invoices of the same party.
    After every allocation the invoice's received_amount is recomputed from
    the sum of its allocations and payment_status follows from it. Neither
    the payment amount nor an invoice's outstanding may be over-allocated.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    PAYMENT_STATUSES,
    SHIPMENT_TYPES,
    Invoice,
    InvoiceItem,
    Party,
    PartyPayment,
    PaymentAllocation,
    _json_value,
    _money,
    _to_decimal,
)
from ..utils import parse_date, parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)

CHARGE_FIELDS = ("tax_amount", "additional_charges")
SORT_FIELDS = ("created_at", "invoice_date", "total_amount")
ZERO = Decimal("0.00")


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _get_party(party_id: Any, field: str = "party_id") -> Party:
    parsed = parse_optional_int(party_id)
    if parsed is None:
        raise ValidationError(f"{field} is required", fields=[field])
    party = db.session.get(Party, parsed)
    if party is None:
        raise NotFoundError(f"Party {parsed} not found")
    return party


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def payment_status_for(total: Decimal, received: Decimal) -> str:
    if received <= 0:
        return "pending"
    if received >= total:
        return "paid"
    return "partial"


def next_invoice_number(invoice_date: date) -> str:
    prefix = f"INV-{invoice_date:%Y%m}-"
    count = Invoice.query.filter(Invoice.invoice_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:04d}"


def _item_values(raw: Any, index: int, invalid: List[str]) -> Dict[str, Any]:
    """One line item; offending fields are reported as items[<index>].<field>."""
    name = f"items[{index}]"
    if not isinstance(raw, dict):
        invalid.append(name)
        return {}

    values: Dict[str, Any] = {
        "item_description": _text(raw.get("item_description")),
        "consignment_no": _text(raw.get("consignment_no", raw.get("consignmentNo"))),
    }
    if not values["item_description"]:
        invalid.append(f"{name}.item_description")

    quantity = parse_optional_int(raw.get("quantity"))
    if raw.get("quantity") in (None, ""):
        quantity = 1
    if quantity is None or quantity < 1:
        invalid.append(f"{name}.quantity")
    values["quantity"] = quantity

    unit_price = parse_decimal(raw.get("unit_price"))
    if unit_price is None or unit_price < 0:
        invalid.append(f"{name}.unit_price")
    values["unit_price"] = unit_price

    total_price = parse_decimal(raw.get("total_price"))
    if raw.get("total_price") in (None, ""):
        if unit_price is not None and quantity:
            total_price = unit_price * quantity
    elif total_price is None or total_price < 0:
        invalid.append(f"{name}.total_price")
    values["total_price"] = total_price

    if raw.get("booking_date"):
        values["booking_date"] = parse_date(raw.get("booking_date"))
        if values["booking_date"] is None:
            invalid.append(f"{name}.booking_date")

    shipment_type = _text(raw.get("shipment_type"))
    if shipment_type:
        shipment_type = shipment_type.upper()
        if shipment_type not in SHIPMENT_TYPES:
            invalid.append(f"{name}.shipment_type")
    values["shipment_type"] = shipment_type

    for field in ("mode_id", "service_type_id", "distance_slab_id"):
        values[field] = parse_optional_int(raw.get(field))

    if raw.get("weight_kg") not in (None, ""):
        values["weight_kg"] = parse_decimal(raw.get("weight_kg"))
        if values["weight_kg"] is None or values["weight_kg"] < 0:
            invalid.append(f"{name}.weight_kg")
    return values


def _items(raw: Any) -> List[InvoiceItem]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one item is required", fields=["items"])
    invalid: List[str] = []
    values = [_item_values(item, index, invalid) for index, item in enumerate(raw)]
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    for item in values:
        item["unit_price"] = _money(item["unit_price"])
        item["total_price"] = _money(item["total_price"])
    return [InvoiceItem(**item) for item in values]


def _charges(payload: Dict[str, Any]) -> Dict[str, Decimal]:
    charges: Dict[str, Decimal] = {}
    invalid: List[str] = []
    for field in CHARGE_FIELDS:
        if field not in payload:
            continue
        raw = payload.get(field)
        parsed = parse_decimal(raw)
        if raw in (None, ""):
            parsed = Decimal("0")
        if parsed is None or parsed < 0:
            invalid.append(field)
            continue
        charges[field] = _money(parsed)
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return charges


def _date_window(query, filters: Dict[str, Any]):
    """Apply ?date_from=/?date_to= (inclusive) to an invoice_date query."""
    bounds: Dict[str, date] = {}
    invalid: List[str] = []
    for field in ("date_from", "date_to"):
        if not filters.get(field):
            continue
        day = parse_date(filters[field])
        if day is None:
            invalid.append(field)
        else:
            bounds[field] = day
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    if "date_from" in bounds:
        query = query.filter(Invoice.invoice_date >= bounds["date_from"])
    if "date_to" in bounds:
        query = query.filter(Invoice.invoice_date <= bounds["date_to"])
    return query


def _recompute_total(invoice: Invoice) -> None:
    invoice.subtotal = _money(sum((_to_decimal(i.total_price) for i in invoice.items), Decimal("0")))
    invoice.total_amount = _money(
        _to_decimal(invoice.subtotal) + _to_decimal(invoice.tax_amount) + _to_decimal(invoice.additional_charges)
    )


def refresh_received(invoice: Invoice) -> None:
    """received_amount := sum of allocations; payment_status follows."""
    received = (
        db.session.query(func.coalesce(func.sum(PaymentAllocation.amount), 0))
        .filter(PaymentAllocation.invoice_id == invoice.id)
        .scalar()
    )
    invoice.received_amount = _money(_to_decimal(received))
    invoice.payment_status = payment_status_for(_to_decimal(invoice.total_amount), invoice.received_amount)


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------
def load_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def create_invoice(payload: Dict[str, Any], created_by: Optional[str] = None) -> Invoice:
    party = _get_party(payload.get("party_id"))

    invoice_date = parse_date(payload.get("invoice_date"))
    if invoice_date is None:
        raise ValidationError("invoice_date is required", fields=["invoice_date"])

    invoice = Invoice(
        party_id=party.id,
        invoice_date=invoice_date,
        tax_amount=ZERO,
        additional_charges=ZERO,
        received_amount=ZERO,
        payment_status="pending",
        notes=_text(payload.get("notes")),
        created_by=created_by,
    )
    for field, value in _charges(payload).items():
        setattr(invoice, field, value)
    invoice.items = _items(payload.get("items"))
    _recompute_total(invoice)
    invoice.invoice_number = _text(payload.get("invoice_number")) or next_invoice_number(invoice_date)

    db.session.add(invoice)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            f"Invoice number {invoice.invoice_number} already exists",
            details={"invoice_number": invoice.invoice_number},
        ) from exc
    db.session.commit()
    logger.info("Created invoice %s for party %s (%d items)", invoice.invoice_number, party.id, len(invoice.items))
    return invoice


def update_invoice(invoice_id: int, payload: Dict[str, Any]) -> Invoice:
    """
    Partial update. `items`, when present, replaces every line item; any change
    to items or charges recomputes subtotal and total_amount.
    """
    invoice = load_invoice(invoice_id)

    if "party_id" in payload:
        invoice.party_id = _get_party(payload.get("party_id")).id
    if "invoice_date" in payload:
        invoice_date = parse_date(payload.get("invoice_date"))
        if invoice_date is None:
            raise ValidationError("Invalid invoice_date", fields=["invoice_date"])
        invoice.invoice_date = invoice_date
    if "notes" in payload:
        invoice.notes = _text(payload.get("notes"))

    charges = _charges(payload)
    for field, value in charges.items():
        setattr(invoice, field, value)
    if "items" in payload:
        invoice.items = _items(payload.get("items"))
    if charges or "items" in payload:
        _recompute_total(invoice)
        if _to_decimal(invoice.total_amount) < _to_decimal(invoice.received_amount):
            db.session.rollback()
            raise ValidationError("Invoice total cannot be below the amount already received",
                                  fields=["items"])

    invoice.payment_status = payment_status_for(
        _to_decimal(invoice.total_amount), _to_decimal(invoice.received_amount)
    )
    if "payment_status" in payload:
        status = str(payload.get("payment_status") or "").strip().lower()
        if status not in PAYMENT_STATUSES:
            db.session.rollback()
            raise ValidationError(f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}",
                                  fields=["payment_status"])
        invoice.payment_status = status

    db.session.commit()
    logger.info("Updated invoice %s", invoice.invoice_number)
    return invoice


def delete_invoice(invoice_id: int) -> None:
    """Removes the invoice with its items and allocations; payments stay."""
    invoice = load_invoice(invoice_id)
    number = invoice.invoice_number
    db.session.delete(invoice)
    db.session.commit()
    logger.info("Deleted invoice %s", number)


def list_invoices(limit: int, offset: int, filters: Dict[str, Any]) -> Tuple[List[Invoice], int]:
    query = _date_window(Invoice.query.options(joinedload(Invoice.party)), filters)
    party_id = filters.get("party_id")
    if party_id not in (None, "", "all"):
        query = query.filter(Invoice.party_id == parse_optional_int(party_id))

    sort = filters.get("sort") if filters.get("sort") in SORT_FIELDS else "created_at"
    column = getattr(Invoice, sort)
    ordering = column.asc() if str(filters.get("order") or "").lower() == "asc" else column.desc()

    total = query.count()
    rows = query.order_by(ordering, Invoice.id.desc()).limit(limit).offset(offset).all()
    return rows, total


def _allocation_to_dict(allocation: PaymentAllocation) -> Dict[str, Any]:
    data = allocation.to_dict()
    payment = allocation.party_payment
    data["payment_date"] = _json_value(payment.payment_date)
    data["party_payment_amount"] = _json_value(payment.amount)
    data["payment_method"] = payment.payment_method
    data["reference_no"] = payment.reference_no
    return data


def invoice_to_dict(invoice: Invoice, detail: bool = False) -> Dict[str, Any]:
    data = invoice.to_dict()
    data["party_name"] = invoice.party.party_name if invoice.party else None
    data["outstanding"] = _json_value(invoice.outstanding)
    if detail:
        data["items"] = [item.to_dict() for item in invoice.items]
        data["allocations"] = [_allocation_to_dict(a) for a in invoice.allocations]
    return data


def invoice_allocations(invoice_id: int) -> Dict[str, Any]:
    invoice = load_invoice(invoice_id)
    allocations = sorted(invoice.allocations, key=lambda a: (a.created_at, a.id), reverse=True)
    return {
        "allocations": [_allocation_to_dict(a) for a in allocations],
        "invoice": {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "total_amount": _json_value(invoice.total_amount),
            "received_amount": _json_value(invoice.received_amount),
        },
    }


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------
def _parse_allocations(raw: Any) -> List[Tuple[int, Decimal]]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValidationError("allocations must be a list", fields=["allocations"])
    parsed: List[Tuple[int, Decimal]] = []
    invalid: List[str] = []
    for index, item in enumerate(raw):
        item = item if isinstance(item, dict) else {}
        invoice_id = parse_optional_int(item.get("invoice_id"))
        amount = parse_decimal(item.get("amount"))
        if invoice_id is None:
            invalid.append(f"allocations[{index}].invoice_id")
        if amount is None or amount <= 0:
            invalid.append(f"allocations[{index}].amount")
        parsed.append((invoice_id, amount))
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return parsed


def _allocate(payment: PartyPayment, allocations: List[Tuple[int, Decimal]]) -> None:
    """Attach allocations to `payment` and refresh every touched invoice. Flushes."""
    already = sum((_to_decimal(a.amount) for a in payment.allocations), Decimal("0"))
    requested = sum((amount for _, amount in allocations), Decimal("0"))
    if already + requested > _to_decimal(payment.amount):
        raise ValidationError("Allocations exceed the payment amount", fields=["allocations"])

    touched: Dict[int, Invoice] = {}
    for invoice_id, amount in allocations:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.party_id != payment.party_id:
            raise ValidationError(f"Invoice {invoice.invoice_number} belongs to another party",
                                  fields=["allocations"])
        payment.allocations.append(PaymentAllocation(invoice=invoice, amount=_money(amount)))
        touched[invoice.id] = invoice
    db.session.flush()

    for invoice in touched.values():
        refresh_received(invoice)
        if invoice.received_amount > _to_decimal(invoice.total_amount):
            raise ValidationError(
                f"Allocation exceeds the outstanding amount of invoice {invoice.invoice_number}",
                fields=["allocations"],
            )


def _payment_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    invalid: List[str] = []
    payment_date = parse_date(payload.get("payment_date"))
    if payment_date is None:
        invalid.append("payment_date")
    amount = parse_decimal(payload.get("amount"))
    if amount is None or amount <= 0:
        invalid.append("amount")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return {
        "payment_date": payment_date,
        "amount": _money(amount),
        "payment_method": _text(payload.get("payment_method")),
        "reference_no": _text(payload.get("reference_no", payload.get("reference_number"))),
        "notes": _text(payload.get("notes")),
    }


def create_party_payment(payload: Dict[str, Any], created_by: Optional[str] = None) -> PartyPayment:
    """Record a party payment and, optionally, its allocations in one transaction."""
    party = _get_party(payload.get("party_id"))
    payment = PartyPayment(party_id=party.id, created_by=created_by, **_payment_values(payload))
    allocations = _parse_allocations(payload.get("allocations"))

    db.session.add(payment)
    try:
        db.session.flush()
        _allocate(payment, allocations)
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    logger.info("Recorded payment %s of %s from party %s (%d allocations)",
                payment.id, payment.amount, party.id, len(allocations))
    return payment


def add_allocations(party_payment_id: Any, raw_allocations: Any) -> PartyPayment:
    payment_id = parse_optional_int(party_payment_id)
    if payment_id is None:
        raise ValidationError("party_payment_id is required", fields=["party_payment_id"])
    payment = db.session.get(PartyPayment, payment_id)
    if payment is None:
        raise NotFoundError("Party payment not found")
    allocations = _parse_allocations(raw_allocations)
    if not allocations:
        raise ValidationError("At least one allocation is required", fields=["allocations"])

    try:
        _allocate(payment, allocations)
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    logger.info("Allocated %d amounts from payment %s", len(allocations), payment.id)
    return payment


def record_invoice_payment(payload: Dict[str, Any], created_by: Optional[str] = None) -> PartyPayment:
    """A payment against a single invoice: a party payment fully allocated to it."""
    invoice_id = parse_optional_int(payload.get("invoice_id"))
    if invoice_id is None:
        raise ValidationError("invoice_id is required", fields=["invoice_id"])
    invoice = load_invoice(invoice_id)
    values = _payment_values(payload)
    if values["amount"] > invoice.outstanding:
        raise ValidationError("Payment exceeds invoice total amount", fields=["amount"])

    return create_party_payment(
        {
            **payload,
            "party_id": invoice.party_id,
            "allocations": [{"invoice_id": invoice.id, "amount": str(values["amount"])}],
        },
        created_by=created_by,
    )


def payment_to_dict(payment: PartyPayment) -> Dict[str, Any]:
    data = payment.to_dict()
    data["allocations"] = [a.to_dict() for a in payment.allocations]
    return data


def list_party_payments(party_id: Any) -> List[PartyPayment]:
    party = _get_party(party_id)
    return (
        PartyPayment.query.filter_by(party_id=party.id)
        .order_by(PartyPayment.payment_date.desc(), PartyPayment.id.desc())
        .all()
    )


def party_outstanding(party_id: Any) -> Dict[str, Any]:
    """Open invoices of a party (outstanding > 0) and their summary."""
    party = _get_party(party_id)
    invoices = (
        Invoice.query.filter_by(party_id=party.id)
        .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .all()
    )
    open_invoices = [i for i in invoices if i.outstanding > 0]
    return {
        "party_id": party.id,
        "summary": {
            "total_invoices": len(invoices),
            "total_open": len(open_invoices),
            "total_outstanding": _json_value(sum((i.outstanding for i in open_invoices), ZERO)),
        },
        "open_invoices": [
            {
                "id": i.id,
                "invoice_number": i.invoice_number,
                "invoice_date": _json_value(i.invoice_date),
                "total_amount": _json_value(i.total_amount),
                "received_amount": _json_value(i.received_amount),
                "outstanding": _json_value(i.outstanding),
            }
            for i in open_invoices
        ],
    }


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------
def daily_collection(filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    """One row per invoice item, newest invoice first."""
    query = (
        db.session.query(InvoiceItem, Invoice)
        .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
        .options(joinedload(InvoiceItem.service_type), joinedload(Invoice.party))
    )
    query = _date_window(query, filters)
    if filters.get("party_id"):
        query = query.filter(Invoice.party_id == parse_optional_int(filters["party_id"]))
    if filters.get("service_type_id"):
        query = query.filter(InvoiceItem.service_type_id == parse_optional_int(filters["service_type_id"]))

    rows = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc(), InvoiceItem.id.asc()).all()
    return [
        {
            "date": _json_value(invoice.invoice_date),
            "invoice_number": invoice.invoice_number,
            "client": invoice.party.party_name if invoice.party else None,
            "consignment_no": item.consignment_no,
            "package_type": item.shipment_type,
            "courier": item.service_type.title if item.service_type else None,
            "weight": _json_value(_to_decimal(item.weight_kg)),
            "amount": _json_value(item.total_price),
        }
        for item, invoice in rows
    ]
