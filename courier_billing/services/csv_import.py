"""
courier_billing/services/csv_import.py

CSV import mapper.

Static FieldMapping tables describe, per upload kind, how each CSV header maps
onto a system field, whether it is required, its value type and an optional
validator. Rows are parsed with the standard csv module, checked against the
table, and only clean rows are persisted.

Upload kinds:
- parties:  one Party per row, rows whose phone already exists are skipped.
- invoices: one CsvInvoice per row, rows whose SENDER NAME is not a known
            party are skipped.

Imported rows are priced one at a time by apply_rate(), which looks the row up
in the sender's party rate slabs and stores the total with its breakup.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import asdict, dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import SHIPMENT_TYPES, CsvInvoice, DistanceSlab, Mode, Party, ServiceType
from ..utils import parse_date, parse_decimal, parse_optional_int
from . import rate_slabs

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^[\+]?[1-9][\d]{0,15}$")
EMAIL_RE = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
PINCODE_RE = re.compile(r"^[1-9][0-9]{5}$")

GST_TYPES = ("unregistered", "consumer", "registered", "composition", "overseas")
UNKNOWN_PARTY_MESSAGE = "Party_name is not exist in system, Please create party first!"

Validator = Callable[[Any], Optional[str]]


@dataclass(frozen=True)
class FieldMapping:
    csv_field: str
    system_field: str
    required: bool = False
    type: str = "string"
    validator: Optional[Validator] = None
    column: Optional[str] = None


@dataclass
class CsvError:
    row: int
    field: str
    value: Any
    message: str
    type: str = "validation"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ParseResult:
    headers: List[str]
    rows: List[Dict[str, str]]
    errors: List[CsvError] = field(default_factory=list)
    row_numbers: List[int] = field(default_factory=list)
    total_rows: int = 0


# ----------------------------------------------------------------------
# Validators (return an error message, or None when the value is fine)
# ----------------------------------------------------------------------
def normalize_phone(value: str) -> str:
    return re.sub(r"[\s\-()]", "", value or "")


def _one_of(choices: Tuple[str, ...], message: str) -> Validator:
    def check(value):
        return None if value in choices else message
    return check


def _pattern(regex: re.Pattern, message: str, normalize: Callable[[str], str] = lambda v: v) -> Validator:
    def check(value):
        return None if regex.match(normalize(value)) else message
    return check


def _min_value(minimum: Decimal, message: str, exclusive: bool = False) -> Validator:
    def check(value):
        number = parse_decimal(value)
        if number is None:
            return None
        ok = number > minimum if exclusive else number >= minimum
        return None if ok else message
    return check


def _percent(value):
    number = parse_decimal(value)
    if number is None or Decimal("0") <= number <= Decimal("100"):
        return None
    return "Discount percent must be between 0 and 100"


_NON_NEGATIVE_AMOUNT = _min_value(Decimal("0"), "Amount cannot be negative")


PARTY_MAPPINGS: Tuple[FieldMapping, ...] = (
    FieldMapping("partyName", "partyName", True, "string", column="party_name"),
    FieldMapping("gstin", "gstin", False, "string",
                 _pattern(GSTIN_RE, "Invalid GSTIN format", str.upper), column="gst_number"),
    FieldMapping("phoneNumber", "phoneNumber", True, "phone",
                 _pattern(PHONE_RE, "Invalid phone number", normalize_phone), column="phone"),
    FieldMapping("email", "email", False, "email", column="email"),
    FieldMapping("gstType", "gstType", True, "string",
                 _one_of(GST_TYPES, "Invalid GST type"), column="gst_type"),
    FieldMapping("state", "state", True, "string", column="state"),
    FieldMapping("billingStreet", "billingAddress.street", True, "string", column="address"),
    FieldMapping("billingCity", "billingAddress.city", True, "string", column="city"),
    FieldMapping("billingState", "billingAddress.state", True, "string"),
    FieldMapping("billingPincode", "billingAddress.pincode", True, "string",
                 _pattern(PINCODE_RE, "Invalid pincode"), column="pincode"),
    FieldMapping("shippingStreet", "shippingAddress.street", False, "string", column="shipping_address"),
    FieldMapping("shippingCity", "shippingAddress.city", False, "string", column="shipping_city"),
    FieldMapping("shippingState", "shippingAddress.state", False, "string", column="shipping_state"),
    FieldMapping("shippingPincode", "shippingAddress.pincode", False, "string",
                 _pattern(PINCODE_RE, "Invalid pincode"), column="shipping_pincode"),
)

INVOICE_MAPPINGS: Tuple[FieldMapping, ...] = (
    FieldMapping("DATE OF BOOKING", "bookingDate", False, "date", column="booking_date"),
    FieldMapping("BOOKING REFERENCE", "bookingReference", column="booking_reference"),
    FieldMapping("CONSIGNMENT NO", "consignmentNo", column="consignment_no"),
    FieldMapping("MODE", "mode", False, "string",
                 _one_of(("Air", "Surface", "Train", "Ship"), "Invalid mode"), column="mode"),
    FieldMapping("SERVICE TYPE", "serviceType", column="service_type"),
    FieldMapping("WEIGHT (IN Kg)", "weight", False, "number",
                 _min_value(Decimal("0"), "Weight must be greater than 0", exclusive=True), column="weight"),
    FieldMapping("PREPAID AMOUNT", "prepaidAmount", False, "number", _NON_NEGATIVE_AMOUNT, column="prepaid_amount"),
    FieldMapping("FINAL COLLECTED", "finalCollected", False, "number", _NON_NEGATIVE_AMOUNT, column="final_collected"),
    FieldMapping("RETAIL PRICE", "retailPrice", False, "number",
                 _min_value(Decimal("0"), "Price cannot be negative"), column="retail_price"),
    FieldMapping("SENDER NAME", "sender.name", column="sender_name"),
    FieldMapping("SENDER PHONE", "sender.phone", False, "phone", column="sender_phone"),
    FieldMapping("SENDER ADDRESS", "sender.address", column="sender_address"),
    FieldMapping("RECIPIENT NAME", "recipient.name", column="recipient_name"),
    FieldMapping("RECIPIENT PHONE", "recipient.phone", False, "phone", column="recipient_phone"),
    FieldMapping("RECIPIENT ADDRESS", "recipient.address", column="recipient_address"),
    FieldMapping("MODE OF BOOKING", "bookingMode", column="booking_mode"),
    FieldMapping("SHIPMENT TYPE", "shipmentType", False, "string",
                 _one_of(("Domestic", "International"), "Invalid shipment type"), column="shipment_type"),
    FieldMapping("RISK SURCHARGE AMOUNT", "riskSurcharge.amount", False, "number", _NON_NEGATIVE_AMOUNT,
                 column="risk_surcharge_amount"),
    FieldMapping("RISK SURCHARGE TYPE", "riskSurcharge.type", column="risk_surcharge_type"),
    FieldMapping("CONTENTS", "contents", column="contents"),
    FieldMapping("DECLARED VALUE", "declaredValue", False, "number",
                 _min_value(Decimal("0"), "Value cannot be negative"), column="declared_value"),
    FieldMapping("EWAY-BILL", "ewayBill", column="eway_bill"),
    FieldMapping("GSTInvoice", "gstInvoice", column="gst_invoice"),
    FieldMapping("CUSTOMER", "customer", column="customer"),
    FieldMapping("SERVICE CODE", "serviceCode", column="service_code"),
    FieldMapping("REGION", "region", column="region"),
    FieldMapping("PAYMENT MODE", "payment.mode", False, "string",
                 _one_of(("Cash", "Card", "UPI", "Net Banking", "Credit"), "Invalid payment mode"),
                 column="payment_mode"),
    FieldMapping("CHARGEABLE WEIGHT", "chargeableWeight", False, "number",
                 _min_value(Decimal("0"), "Weight cannot be negative"), column="chargeable_weight"),
    FieldMapping("PAYMENT UTR", "payment.utr", column="payment_utr"),
    FieldMapping("EMPLOYEE CODE", "employee.code", column="employee_code"),
    FieldMapping("EMPLOYEE DISCOUNT PERCENT", "employee.discountPercent", False, "number", _percent,
                 column="employee_discount_percent"),
    FieldMapping("EMPLOYEE DISCOUNT AMOUNT", "employee.discountAmount", False, "number",
                 _min_value(Decimal("0"), "Discount amount cannot be negative"), column="employee_discount_amount"),
    FieldMapping("PROMOCODE", "promoCode", column="promocode"),
    FieldMapping("PROMOCODE DISCOUNT", "promoCodeDiscount", False, "number",
                 _min_value(Decimal("0"), "Discount cannot be negative"), column="promocode_discount"),
    FieldMapping("PACKING MATERIAL", "packing.material", column="packing_material"),
    FieldMapping("NO OF STRETCH FILMS", "packing.stretchFilms", False, "integer",
                 _min_value(Decimal("0"), "Count cannot be negative"), column="no_of_stretch_films"),
)

MAPPINGS: Dict[str, Tuple[FieldMapping, ...]] = {
    "parties": PARTY_MAPPINGS,
    "invoices": INVOICE_MAPPINGS,
}


def mappings_for(kind: str) -> Tuple[FieldMapping, ...]:
    try:
        return MAPPINGS[kind]
    except KeyError:
        raise ValidationError(f"Unknown import type: {kind}", fields=["type"]) from None


# ----------------------------------------------------------------------
# Parsing & validation
# ----------------------------------------------------------------------
def parse_csv(text: str) -> ParseResult:
    """Header row + data rows. BOM stripped, headers trimmed, blank lines skipped."""
    if text.startswith("\ufeff"):
        text = text[1:]
    reader = csv.reader(io.StringIO(text))
    try:
        header_row = next(reader)
    except StopIteration:
        raise ValidationError("CSV file is empty") from None
    headers = [h.strip() for h in header_row]

    rows: List[Dict[str, str]] = []
    row_numbers: List[int] = []
    errors: List[CsvError] = []
    data_row = 0
    try:
        for raw in reader:
            if not any(cell.strip() for cell in raw):
                continue
            data_row += 1
            if len(raw) > len(headers):
                # Misaligned rows are reported, never imported.
                errors.append(
                    CsvError(data_row, "", "", f"Too many fields: expected {len(headers)}, got {len(raw)}", "format")
                )
                continue
            rows.append({h: (raw[i].strip() if i < len(raw) else "") for i, h in enumerate(headers)})
            row_numbers.append(data_row)
    except csv.Error as exc:
        raise ValidationError("CSV parsing failed", details=str(exc)) from exc

    return ParseResult(headers=headers, rows=rows, errors=errors, row_numbers=row_numbers, total_rows=data_row)


def _type_error(value: str, value_type: str) -> Optional[str]:
    if value_type == "email":
        return None if EMAIL_RE.match(value) else "Invalid email format"
    if value_type == "phone":
        return None if PHONE_RE.match(normalize_phone(value)) else "Invalid phone number"
    if value_type == "number":
        return None if parse_decimal(value) is not None else "Must be a number"
    if value_type == "integer":
        number = parse_decimal(value)
        return None if number is not None and number == number.to_integral_value() else "Must be a whole number"
    if value_type == "date":
        return None if parse_date(value) is not None else "Invalid date"
    return None


def validate_rows(
    rows: List[Dict[str, str]],
    mappings: Tuple[FieldMapping, ...],
    row_numbers: Optional[List[int]] = None,
) -> Tuple[List[Tuple[int, Dict[str, str]]], List[CsvError]]:
    """Split rows into (row_number, row) pairs that pass every check, and errors."""
    valid: List[Tuple[int, Dict[str, str]]] = []
    errors: List[CsvError] = []
    numbers = row_numbers or range(1, len(rows) + 1)
    for index, row in zip(numbers, rows):
        row_errors: List[CsvError] = []
        for mapping in mappings:
            value = (row.get(mapping.csv_field) or "").strip()
            if not value:
                if mapping.required:
                    row_errors.append(
                        CsvError(index, mapping.csv_field, value, f"{mapping.csv_field} is required", "required")
                    )
                continue
            message = _type_error(value, mapping.type)
            if message:
                row_errors.append(CsvError(index, mapping.csv_field, value, message, "format"))
                continue
            if mapping.validator is not None:
                message = mapping.validator(value)
                if message:
                    row_errors.append(CsvError(index, mapping.csv_field, value, message, "validation"))
        if row_errors:
            errors.extend(row_errors)
        else:
            valid.append((index, row))
    return valid, errors


def preview(text: str, kind: str) -> Dict[str, Any]:
    """Dry run: counts, errors, the first five clean rows and the header mapping."""
    mappings = mappings_for(kind)
    parsed = parse_csv(text)
    valid, errors = validate_rows(parsed.rows, mappings, parsed.row_numbers)
    return {
        "totalRows": parsed.total_rows,
        "validRows": len(valid),
        "invalidRows": parsed.total_rows - len(valid),
        "errors": [e.to_dict() for e in parsed.errors + errors],
        "sampleData": [row for _, row in valid[:5]],
        "fieldMappings": {m.csv_field: m.system_field for m in mappings if m.csv_field in parsed.headers},
    }


def _coerce(value: str, value_type: str) -> Any:
    if value == "":
        return None
    if value_type == "number":
        return parse_decimal(value)
    if value_type == "integer":
        return int(parse_decimal(value))
    if value_type == "date":
        return parse_date(value)
    if value_type == "phone":
        return normalize_phone(value)
    return value


def map_row(row: Dict[str, str], mappings: Tuple[FieldMapping, ...]) -> Dict[str, Any]:
    """Validated CSV row -> model column values."""
    return {
        m.column: _coerce((row.get(m.csv_field) or "").strip(), m.type)
        for m in mappings
        if m.column is not None
    }


def _result(imported: int, skipped: int, errors: List[CsvError], noun: str) -> Dict[str, Any]:
    return {
        "success": True,
        "imported": imported,
        "skipped": skipped,
        "errors": [e.to_dict() for e in errors],
        "message": f"Successfully imported {imported} {noun}. {skipped} rows were skipped.",
    }


# ----------------------------------------------------------------------
# Imports
# ----------------------------------------------------------------------
def import_invoices(text: str) -> Dict[str, Any]:
    parsed = parse_csv(text)
    if not parsed.total_rows:
        raise ValidationError("CSV contains no data rows")
    valid, errors = validate_rows(parsed.rows, INVOICE_MAPPINGS, parsed.row_numbers)
    errors = parsed.errors + errors

    known_parties = {
        (name or "").strip().lower()
        for (name,) in db.session.query(Party.party_name).all()
    }

    imported = 0
    for row_number, row in valid:
        sender = (row.get("SENDER NAME") or "").strip()
        if not sender or sender.lower() not in known_parties:
            errors.append(CsvError(row_number, "SENDER NAME", sender, UNKNOWN_PARTY_MESSAGE, "validation"))
            continue
        db.session.add(CsvInvoice(**map_row(row, INVOICE_MAPPINGS)))
        imported += 1

    db.session.commit()
    skipped = parsed.total_rows - imported
    logger.info("CSV invoice import: %d imported, %d skipped", imported, skipped)
    return _result(imported, skipped, errors, "invoices")


def import_parties(text: str) -> Dict[str, Any]:
    parsed = parse_csv(text)
    if not parsed.total_rows:
        raise ValidationError("CSV contains no data rows")
    valid, errors = validate_rows(parsed.rows, PARTY_MAPPINGS, parsed.row_numbers)
    errors = parsed.errors + errors

    known_phones = {
        normalize_phone(phone)
        for (phone,) in db.session.query(Party.phone).filter(Party.phone.isnot(None)).all()
    }

    imported = 0
    for _, row in valid:
        values = map_row(row, PARTY_MAPPINGS)
        if values["phone"] in known_phones:
            continue
        values["state"] = values.get("state") or (row.get("billingState") or "").strip() or None
        values["shipping_address"] = values.get("shipping_address") or values.get("address")
        values["shipping_city"] = values.get("shipping_city") or values.get("city")
        values["shipping_state"] = values.get("shipping_state") or (row.get("billingState") or "").strip() or None
        values["shipping_pincode"] = values.get("shipping_pincode") or values.get("pincode")
        if values.get("gst_number"):
            values["gst_number"] = values["gst_number"].upper()
        db.session.add(Party(**values))
        known_phones.add(values["phone"])
        imported += 1

    db.session.commit()
    skipped = parsed.total_rows - imported
    logger.info("CSV party import: %d imported, %d skipped", imported, skipped)
    return _result(imported, skipped, errors, "parties")


def template_csv(kind: str) -> str:
    """Header-only CSV for the given upload kind."""
    buffer = io.StringIO()
    csv.writer(buffer).writerow([m.csv_field for m in mappings_for(kind)])
    return buffer.getvalue()


# ----------------------------------------------------------------------
# Rating imported rows
# ----------------------------------------------------------------------
def _code_variants(raw: str) -> List[str]:
    code = raw.strip().upper()
    underscored = re.sub(r"[^A-Z0-9]+", "_", code).strip("_")
    return [c for c in dict.fromkeys((code, underscored)) if c]


def _catalog_entry(model, raw: Optional[str]):
    """Active catalog row whose code (as typed, or underscored) or title matches `raw`."""
    raw = (raw or "").strip()
    if not raw:
        return None
    active = model.query.filter(model.is_active.is_(True))
    for code in _code_variants(raw):
        entry = active.filter(model.code == code).first()
        if entry is not None:
            return entry
    return active.filter(func.lower(model.title) == raw.lower()).first()


def _distance_slab(row: CsvInvoice, requested: Optional[int]) -> DistanceSlab:
    if requested is not None:
        slab = db.session.get(DistanceSlab, requested)
        if slab is None:
            raise ValidationError("Unknown distance slab", fields=["distance_slab_id"])
        return slab
    slab = _catalog_entry(DistanceSlab, row.region)
    if slab is None:
        raise ValidationError("Unable to resolve distance category", fields=["distance_slab_id"])
    return slab


def _shipment_type(row: CsvInvoice, requested: Any) -> str:
    if requested:
        value = str(requested).strip().upper()
        if value not in SHIPMENT_TYPES:
            raise ValidationError(f"shipment_type must be one of {', '.join(SHIPMENT_TYPES)}",
                                  fields=["shipment_type"])
        return value
    return "DOCUMENT" if (row.contents or "").strip().upper().startswith("DOC") else "NON_DOCUMENT"


def _weight_grams(row: CsvInvoice) -> Optional[int]:
    """Actual weight in grams, else the chargeable weight."""
    for kg in (row.weight, row.chargeable_weight):
        if kg is not None and Decimal(str(kg)) > 0:
            return int((Decimal(str(kg)) * 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return None


def apply_rate(csv_invoice_id: int, options: Optional[Dict[str, Any]] = None) -> CsvInvoice:
    """
    Price one imported row from its sender's party rate slab.

    Mode and service type are matched against the active catalogs by code,
    then by title. The distance slab comes from `options["distance_slab_id"]`
    or the row's REGION; the shipment type from `options["shipment_type"]` or
    the row's CONTENTS. Stores calculated_amount plus pricing_meta and commits.
    """
    options = options or {}
    row = db.session.get(CsvInvoice, csv_invoice_id)
    if row is None:
        raise NotFoundError("Row not found")

    mode = _catalog_entry(Mode, row.mode)
    if mode is None:
        raise ValidationError("Mode not recognized", fields=["mode"], details={"received": row.mode})
    service_type = _catalog_entry(ServiceType, row.service_type)
    if service_type is None:
        raise ValidationError("Service Type not recognized", fields=["service_type"],
                              details={"received": row.service_type})
    distance = _distance_slab(row, parse_optional_int(options.get("distance_slab_id")))

    grams = _weight_grams(row)
    if grams is None:
        raise ValidationError("Weight not available to determine slab", fields=["weight"])
    weight_slab = rate_slabs.weight_slab_for(grams)
    if weight_slab is None:
        raise ValidationError("No matching weight slab", fields=["weight"], details={"grams": grams})

    sender = (row.sender_name or "").strip()
    if not sender:
        raise ValidationError("Sender/Party name missing", fields=["sender_name"])
    party = (
        Party.query.filter(func.lower(func.trim(Party.party_name)) == sender.lower())
        .order_by(Party.id.asc())
        .first()
    )
    if party is None:
        raise ValidationError("Party not found", fields=["sender_name"])

    key = {
        "party_id": party.id,
        "shipment_type": _shipment_type(row, options.get("shipment_type")),
        "mode_id": mode.id,
        "service_type_id": service_type.id,
        "distance_slab_id": distance.id,
        "slab_id": weight_slab.id,
    }
    try:
        rate = rate_slabs.resolve(key)
    except NotFoundError as exc:
        raise NotFoundError(
            "No Party Rate Slab found for this scenario",
            details={"party": sender, "grams": grams, **key},
        ) from exc

    row.calculated_amount = Decimal(rate["total"])
    row.pricing_meta = {
        "source": "party_rate_slab",
        "party_rate_slab_id": rate["id"],
        "weight_grams": grams,
        **key,
        "rate_breakup": {k: v for k, v in rate.items() if k not in ("id", "slabId")},
    }
    if not row.region:
        row.region = distance.title
    db.session.commit()
    logger.info("Applied rate slab %s to CSV row %s: %s", rate["id"], row.id, rate["total"])
    return row
