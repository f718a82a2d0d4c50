"""
Courier Billing – Domain Models

Master catalogs:
- Mode / ServiceType / DistanceSlab (code + title)
- WeightSlab (gram range)
- Region / Center / Carrier / Operator / SmsFormat
- QuotationDefault / QuotationNote

Core:
- Party, Company
- PartyRateSlab (+ PartyRateSlabAudit, append-only)
- PartyQuotation (free-form {region: {weight_label: price}} sheet)
- Bill (+ BillBooking explicit mapping), AccountBooking, CashBooking
- Invoice (+ InvoiceItem), PartyPayment (+ PaymentAllocation to invoices)
- CsvInvoice (normalized CSV import row)
- User (JWT-authenticated, role based)

IMPORTANT:
- API input is never trusted. Validation lives in services/, not here.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db


SHIPMENT_TYPES = ("DOCUMENT", "NON_DOCUMENT")
PACKAGE_TYPES = ("DOCUMENT", "NON_DOCUMENT")
ROLES = ("admin", "billing_operator")
BOOKING_TYPES = ("account", "cash")
PAYMENT_STATUSES = ("pending", "partial", "paid", "overdue")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _json_value(value: Any) -> Any:
    """Column value -> JSON-safe value (dates as ISO strings, decimals as strings)."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class SerializerMixin:
    """Column-based dict conversion for JSON responses."""

    def to_dict(self) -> Dict[str, Any]:
        return {c.name: _json_value(getattr(self, c.name)) for c in self.__table__.columns}


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, SerializerMixin, db.Model):
    """Login user. Role is either admin or billing_operator."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(30), nullable=False, default="billing_operator", index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.pop("password_hash", None)
        return data

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


# ---------------------------------------------------------------------
# Master catalogs
# ---------------------------------------------------------------------
class Mode(SerializerMixin, db.Model):
    """Transport mode (AIR, SURFACE)."""

    __tablename__ = "modes"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class ServiceType(SerializerMixin, db.Model):
    __tablename__ = "service_types"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class DistanceSlab(SerializerMixin, db.Model):
    __tablename__ = "distance_slabs"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class WeightSlab(SerializerMixin, db.Model):
    """Inclusive gram range: min_weight_grams <= w <= max_weight_grams."""

    __tablename__ = "weight_slabs"

    id = db.Column(db.Integer, primary_key=True)
    slab_name = db.Column(db.String(120), nullable=False)
    min_weight_grams = db.Column(db.Integer, nullable=False)
    max_weight_grams = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("min_weight_grams", "max_weight_grams", name="uq_weight_slab_range"),
    )

    @property
    def title(self) -> str:
        return self.slab_name


class Region(SerializerMixin, db.Model):
    __tablename__ = "regions"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Center(SerializerMixin, db.Model):
    __tablename__ = "centers"

    id = db.Column(db.Integer, primary_key=True)
    state = db.Column(db.String(120), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    region_id = db.Column(
        db.Integer,
        db.ForeignKey("regions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    region = db.relationship("Region", backref=db.backref("centers", lazy=True))

    __table_args__ = (db.UniqueConstraint("state", "city", name="uq_center_state_city"),)


class Carrier(SerializerMixin, db.Model):
    __tablename__ = "carriers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Operator(SerializerMixin, db.Model):
    """Per-user operator preferences (bill template)."""

    __tablename__ = "operators"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    bill_template = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship("User", backref=db.backref("operator", uselist=False))


class SmsFormat(SerializerMixin, db.Model):
    __tablename__ = "sms_formats"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    template = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class QuotationDefault(SerializerMixin, db.Model):
    """Default per-region tariff: base rate for a weight slab + extra per 1000 g."""

    __tablename__ = "quotation_defaults"

    id = db.Column(db.Integer, primary_key=True)
    region_id = db.Column(
        db.Integer,
        db.ForeignKey("regions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_type = db.Column(db.String(20), nullable=False)
    slab_id = db.Column(
        db.Integer,
        db.ForeignKey("weight_slabs.id", ondelete="CASCADE"),
        nullable=False,
    )
    base_rate = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    extra_per_1000g = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    region = db.relationship("Region")
    slab = db.relationship("WeightSlab")

    __table_args__ = (
        db.UniqueConstraint("region_id", "package_type", "slab_id", name="uq_quotation_default"),
    )


class QuotationNote(SerializerMixin, db.Model):
    __tablename__ = "quotation_notes"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), unique=True, nullable=False)
    body = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


# ---------------------------------------------------------------------
# Parties & companies
# ---------------------------------------------------------------------
class Party(SerializerMixin, db.Model):
    """Customer billed by the courier company."""

    __tablename__ = "parties"

    id = db.Column(db.Integer, primary_key=True)

    party_name = db.Column(db.String(255), nullable=False, index=True)
    contact_person = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(30), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(120), nullable=True)
    pincode = db.Column(db.String(10), nullable=True)

    shipping_address = db.Column(db.Text, nullable=True)
    shipping_city = db.Column(db.String(120), nullable=True)
    shipping_state = db.Column(db.String(120), nullable=True)
    shipping_pincode = db.Column(db.String(10), nullable=True)

    gst_number = db.Column(db.String(20), nullable=True)
    gst_type = db.Column(db.String(20), nullable=True, default="unregistered")
    pan_number = db.Column(db.String(20), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rate_slabs = db.relationship(
        "PartyRateSlab",
        back_populates="party",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    quotations = db.relationship(
        "PartyQuotation",
        back_populates="party",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Party {self.party_name}>"


class Company(SerializerMixin, db.Model):
    """Billing company. The active one brands every rendered bill."""

    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)

    business_name = db.Column(db.String(255), nullable=False)
    phone_number = db.Column(db.String(30), nullable=True)
    email_id = db.Column(db.String(255), nullable=True)
    gstin = db.Column(db.String(20), nullable=True)
    business_address = db.Column(db.Text, nullable=True)
    state = db.Column(db.String(120), nullable=True)
    pincode = db.Column(db.String(10), nullable=True)

    bank_name = db.Column(db.String(120), nullable=True)
    account_number = db.Column(db.String(50), nullable=True)
    ifsc_code = db.Column(db.String(20), nullable=True)
    pan_number = db.Column(db.String(20), nullable=True)
    hsn_code = db.Column(db.String(20), nullable=True)
    msme_number = db.Column(db.String(50), nullable=True)

    logo = db.Column(db.Text, nullable=True)
    signature = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------
# Party rate slabs
# ---------------------------------------------------------------------
class PartyRateSlab(SerializerMixin, db.Model):
    """
    Priced scenario for one party.

    The key tuple (party, shipment_type, mode, service_type, distance_slab, slab)
    is unique. Deletion is soft (is_active=False); re-submitting the key
    updates and reactivates the row.
    """

    __tablename__ = "party_rate_slabs"

    id = db.Column(db.Integer, primary_key=True)

    party_id = db.Column(
        db.Integer,
        db.ForeignKey("parties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shipment_type = db.Column(db.String(20), nullable=False)
    mode_id = db.Column(db.Integer, db.ForeignKey("modes.id"), nullable=False)
    service_type_id = db.Column(db.Integer, db.ForeignKey("service_types.id"), nullable=False)
    distance_slab_id = db.Column(db.Integer, db.ForeignKey("distance_slabs.id"), nullable=False)
    slab_id = db.Column(db.Integer, db.ForeignKey("weight_slabs.id"), nullable=False)

    rate = db.Column(db.Numeric(12, 2), nullable=False)
    fuel_pct = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    packing = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    handling = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_pct = db.Column(db.Numeric(6, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    party = db.relationship("Party", back_populates="rate_slabs")
    mode = db.relationship("Mode")
    service_type = db.relationship("ServiceType")
    distance_slab = db.relationship("DistanceSlab")
    slab = db.relationship("WeightSlab")

    __table_args__ = (
        db.UniqueConstraint(
            "party_id",
            "shipment_type",
            "mode_id",
            "service_type_id",
            "distance_slab_id",
            "slab_id",
            name="uq_party_rate",
        ),
    )

    @property
    def key(self) -> tuple:
        return (
            self.shipment_type,
            self.mode_id,
            self.service_type_id,
            self.distance_slab_id,
            self.slab_id,
        )

    def to_dict(self, decorated: bool = False) -> Dict[str, Any]:
        data = super().to_dict()
        if decorated:
            data["mode_title"] = self.mode.title if self.mode else None
            data["service_type_title"] = self.service_type.title if self.service_type else None
            data["distance_slab_title"] = self.distance_slab.title if self.distance_slab else None
            data["slab_name"] = self.slab.slab_name if self.slab else None
        return data


class PartyRateSlabAudit(SerializerMixin, db.Model):
    """Append-only change log for PartyRateSlab rows."""

    __tablename__ = "party_rate_slab_audits"

    id = db.Column(db.Integer, primary_key=True)

    party_rate_slab_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    changed_by = db.Column(db.String(150), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    changed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["before_data"] = json.loads(self.before_data) if self.before_data else None
        data["after_data"] = json.loads(self.after_data) if self.after_data else None
        return data


# ---------------------------------------------------------------------
# Quotations
# ---------------------------------------------------------------------
class PartyQuotation(SerializerMixin, db.Model):
    """Per-party quotation sheet; `rates` is replaced wholesale on save."""

    __tablename__ = "party_quotations"

    id = db.Column(db.Integer, primary_key=True)

    party_id = db.Column(
        db.Integer,
        db.ForeignKey("parties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_type = db.Column(db.String(20), nullable=False)
    rates = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    party = db.relationship("Party", back_populates="quotations")

    __table_args__ = (
        db.UniqueConstraint("party_id", "package_type", name="uq_party_quotation"),
    )


# ---------------------------------------------------------------------
# Bookings & bills
# ---------------------------------------------------------------------
class AccountBooking(SerializerMixin, db.Model):
    """Credit booking billed monthly to the sender party."""

    __tablename__ = "account_bookings"

    id = db.Column(db.Integer, primary_key=True)

    booking_date = db.Column(db.Date, nullable=False, index=True)
    sender = db.Column(db.String(255), nullable=False, index=True)
    center = db.Column(db.String(120), nullable=True)
    receiver = db.Column(db.String(255), nullable=True)
    mobile = db.Column(db.String(30), nullable=True)
    carrier = db.Column(db.String(120), nullable=True)
    reference_number = db.Column(db.String(100), nullable=True)
    consignment_number = db.Column(db.String(100), nullable=True)
    package_type = db.Column(db.String(50), nullable=True)
    weight = db.Column(db.String(50), nullable=True)
    number_of_boxes = db.Column(db.Integer, nullable=True)

    gross_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    other_charges = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    insurance_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    parcel_value = db.Column(db.Numeric(12, 2), nullable=True)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    remarks = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=True, default="booked")

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class CashBooking(SerializerMixin, db.Model):
    """Counter booking paid on the spot."""

    __tablename__ = "cash_bookings"

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.Date, nullable=False, index=True)
    sender = db.Column(db.String(255), nullable=False, index=True)
    sender_mobile = db.Column(db.String(30), nullable=True)
    center = db.Column(db.String(120), nullable=True)
    receiver = db.Column(db.String(255), nullable=True)
    carrier = db.Column(db.String(120), nullable=True)
    reference_number = db.Column(db.String(100), nullable=True)
    package_type = db.Column(db.String(50), nullable=True)
    weight = db.Column(db.String(50), nullable=True)
    number_of_boxes = db.Column(db.Integer, nullable=True)

    gross_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    fuel_charge_percent = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    insurance_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cgst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sgst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Bill(SerializerMixin, db.Model):
    __tablename__ = "bills"

    id = db.Column(db.Integer, primary_key=True)

    party_id = db.Column(
        db.Integer,
        db.ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    bill_number = db.Column(db.String(100), unique=True, nullable=False, index=True)
    bill_date = db.Column(db.Date, nullable=False, index=True)

    base_amount = db.Column(db.Numeric(12, 2), nullable=True)
    service_charges = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    fuel_charges = db.Column(db.Numeric(12, 2), nullable=True)
    other_charges = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    igst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    template = db.Column(db.String(50), nullable=False, default="Default")
    email_sent = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(30), nullable=False, default="generated")
    bill_type = db.Column(db.String(30), nullable=False, default="monthly")

    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    party = db.relationship("Party", backref=db.backref("bills", lazy=True))
    bookings = db.relationship(
        "BillBooking",
        back_populates="bill",
        cascade="all, delete-orphan",
    )


class BillBooking(SerializerMixin, db.Model):
    """Explicit (booking_type, booking_id) selection for a bill."""

    __tablename__ = "bill_bookings"

    id = db.Column(db.Integer, primary_key=True)

    bill_id = db.Column(
        db.Integer,
        db.ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking_type = db.Column(db.String(10), nullable=False)
    booking_id = db.Column(db.Integer, nullable=False)

    bill = db.relationship("Bill", back_populates="bookings")

    __table_args__ = (
        db.UniqueConstraint("bill_id", "booking_type", "booking_id", name="uq_bill_booking"),
    )


# ---------------------------------------------------------------------
# Invoices & payments
# ---------------------------------------------------------------------
class Invoice(SerializerMixin, db.Model):
    """
    Itemized party invoice.

    received_amount is always the sum of the invoice's payment allocations;
    payment_status follows from it.
    """

    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)

    party_id = db.Column(
        db.Integer,
        db.ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    invoice_number = db.Column(db.String(100), unique=True, nullable=False, index=True)
    invoice_date = db.Column(db.Date, nullable=False, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    additional_charges = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    received_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    party = db.relationship("Party", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    allocations = db.relationship(
        "PaymentAllocation",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.id",
    )

    @property
    def outstanding(self) -> Decimal:
        return max(_to_decimal(self.total_amount) - _to_decimal(self.received_amount), Decimal("0.00"))


class InvoiceItem(SerializerMixin, db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    booking_date = db.Column(db.Date, nullable=True)
    consignment_no = db.Column(db.String(100), nullable=True)
    shipment_type = db.Column(db.String(20), nullable=True)
    mode_id = db.Column(db.Integer, db.ForeignKey("modes.id", ondelete="SET NULL"), nullable=True)
    service_type_id = db.Column(db.Integer, db.ForeignKey("service_types.id", ondelete="SET NULL"), nullable=True)
    distance_slab_id = db.Column(db.Integer, db.ForeignKey("distance_slabs.id", ondelete="SET NULL"), nullable=True)
    weight_kg = db.Column(db.Numeric(10, 3), nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")
    service_type = db.relationship("ServiceType")


class PartyPayment(SerializerMixin, db.Model):
    """Money received from a party; split over its invoices by allocations."""

    __tablename__ = "party_payments"

    id = db.Column(db.Integer, primary_key=True)

    party_id = db.Column(
        db.Integer,
        db.ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_date = db.Column(db.Date, nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(30), nullable=True)
    reference_no = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    party = db.relationship("Party", backref=db.backref("payments", lazy=True))
    allocations = db.relationship(
        "PaymentAllocation",
        back_populates="party_payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.id",
    )


class PaymentAllocation(SerializerMixin, db.Model):
    __tablename__ = "payment_allocations"

    id = db.Column(db.Integer, primary_key=True)

    party_payment_id = db.Column(
        db.Integer,
        db.ForeignKey("party_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    party_payment = db.relationship("PartyPayment", back_populates="allocations")
    invoice = db.relationship("Invoice", back_populates="allocations")


# ---------------------------------------------------------------------
# CSV import
# ---------------------------------------------------------------------
class CsvInvoice(SerializerMixin, db.Model):
    """One normalized row of an imported booking/invoice CSV."""

    __tablename__ = "csv_invoices"

    id = db.Column(db.Integer, primary_key=True)

    booking_date = db.Column(db.Date, nullable=True, index=True)
    booking_reference = db.Column(db.String(100), nullable=True)
    consignment_no = db.Column(db.String(100), nullable=True, index=True)
    mode = db.Column(db.String(30), nullable=True)
    service_type = db.Column(db.String(50), nullable=True)
    weight = db.Column(db.Numeric(10, 3), nullable=True)
    chargeable_weight = db.Column(db.Numeric(10, 3), nullable=True)

    prepaid_amount = db.Column(db.Numeric(12, 2), nullable=True)
    final_collected = db.Column(db.Numeric(12, 2), nullable=True)
    retail_price = db.Column(db.Numeric(12, 2), nullable=True)

    sender_name = db.Column(db.String(255), nullable=True, index=True)
    sender_phone = db.Column(db.String(30), nullable=True)
    sender_address = db.Column(db.Text, nullable=True)
    recipient_name = db.Column(db.String(255), nullable=True)
    recipient_phone = db.Column(db.String(30), nullable=True)
    recipient_address = db.Column(db.Text, nullable=True)

    booking_mode = db.Column(db.String(50), nullable=True)
    shipment_type = db.Column(db.String(30), nullable=True)
    risk_surcharge_amount = db.Column(db.Numeric(12, 2), nullable=True)
    risk_surcharge_type = db.Column(db.String(50), nullable=True)
    contents = db.Column(db.String(255), nullable=True)
    declared_value = db.Column(db.Numeric(12, 2), nullable=True)
    eway_bill = db.Column(db.String(50), nullable=True)
    gst_invoice = db.Column(db.String(50), nullable=True)
    customer = db.Column(db.String(255), nullable=True)
    service_code = db.Column(db.String(30), nullable=True)
    region = db.Column(db.String(120), nullable=True)

    payment_mode = db.Column(db.String(30), nullable=True)
    payment_utr = db.Column(db.String(100), nullable=True)
    employee_code = db.Column(db.String(50), nullable=True)
    employee_discount_percent = db.Column(db.Numeric(6, 2), nullable=True)
    employee_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)
    promocode = db.Column(db.String(50), nullable=True)
    promocode_discount = db.Column(db.Numeric(12, 2), nullable=True)
    packing_material = db.Column(db.String(100), nullable=True)
    no_of_stretch_films = db.Column(db.Integer, nullable=True)

    # Filled by apply-rate from the matching party rate slab.
    calculated_amount = db.Column(db.Numeric(12, 2), nullable=True)
    pricing_meta = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
