"""
courier_billing/seed.py

Seed master catalogs and setup reference data.

Rules:
- Safe to run multiple times (idempotent): rows are matched by code/name and
  only created when missing; titles are kept in sync.
- Parties, companies and rate slabs are not seeded; they are operator data.
"""

from __future__ import annotations

import logging

from .extensions import db
from .models import Carrier, DistanceSlab, Mode, QuotationNote, Region, ServiceType, SmsFormat, WeightSlab

logger = logging.getLogger(__name__)


DEFAULT_MODES = [("AIR", "Air"), ("SURFACE", "Surface")]

DEFAULT_SERVICE_TYPES = [("EXPRESS", "Express"), ("STANDARD", "Standard"), ("PREMIUM", "Premium")]

DEFAULT_DISTANCE_SLABS = [
    ("METRO_CITIES", "Metro Cities"),
    ("WITHIN_STATE", "Within State"),
    ("OUT_OF_STATE", "Out of State"),
    ("OTHER_STATE", "Other State"),
]

DEFAULT_WEIGHT_SLABS = [
    # slab_name, min_weight_grams, max_weight_grams
    ("0-100g", 0, 100),
    ("100-250g", 100, 250),
    ("250-500g", 250, 500),
    ("500g-1kg", 500, 1000),
    ("1kg-1.5kg", 1000, 1500),
    ("1.5kg-2kg", 1500, 2000),
    ("2kg-2.5kg", 2000, 2500),
    ("2.5kg-3kg", 2500, 3000),
]

DEFAULT_REGIONS = [
    ("MUM", "Mumbai"),
    ("ROI", "Rest of India"),
    ("METRO", "Metro"),
    ("GJ", "Gujarat"),
    ("MP", "Madhya Pradesh"),
    ("NE", "North East"),
]

DEFAULT_CARRIERS = ["Professional Courier", "DTDC", "Blue Dart"]

DEFAULT_SMS_FORMATS = [
    (
        "Booking Confirmation",
        "Dear {sender}, your consignment {consignment_no} to {receiver} is booked. Charges: Rs. {amount}.",
    ),
    (
        "Bill Generated",
        "Dear {party_name}, bill {bill_number} of Rs. {total_amount} has been generated.",
    ),
]

DEFAULT_QUOTATION_NOTES = [
    ("GST", "GST extra as applicable."),
    ("Fuel Surcharge", "Fuel surcharge is charged extra on the freight amount."),
    ("Validity", "Rates are valid for 30 days from the date of quotation."),
]


def _seed_coded(model, rows) -> None:
    for code, title in rows:
        existing = model.query.filter_by(code=code).first()
        if existing:
            if existing.title != title:
                existing.title = title
            continue
        db.session.add(model(code=code, title=title, is_active=True))
    db.session.flush()


def seed_master_catalogs() -> None:
    """Modes, service types, distance slabs and weight slabs."""
    _seed_coded(Mode, DEFAULT_MODES)
    _seed_coded(ServiceType, DEFAULT_SERVICE_TYPES)
    _seed_coded(DistanceSlab, DEFAULT_DISTANCE_SLABS)

    for name, min_g, max_g in DEFAULT_WEIGHT_SLABS:
        existing = WeightSlab.query.filter_by(min_weight_grams=min_g, max_weight_grams=max_g).first()
        if existing:
            if existing.slab_name != name:
                existing.slab_name = name
            continue
        db.session.add(
            WeightSlab(slab_name=name, min_weight_grams=min_g, max_weight_grams=max_g, is_active=True)
        )
    db.session.flush()


def seed_setup_data() -> None:
    """Regions, carriers, SMS formats and quotation notes (the /api/setup set)."""
    for code, name in DEFAULT_REGIONS:
        if not Region.query.filter_by(code=code).first():
            db.session.add(Region(code=code, name=name))

    for name in DEFAULT_CARRIERS:
        if not Carrier.query.filter_by(name=name).first():
            db.session.add(Carrier(name=name, is_active=True))

    for name, template in DEFAULT_SMS_FORMATS:
        if not SmsFormat.query.filter_by(name=name).first():
            db.session.add(SmsFormat(name=name, template=template))

    for title, body in DEFAULT_QUOTATION_NOTES:
        if not QuotationNote.query.filter_by(title=title).first():
            db.session.add(QuotationNote(title=title, body=body))

    db.session.flush()


def run_setup() -> None:
    """Create missing tables, then seed everything. Commits."""
    # Same connection as the seeding below, so one transaction covers both.
    db.metadata.create_all(bind=db.session.connection())
    seed_master_catalogs()
    seed_setup_data()
    db.session.commit()
    logger.info("Setup complete: catalogs and reference data seeded")
