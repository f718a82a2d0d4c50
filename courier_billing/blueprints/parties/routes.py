"""
courier_billing/blueprints/parties/routes.py

Parties, their quotation sheets, and the issuing company.

Parties (/api/parties):
- CRUD. Deleting a party removes its rate slabs and quotations; it is refused
  while bills, invoices or payments still reference the party.

Quotations:
- GET/POST/DELETE /api/parties/<id>/quotations (DELETE needs ?package_type=,
  GET takes it optionally)
- POST /api/parties/quotations/copy {sourcePartyId, targetPartyIds}
- GET  /api/parties/<id>/quotations/print?package_type=  (HTML sheet)

Companies (/api/companies):
- list/create/update, GET /api/companies/active. Writes are admin-only.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List

from flask import Blueprint, jsonify, render_template, request
from sqlalchemy.exc import IntegrityError

from ...errors import ConflictError, NotFoundError, ValidationError
from ...extensions import db
from ...models import PACKAGE_TYPES, Company, Party, Region
from ...security import role_required
from ...services import quotations
from ...services.billing import active_company
from ...services.csv_import import EMAIL_RE, GST_TYPES, GSTIN_RE, PHONE_RE, PINCODE_RE, normalize_phone
from ...utils import json_body, pagination_args, parse_bool

logger = logging.getLogger(__name__)

parties_bp = Blueprint("parties", __name__, url_prefix="/api")


PARTY_FIELDS = (
    "party_name", "contact_person", "phone", "email",
    "address", "city", "state", "pincode",
    "shipping_address", "shipping_city", "shipping_state", "shipping_pincode",
    "gst_number", "gst_type", "pan_number",
)

COMPANY_FIELDS = (
    "business_name", "phone_number", "email_id", "gstin", "business_address", "state", "pincode",
    "bank_name", "account_number", "ifsc_code", "pan_number", "hsn_code", "msme_number",
    "logo", "signature",
)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _clean_text(payload: Dict[str, Any], fields) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field in fields:
        if field in payload:
            raw = payload[field]
            values[field] = (str(raw).strip() or None) if raw is not None else None
    return values


def _party_values(payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate party fields; field names in errors match the payload."""
    values = _clean_text(payload, PARTY_FIELDS)
    invalid: List[str] = []

    if not partial or "party_name" in values:
        if not values.get("party_name"):
            invalid.append("party_name")

    if values.get("phone"):
        values["phone"] = normalize_phone(values["phone"])
        if not PHONE_RE.match(values["phone"]):
            invalid.append("phone")
    if values.get("email") and not EMAIL_RE.match(values["email"]):
        invalid.append("email")
    if values.get("gst_number"):
        values["gst_number"] = values["gst_number"].upper()
        if not GSTIN_RE.match(values["gst_number"]):
            invalid.append("gst_number")
    if values.get("gst_type") and values["gst_type"] not in GST_TYPES:
        invalid.append("gst_type")
    for field in ("pincode", "shipping_pincode"):
        if values.get(field) and not PINCODE_RE.match(values[field]):
            invalid.append(field)

    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return values


def _get_party(party_id: int) -> Party:
    party = db.session.get(Party, party_id)
    if party is None:
        raise NotFoundError(f"Party {party_id} not found")
    return party


def _get_company(company_id: int) -> Company:
    company = db.session.get(Company, company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")
    return company


# ----------------------------------------------------------------------
# PARTIES
# ----------------------------------------------------------------------
@parties_bp.route("/parties", methods=["GET"])
@role_required("billing_operator")
def list_parties():
    """Paginated; ?search= matches name or phone."""
    limit, offset = pagination_args()
    query = Party.query
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(Party.party_name.ilike(like), Party.phone.ilike(like)))
    total = query.count()
    rows = query.order_by(Party.party_name.asc(), Party.id.asc()).limit(limit).offset(offset).all()
    return jsonify({"items": [p.to_dict() for p in rows], "total": total, "limit": limit, "offset": offset})


@parties_bp.route("/parties", methods=["POST"])
@role_required("billing_operator")
def create_party():
    party = Party(**_party_values(json_body()))
    db.session.add(party)
    db.session.commit()
    logger.info("Created party %s (%s)", party.id, party.party_name)
    return jsonify(party.to_dict()), 201


@parties_bp.route("/parties/<int:party_id>", methods=["GET"])
@role_required("billing_operator")
def get_party(party_id: int):
    return jsonify(_get_party(party_id).to_dict())


@parties_bp.route("/parties/<int:party_id>", methods=["PUT"])
@role_required("billing_operator")
def update_party(party_id: int):
    party = _get_party(party_id)
    for field, value in _party_values(json_body(), partial=True).items():
        setattr(party, field, value)
    db.session.commit()
    logger.info("Updated party %s", party.id)
    return jsonify(party.to_dict())


@parties_bp.route("/parties/<int:party_id>", methods=["DELETE"])
@role_required("admin")
def delete_party(party_id: int):
    party = _get_party(party_id)
    db.session.delete(party)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"Party {party_id} has bills or invoices and cannot be deleted") from exc
    logger.info("Deleted party %s", party_id)
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# QUOTATIONS
# ----------------------------------------------------------------------
@parties_bp.route("/parties/<int:party_id>/quotations", methods=["GET"])
@role_required("billing_operator")
def list_quotations(party_id: int):
    """Every sheet of the party; ?package_type= returns just that sheet's rates."""
    package_type = (request.args.get("package_type") or "").strip().upper()
    if package_type:
        return jsonify({"package_type": package_type, "rates": quotations.get_quotation_rates(party_id, package_type)})
    rows = quotations.list_party_quotations(party_id)
    return jsonify({"items": [q.to_dict() for q in rows]})


@parties_bp.route("/parties/<int:party_id>/quotations", methods=["POST"])
@role_required("billing_operator")
def save_quotation(party_id: int):
    payload = json_body()
    quotation = quotations.save_quotation(
        party_id,
        payload.get("package_type", payload.get("packageType")),
        payload.get("rates"),
    )
    return jsonify(quotation.to_dict())


@parties_bp.route("/parties/<int:party_id>/quotations", methods=["DELETE"])
@role_required("billing_operator")
def delete_quotation(party_id: int):
    package_type = request.args.get("package_type")
    if not package_type:
        raise ValidationError("package_type query parameter is required", fields=["package_type"])
    quotations.delete_quotation(party_id, package_type)
    return jsonify({"ok": True})


@parties_bp.route("/parties/quotations/copy", methods=["POST"])
@role_required("billing_operator")
def copy_quotations():
    payload = json_body()
    source_id = payload.get("sourcePartyId", payload.get("source_party_id"))
    try:
        source_id = int(source_id)
    except (TypeError, ValueError):
        raise ValidationError("sourcePartyId is required", fields=["sourcePartyId"]) from None
    targets = payload.get("targetPartyIds", payload.get("target_party_ids"))
    return jsonify(quotations.copy_quotations(source_id, targets))


@parties_bp.route("/parties/<int:party_id>/quotations/print", methods=["GET"])
@role_required("billing_operator")
def print_quotation(party_id: int):
    """HTML rate sheet; ?package_type= limits it to one sheet."""
    party = _get_party(party_id)
    wanted = (request.args.get("package_type") or "").strip().upper()
    if wanted and wanted not in PACKAGE_TYPES:
        raise ValidationError(f"package_type must be one of {', '.join(PACKAGE_TYPES)}", fields=["package_type"])

    regions = [r.name for r in Region.query.order_by(Region.id.asc()).all()]
    sheets = [
        {"package_type": q.package_type, **quotations.quotation_grid(q.rates, regions)}
        for q in quotations.list_party_quotations(party_id)
        if not wanted or q.package_type == wanted
    ]
    html = render_template(
        "quotations/print.html",
        party=party,
        company=active_company(),
        sheets=sheets,
        notes=quotations.list_notes(),
        today=date.today(),
    )
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}


# ----------------------------------------------------------------------
# COMPANIES
# ----------------------------------------------------------------------
@parties_bp.route("/companies", methods=["GET"])
@role_required("billing_operator")
def list_companies():
    rows = Company.query.order_by(Company.id.asc()).all()
    return jsonify({"items": [c.to_dict() for c in rows]})


@parties_bp.route("/companies/active", methods=["GET"])
@role_required("billing_operator")
def get_active_company():
    company = active_company()
    if company is None:
        raise NotFoundError("No active company configured")
    return jsonify(company.to_dict())


@parties_bp.route("/companies", methods=["POST"])
@role_required("admin")
def create_company():
    payload = json_body()
    values = _clean_text(payload, COMPANY_FIELDS)
    if not values.get("business_name"):
        raise ValidationError("business_name is required", fields=["business_name"])
    company = Company(is_active=parse_bool(payload.get("is_active"), default=True), **values)
    db.session.add(company)
    db.session.commit()
    logger.info("Created company %s", company.id)
    return jsonify(company.to_dict()), 201


@parties_bp.route("/companies/<int:company_id>", methods=["PUT"])
@role_required("admin")
def update_company(company_id: int):
    company = _get_company(company_id)
    payload = json_body()
    values = _clean_text(payload, COMPANY_FIELDS)
    if "business_name" in values and not values["business_name"]:
        raise ValidationError("business_name is required", fields=["business_name"])
    for field, value in values.items():
        setattr(company, field, value)
    if "is_active" in payload:
        company.is_active = parse_bool(payload["is_active"], default=company.is_active)
    db.session.commit()
    return jsonify(company.to_dict())
