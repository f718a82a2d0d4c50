"""
courier_billing/blueprints/masters/routes.py

Master data routes.

Scope:
- Catalog CRUD under /api/masters/<catalog>: modes, service types, distance
  slabs, weight slabs, regions, centers, carriers, SMS formats.
  Reading needs billing_operator; writing needs admin.
- POST /api/setup seeds the reference data (idempotent).
- Quotation default tariffs and standard notes.

SECURITY:
- All permissions are enforced here server-side, per route.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from ...errors import ConflictError, NotFoundError, ValidationError
from ...extensions import db
from ...models import Carrier, Center, DistanceSlab, Mode, Region, ServiceType, SmsFormat, WeightSlab
from ...security import role_required
from ...seed import run_setup
from ...services import quotations
from ...utils import json_body, parse_bool, parse_optional_int

logger = logging.getLogger(__name__)

masters_bp = Blueprint("masters", __name__, url_prefix="/api")


# ----------------------------------------------------------------------
# Catalog registry
# ----------------------------------------------------------------------
def _text(value: Any) -> str | None:
    text = (str(value) if value is not None else "").strip()
    return text or None


def _code(value: Any) -> str | None:
    text = _text(value)
    return text.upper() if text else None


def _grams(value: Any) -> int | None:
    number = parse_optional_int(value)
    return number if number is not None and number >= 0 else None


def _region_ref(value: Any) -> int | None:
    region_id = parse_optional_int(value)
    if region_id is None or db.session.get(Region, region_id) is None:
        return None
    return region_id


@dataclass(frozen=True)
class CatalogSpec:
    """How one catalog is read from a payload and ordered in listings."""

    model: Any
    fields: Dict[str, Callable[[Any], Any]]
    required: Tuple[str, ...]
    order_by: str
    has_active_flag: bool = True


CATALOGS: Dict[str, CatalogSpec] = {
    "modes": CatalogSpec(Mode, {"code": _code, "title": _text}, ("code", "title"), "title"),
    "service-types": CatalogSpec(ServiceType, {"code": _code, "title": _text}, ("code", "title"), "title"),
    "distance-slabs": CatalogSpec(DistanceSlab, {"code": _code, "title": _text}, ("code", "title"), "title"),
    "weight-slabs": CatalogSpec(
        WeightSlab,
        {"slab_name": _text, "min_weight_grams": _grams, "max_weight_grams": _grams},
        ("slab_name", "min_weight_grams", "max_weight_grams"),
        "min_weight_grams",
    ),
    "regions": CatalogSpec(Region, {"code": _code, "name": _text}, ("code", "name"), "code", has_active_flag=False),
    "centers": CatalogSpec(
        Center,
        {"state": _text, "city": _text, "region_id": _region_ref},
        ("state", "city"),
        "city",
    ),
    "carriers": CatalogSpec(Carrier, {"name": _text}, ("name",), "name"),
    "sms-formats": CatalogSpec(
        SmsFormat,
        {"name": _text, "template": _text},
        ("name", "template"),
        "name",
        has_active_flag=False,
    ),
}


def _catalog(name: str) -> CatalogSpec:
    spec = CATALOGS.get(name)
    if spec is None:
        raise NotFoundError(f"Unknown catalog: {name}")
    return spec


def _read_payload(spec: CatalogSpec, payload: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    """Parse known fields; every required field must be valid unless `partial`."""
    values: Dict[str, Any] = {}
    invalid = []
    for field, parse in spec.fields.items():
        if field not in payload:
            if not partial and field in spec.required:
                invalid.append(field)
            continue
        value = parse(payload[field])
        if value is None and (field in spec.required or payload[field] not in (None, "")):
            invalid.append(field)
            continue
        values[field] = value

    if spec.has_active_flag and "is_active" in payload:
        values["is_active"] = parse_bool(payload["is_active"], default=True)

    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return values


def _check_weight_range(spec: CatalogSpec, row: Any) -> None:
    if spec.model is WeightSlab and row.min_weight_grams >= row.max_weight_grams:
        raise ValidationError(
            "min_weight_grams must be below max_weight_grams",
            fields=["min_weight_grams", "max_weight_grams"],
        )


def _commit_unique(name: str) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"A {name} entry with these values already exists") from exc


def _get_row(spec: CatalogSpec, row_id: int):
    row = db.session.get(spec.model, row_id)
    if row is None:
        raise NotFoundError(f"{spec.model.__name__} {row_id} not found")
    return row


# ----------------------------------------------------------------------
# Catalog CRUD
# ----------------------------------------------------------------------
@masters_bp.route("/masters/<catalog>", methods=["GET"])
@role_required("billing_operator")
def list_catalog(catalog: str):
    """List a catalog. ?active=1 keeps active rows only."""
    spec = _catalog(catalog)
    query = spec.model.query
    if spec.has_active_flag and parse_bool(request.args.get("active")):
        query = query.filter(spec.model.is_active.is_(True))
    rows = query.order_by(getattr(spec.model, spec.order_by).asc(), spec.model.id.asc()).all()
    return jsonify({"items": [row.to_dict() for row in rows]})


@masters_bp.route("/masters/<catalog>", methods=["POST"])
@role_required("admin")
def create_catalog_entry(catalog: str):
    spec = _catalog(catalog)
    row = spec.model(**_read_payload(spec, json_body(), partial=False))
    _check_weight_range(spec, row)
    db.session.add(row)
    _commit_unique(catalog)
    logger.info("Created %s entry %s", catalog, row.id)
    return jsonify(row.to_dict()), 201


@masters_bp.route("/masters/<catalog>/<int:row_id>", methods=["PUT"])
@role_required("admin")
def update_catalog_entry(catalog: str, row_id: int):
    spec = _catalog(catalog)
    row = _get_row(spec, row_id)
    for field, value in _read_payload(spec, json_body(), partial=True).items():
        setattr(row, field, value)
    _check_weight_range(spec, row)
    _commit_unique(catalog)
    logger.info("Updated %s entry %s", catalog, row.id)
    return jsonify(row.to_dict())


@masters_bp.route("/masters/<catalog>/<int:row_id>", methods=["DELETE"])
@role_required("admin")
def delete_catalog_entry(catalog: str, row_id: int):
    """
    Deactivate (catalogs with an is_active flag) or delete.

    Rate slabs reference modes/services/distances/weights, so those are never
    hard-deleted here.
    """
    spec = _catalog(catalog)
    row = _get_row(spec, row_id)
    if spec.has_active_flag:
        row.is_active = False
    else:
        db.session.delete(row)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"{spec.model.__name__} {row_id} is still in use") from exc
    logger.info("Removed %s entry %s", catalog, row_id)
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Setup
# ----------------------------------------------------------------------
@masters_bp.route("/setup", methods=["POST"])
@role_required("admin")
def setup():
    """Seed catalogs and reference data. Safe to repeat."""
    try:
        run_setup()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Setup failed")
        return jsonify({"ok": False, "error": str(exc)}), 500
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Quotation defaults & notes
# ----------------------------------------------------------------------
@masters_bp.route("/quotations/defaults", methods=["GET"])
@role_required("billing_operator")
def list_quotation_defaults():
    rows = quotations.list_defaults(parse_optional_int(request.args.get("region_id")))
    return jsonify({"items": [row.to_dict() for row in rows]})


@masters_bp.route("/quotations/defaults", methods=["POST"])
@role_required("admin")
def save_quotation_default():
    row = quotations.save_default(json_body())
    return jsonify(row.to_dict()), 201


@masters_bp.route("/quotations/defaults/<int:default_id>", methods=["DELETE"])
@role_required("admin")
def delete_quotation_default(default_id: int):
    quotations.delete_default(default_id)
    return jsonify({"ok": True})


@masters_bp.route("/quotations/resolve", methods=["GET"])
@role_required("billing_operator")
def resolve_quotation_default():
    """?package_type=&weight_grams=[&region_id=] -> default tariff for that weight."""
    weight = parse_optional_int(request.args.get("weight_grams"))
    if weight is None or weight < 0:
        raise ValidationError("weight_grams must be a non-negative integer", fields=["weight_grams"])
    result = quotations.resolve_default_rate(
        parse_optional_int(request.args.get("region_id")),
        request.args.get("package_type"),
        weight,
    )
    if result is None:
        raise NotFoundError(f"No weight slab covers {weight} g")
    return jsonify(result)


@masters_bp.route("/quotations/notes", methods=["GET"])
@role_required("billing_operator")
def list_quotation_notes():
    return jsonify({"items": [note.to_dict() for note in quotations.list_notes()]})
