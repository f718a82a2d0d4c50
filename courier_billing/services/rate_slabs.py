"""
courier_billing/services/rate_slabs.py

Party rate slab resolver: validated upsert, soft delete, listing, audit log and
price resolution for one shipment.

Payload naming:
    The HTTP surface historically mixed camelCase (partyId, modeId, ...) with
    snake_case (fuel_pct, is_active, ...). FIELD_ALIASES translates both forms
    to one canonical snake_case dict at the boundary; when a payload carries
    both spellings of a field, the snake_case one wins.

Transactions:
    The slab write and its audit row are flushed together and committed once.
    An insert that loses a race against a concurrent insert of the same key
    (IntegrityError inside a savepoint) is retried as an update of the winner.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..audit import log_action, serialize_model
from ..errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..extensions import db
from ..models import (
    SHIPMENT_TYPES,
    DistanceSlab,
    Mode,
    PartyRateSlab,
    PartyRateSlabAudit,
    ServiceType,
    WeightSlab,
    _money,
    _to_decimal,
)
from ..utils import parse_bool, parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)


FIELD_ALIASES: Dict[str, str] = {
    "partyId": "party_id",
    "shipmentType": "shipment_type",
    "modeId": "mode_id",
    "serviceTypeId": "service_type_id",
    "distanceSlabId": "distance_slab_id",
    "slabId": "slab_id",
    "fuelPct": "fuel_pct",
    "gstPct": "gst_pct",
    "isActive": "is_active",
    "weightGrams": "weight_grams",
    "partyRateSlabId": "party_rate_slab_id",
}

KEY_FIELDS = ("party_id", "shipment_type", "mode_id", "service_type_id", "distance_slab_id", "slab_id")
ID_FIELDS = ("party_id", "mode_id", "service_type_id", "distance_slab_id", "slab_id")
CHARGE_FIELDS = ("fuel_pct", "packing", "handling", "gst_pct")
REQUIRED_FIELDS = KEY_FIELDS + ("rate",)

_CATALOG_MODELS = {
    "mode_id": Mode,
    "service_type_id": ServiceType,
    "distance_slab_id": DistanceSlab,
    "slab_id": WeightSlab,
}


def normalize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """camelCase and snake_case keys -> canonical snake_case."""
    normalized: Dict[str, Any] = {}
    for key, value in payload.items():
        canonical = FIELD_ALIASES.get(key)
        if canonical is None:
            normalized[key] = value
        elif canonical not in payload:
            normalized[canonical] = value
    return normalized


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_rate_slab(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and coerce an upsert payload.

    Returns a clean dict with typed values. Raises ValidationError naming every
    missing or invalid field (including catalog ids that do not exist).
    """
    data = normalize_payload(payload)

    missing = [field for field in REQUIRED_FIELDS if _is_blank(data.get(field))]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}", fields=missing)

    clean: Dict[str, Any] = {}
    invalid: List[str] = []

    for field in ID_FIELDS:
        parsed = parse_optional_int(data.get(field))
        if parsed is None or parsed <= 0:
            invalid.append(field)
        clean[field] = parsed

    shipment_type = str(data.get("shipment_type")).strip().upper()
    if shipment_type not in SHIPMENT_TYPES:
        invalid.append("shipment_type")
    clean["shipment_type"] = shipment_type

    rate = parse_decimal(data.get("rate"))
    if rate is None or rate < 0:
        invalid.append("rate")
    clean["rate"] = rate

    for field in CHARGE_FIELDS:
        raw = data.get(field)
        if _is_blank(raw):
            clean[field] = Decimal("0")
            continue
        parsed = parse_decimal(raw)
        if parsed is None or parsed < 0:
            invalid.append(field)
        clean[field] = parsed

    clean["is_active"] = parse_bool(data.get("is_active"), default=True)

    raw_id = data.get("id")
    clean["id"] = None
    if not _is_blank(raw_id):
        clean["id"] = parse_optional_int(raw_id)
        if clean["id"] is None:
            invalid.append("id")

    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)

    unknown = [
        field
        for field, model in _CATALOG_MODELS.items()
        if db.session.get(model, clean[field]) is None
    ]
    if unknown:
        raise ValidationError(
            f"Unknown catalog references: {', '.join(unknown)}",
            fields=unknown,
        )

    return clean


def _find_by_key(data: Dict[str, Any]) -> Optional[PartyRateSlab]:
    """Row holding the exact key tuple, active or soft-deleted."""
    return PartyRateSlab.query.filter_by(**{field: data[field] for field in KEY_FIELDS}).first()


def _apply_update(slab: PartyRateSlab, data: Dict[str, Any]) -> PartyRateSlab:
    before = serialize_model(slab)
    for field in KEY_FIELDS + ("rate",) + CHARGE_FIELDS + ("is_active",):
        setattr(slab, field, data[field])
    db.session.flush()
    log_action(slab, "update", before=before, after=serialize_model(slab))
    return slab


def _insert(data: Dict[str, Any]) -> PartyRateSlab:
    slab = PartyRateSlab(**{k: v for k, v in data.items() if k != "id"})
    try:
        with db.session.begin_nested():
            db.session.add(slab)
    except IntegrityError as exc:
        winner = _find_by_key(data)
        if winner is None:
            # Not a duplicate key: FK violation (unknown party) or similar.
            raise PersistenceError(
                "Could not save party rate slab",
                details=str(exc.orig),
            ) from exc
        logger.info("Concurrent insert for key %s; updating row %s", winner.key, winner.id)
        return _apply_update(winner, data)

    log_action(slab, "create", after=serialize_model(slab))
    return slab


def _upsert_one(payload: Dict[str, Any]) -> PartyRateSlab:
    data = validate_rate_slab(payload)

    if data["id"] is not None:
        slab = db.session.get(PartyRateSlab, data["id"])
        if slab is None:
            raise NotFoundError(f"Party rate slab {data['id']} not found")
        clash = _find_by_key(data)
        if clash is not None and clash.id != slab.id:
            raise ConflictError(
                "Another rate slab already uses this combination",
                details={"conflictId": clash.id},
            )
        return _apply_update(slab, data)

    existing = _find_by_key(data)
    if existing is not None:
        return _apply_update(existing, data)

    return _insert(data)


def upsert(payload: Dict[str, Any]) -> PartyRateSlab:
    """Insert or update one slab (see module docstring). Commits."""
    slab = _upsert_one(payload)
    db.session.commit()
    logger.info("Saved party rate slab %s for party %s", slab.id, slab.party_id)
    return slab


def upsert_many(payloads: Iterable[Dict[str, Any]]) -> List[PartyRateSlab]:
    """Upsert every payload in one transaction; the first failure aborts the batch."""
    try:
        slabs = [_upsert_one(payload) for payload in payloads]
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    logger.info("Saved %d party rate slabs", len(slabs))
    return slabs


def update(slab_id: int, payload: Dict[str, Any]) -> PartyRateSlab:
    """PUT semantics: fields not in `payload` keep their stored values."""
    slab = db.session.get(PartyRateSlab, slab_id)
    if slab is None:
        raise NotFoundError(f"Party rate slab {slab_id} not found")
    merged = {field: getattr(slab, field) for field in REQUIRED_FIELDS + CHARGE_FIELDS + ("is_active",)}
    merged.update(normalize_payload(payload))
    merged["id"] = slab_id
    return upsert(merged)


def soft_delete(slab_id: int) -> PartyRateSlab:
    """is_active=False plus a 'delete' audit row carrying the prior snapshot."""
    slab = db.session.get(PartyRateSlab, slab_id)
    if slab is None:
        raise NotFoundError(f"Party rate slab {slab_id} not found")

    before = serialize_model(slab)
    slab.is_active = False
    db.session.flush()
    log_action(slab, "delete", before=before)
    db.session.commit()
    logger.info("Soft-deleted party rate slab %s", slab_id)
    return slab


def list_for_party(party_id: int, filters: Optional[Dict[str, Any]] = None) -> List[PartyRateSlab]:
    """Active slabs for a party, newest first, with catalog relationships preloaded."""
    query = (
        PartyRateSlab.query.options(
            joinedload(PartyRateSlab.mode),
            joinedload(PartyRateSlab.service_type),
            joinedload(PartyRateSlab.distance_slab),
            joinedload(PartyRateSlab.slab),
        )
        .filter(PartyRateSlab.party_id == party_id)
        .filter(PartyRateSlab.is_active.is_(True))
    )
    for field, value in (filters or {}).items():
        if value is not None:
            query = query.filter(getattr(PartyRateSlab, field) == value)
    return query.order_by(PartyRateSlab.id.desc()).all()


def audit_log(party_rate_slab_id: int, limit: int = 50, offset: int = 0) -> List[PartyRateSlabAudit]:
    """Audit rows for one slab, most recent first (id breaks changed_at ties)."""
    return (
        PartyRateSlabAudit.query.filter_by(party_rate_slab_id=party_rate_slab_id)
        .order_by(PartyRateSlabAudit.changed_at.desc(), PartyRateSlabAudit.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def weight_slab_for(weight_grams: int) -> Optional[WeightSlab]:
    """Smallest active slab whose inclusive range contains weight_grams."""
    return (
        WeightSlab.query.filter(WeightSlab.is_active.is_(True))
        .filter(WeightSlab.min_weight_grams <= weight_grams)
        .filter(WeightSlab.max_weight_grams >= weight_grams)
        .order_by(WeightSlab.min_weight_grams.asc())
        .first()
    )


def price_breakdown(slab: PartyRateSlab) -> Dict[str, str]:
    """Base rate plus fuel surcharge, packing, handling, then GST on the lot."""
    base = _to_decimal(slab.rate)
    fuel_amount = _money(base * _to_decimal(slab.fuel_pct) / Decimal("100"))
    subtotal = _money(base + fuel_amount + _to_decimal(slab.packing) + _to_decimal(slab.handling))
    gst_amount = _money(subtotal * _to_decimal(slab.gst_pct) / Decimal("100"))
    return {
        "baseRate": str(_money(base)),
        "fuelPct": str(_to_decimal(slab.fuel_pct)),
        "fuelAmount": str(fuel_amount),
        "packing": str(_money(_to_decimal(slab.packing))),
        "handling": str(_money(_to_decimal(slab.handling))),
        "subtotal": str(subtotal),
        "gstPct": str(_to_decimal(slab.gst_pct)),
        "gstAmount": str(gst_amount),
        "total": str(_money(subtotal + gst_amount)),
    }


def resolve(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Active rate for one shipment.

    `params` carries the key fields except that the weight slab may be given
    either as slab_id or as weight_grams.
    """
    data = normalize_payload(params)

    slab_id = parse_optional_int(data.get("slab_id"))
    weight_grams = parse_optional_int(data.get("weight_grams"))
    if slab_id is None:
        if weight_grams is None or weight_grams < 0:
            raise ValidationError("Provide slab_id or weight_grams", fields=["slab_id", "weight_grams"])
        weight_slab = weight_slab_for(weight_grams)
        if weight_slab is None:
            raise NotFoundError(f"No weight slab covers {weight_grams} g")
        slab_id = weight_slab.id

    key: Dict[str, Any] = {"slab_id": slab_id}
    invalid: List[str] = []
    for field in ("party_id", "mode_id", "service_type_id", "distance_slab_id"):
        key[field] = parse_optional_int(data.get(field))
        if key[field] is None:
            invalid.append(field)
    key["shipment_type"] = str(data.get("shipment_type") or "").strip().upper()
    if key["shipment_type"] not in SHIPMENT_TYPES:
        invalid.append("shipment_type")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)

    slab = PartyRateSlab.query.filter_by(is_active=True, **key).first()
    if slab is None:
        raise NotFoundError("No active rate for this combination")

    result: Dict[str, Any] = {"id": slab.id, "slabId": slab_id}
    if weight_grams is not None:
        result["weightGrams"] = weight_grams
    result.update(price_breakdown(slab))
    return result
