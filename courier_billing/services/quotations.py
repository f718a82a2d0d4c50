"""
courier_billing/services/quotations.py

Per-party quotation sheets: {region: {weight_label: price}} per package type.

Weight labels are free-form ("100 gm", "Add_1000 gm", "1 kg"), so cell lookup
at print time goes through find_best_matching_key().
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import PACKAGE_TYPES, Party, PartyQuotation, QuotationDefault, QuotationNote, Region, WeightSlab, _to_decimal
from ..utils import parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)

_FIRST_NUMBER = re.compile(r"\d+")


def _weight_variants(label: str) -> List[str]:
    """Spellings tried after the exact label. str.replace(..., 1) touches the first occurrence only."""
    return [
        label,
        label.replace(" ", "", 1),
        label.replace(" gm", "gm", 1),
        label.replace(" kg", "kg", 1),
        label.replace(" g", "g", 1),
        label.replace("gm", "g", 1),
        label.replace("g", "gm", 1),
        label.upper(),
        label.lower(),
    ]


def _best_key(rates: Optional[Dict[str, Any]], region: str, weight_label: str) -> str:
    """
    Key under rates[region] that best matches weight_label, or ''.

    Order: exact label, then the spelling variants, then the first key that
    contains the label's first number.
    """
    region_rates = (rates or {}).get(region)
    if not region_rates or not weight_label:
        return ""

    if weight_label in region_rates:
        return weight_label

    for variant in _weight_variants(weight_label):
        if variant and variant in region_rates:
            return variant

    match = _FIRST_NUMBER.search(weight_label)
    if match:
        number = match.group(0)
        for key in region_rates:
            if number in key:
                return key

    return ""


def find_best_matching_key(rates: Optional[Dict[str, Any]], region: str, weight_label: str) -> str:
    """Price stored under the best-matching label for (region, weight_label), '' when nothing matches."""
    key = _best_key(rates, region, weight_label)
    if not key:
        return ""
    value = rates[region][key]
    return "" if value is None else str(value)


def quotation_grid(rates: Optional[Dict[str, Any]], regions: List[str]) -> Dict[str, Any]:
    """
    Printable sheet: one row per region, one column per weight label.

    Columns are the union of weight labels across the sheet, in first-seen
    order; every cell goes through find_best_matching_key() so near-miss labels still match.
    """
    columns: List[str] = []
    for cells in (rates or {}).values():
        for label in cells or {}:
            if label not in columns:
                columns.append(label)
    rows = [
        {"region": region, "cells": [find_best_matching_key(rates, region, label) for label in columns]}
        for region in regions
    ]
    return {"columns": columns, "rows": rows}


def _normalize_package_type(value: Any) -> str:
    package_type = str(value or "").strip().upper()
    if package_type not in PACKAGE_TYPES:
        raise ValidationError(
            f"package_type must be one of {', '.join(PACKAGE_TYPES)}",
            fields=["package_type"],
        )
    return package_type


def _validate_rates(rates: Any) -> Dict[str, Dict[str, str]]:
    if not isinstance(rates, dict):
        raise ValidationError("rates must be an object of {region: {weight: price}}", fields=["rates"])
    clean: Dict[str, Dict[str, str]] = {}
    for region, cells in rates.items():
        if not isinstance(cells, dict):
            raise ValidationError(f"rates[{region!r}] must be an object", fields=["rates"])
        clean[str(region)] = {str(k): "" if v is None else str(v) for k, v in cells.items()}
    return clean


def _get_party(party_id: int) -> Party:
    party = db.session.get(Party, party_id)
    if party is None:
        raise NotFoundError(f"Party {party_id} not found")
    return party


def list_party_quotations(party_id: int) -> List[PartyQuotation]:
    _get_party(party_id)
    return (
        PartyQuotation.query.filter_by(party_id=party_id)
        .order_by(PartyQuotation.package_type.asc())
        .all()
    )


def get_quotation_rates(party_id: int, package_type: str) -> Dict[str, Any]:
    """Stored rates for an exact package_type, {} when none."""
    quotation = PartyQuotation.query.filter_by(party_id=party_id, package_type=package_type).first()
    if quotation is None:
        return {}
    return quotation.rates or {}


def save_quotation(party_id: int, package_type: Any, rates: Any) -> PartyQuotation:
    """Create or wholesale-replace the sheet for (party, package_type)."""
    _get_party(party_id)
    package_type = _normalize_package_type(package_type)
    clean_rates = _validate_rates(rates)

    quotation = PartyQuotation.query.filter_by(party_id=party_id, package_type=package_type).first()
    if quotation is None:
        quotation = PartyQuotation(party_id=party_id, package_type=package_type, rates=clean_rates)
        db.session.add(quotation)
    else:
        # New dict object so the JSON column is flagged dirty.
        quotation.rates = clean_rates
    db.session.commit()
    logger.info("Saved %s quotation for party %s", package_type, party_id)
    return quotation


def delete_quotation(party_id: int, package_type: Any) -> None:
    package_type = _normalize_package_type(package_type)
    quotation = PartyQuotation.query.filter_by(party_id=party_id, package_type=package_type).first()
    if quotation is None:
        raise NotFoundError(f"No {package_type} quotation for party {party_id}")
    db.session.delete(quotation)
    db.session.commit()
    logger.info("Deleted %s quotation for party %s", package_type, party_id)


def copy_quotations(source_party_id: int, target_party_ids: List[Any]) -> Dict[str, Any]:
    """Copy every sheet of the source party onto each target (replacing theirs)."""
    _get_party(source_party_id)
    sources = PartyQuotation.query.filter_by(party_id=source_party_id).all()
    if not sources:
        raise NotFoundError(f"Party {source_party_id} has no quotations to copy")

    if not isinstance(target_party_ids, list) or not target_party_ids:
        raise ValidationError("targetPartyIds must be a non-empty list", fields=["targetPartyIds"])

    results: List[Dict[str, Any]] = []
    copied = 0
    for raw_target in target_party_ids:
        try:
            target_id = int(raw_target)
        except (TypeError, ValueError):
            results.append({"partyId": raw_target, "success": False, "error": "Invalid party id"})
            continue
        if target_id == source_party_id:
            results.append({"partyId": target_id, "success": False, "error": "Source and target are the same"})
            continue
        if db.session.get(Party, target_id) is None:
            results.append({"partyId": target_id, "success": False, "error": "Party not found"})
            continue

        for source in sources:
            existing = PartyQuotation.query.filter_by(
                party_id=target_id, package_type=source.package_type
            ).first()
            if existing is None:
                db.session.add(
                    PartyQuotation(
                        party_id=target_id,
                        package_type=source.package_type,
                        rates=dict(source.rates or {}),
                    )
                )
            else:
                existing.rates = dict(source.rates or {})
        copied += 1
        results.append({"partyId": target_id, "success": True, "packageTypes": [s.package_type for s in sources]})

    db.session.commit()
    logger.info("Copied quotations of party %s to %d parties", source_party_id, copied)
    return {"copiedCount": copied, "results": results}


# ----------------------------------------------------------------------
# Default tariffs & notes
# ----------------------------------------------------------------------
def list_defaults(region_id: Optional[int] = None) -> List[QuotationDefault]:
    query = QuotationDefault.query.join(WeightSlab, QuotationDefault.slab_id == WeightSlab.id)
    if region_id is not None:
        query = query.filter(QuotationDefault.region_id == region_id)
    return query.order_by(QuotationDefault.region_id.asc(), WeightSlab.min_weight_grams.asc()).all()


def save_default(payload: Dict[str, Any]) -> QuotationDefault:
    """Upsert on (region_id, package_type, slab_id)."""
    region_id = parse_optional_int(payload.get("region_id"))
    slab_id = parse_optional_int(payload.get("slab_id"))
    base_rate = parse_decimal(payload.get("base_rate"))
    extra = parse_decimal(payload.get("extra_per_1000g")) or _to_decimal(0)

    invalid = []
    if region_id is None or db.session.get(Region, region_id) is None:
        invalid.append("region_id")
    if slab_id is None or db.session.get(WeightSlab, slab_id) is None:
        invalid.append("slab_id")
    if base_rate is None or base_rate < 0:
        invalid.append("base_rate")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    package_type = _normalize_package_type(payload.get("package_type"))

    row = QuotationDefault.query.filter_by(
        region_id=region_id, package_type=package_type, slab_id=slab_id
    ).first()
    if row is None:
        row = QuotationDefault(region_id=region_id, package_type=package_type, slab_id=slab_id)
        db.session.add(row)
    row.base_rate = base_rate
    row.extra_per_1000g = extra
    row.notes = (payload.get("notes") or "").strip() or None
    db.session.commit()
    return row


def delete_default(default_id: int) -> None:
    row = db.session.get(QuotationDefault, default_id)
    if row is None:
        raise NotFoundError(f"Quotation default {default_id} not found")
    db.session.delete(row)
    db.session.commit()


def resolve_default_rate(region_id: Optional[int], package_type: Any, weight_grams: int) -> Optional[Dict[str, Any]]:
    """
    Default tariff for a shipment.

    The weight slab is the first with min <= weight < max. The region filter is
    optional; without it the lowest region id wins. Returns None when no slab
    covers the weight, and a zero base rate when the slab has no default row.
    """
    package_type = _normalize_package_type(package_type)

    slab = (
        WeightSlab.query.filter(WeightSlab.min_weight_grams <= weight_grams)
        .filter(WeightSlab.max_weight_grams > weight_grams)
        .order_by(WeightSlab.min_weight_grams.asc())
        .first()
    )
    if slab is None:
        return None

    query = QuotationDefault.query.filter_by(package_type=package_type, slab_id=slab.id)
    if region_id is not None:
        query = query.filter_by(region_id=region_id)
    row = query.order_by(QuotationDefault.region_id.asc()).first()

    if row is None:
        return {"slab": slab.to_dict(), "baseRate": "0"}
    return {
        "regionId": row.region_id,
        "packageType": package_type,
        "slabId": slab.id,
        "slabName": slab.slab_name,
        "baseRate": str(_to_decimal(row.base_rate)),
        "extraPer1000g": str(_to_decimal(row.extra_per_1000g)),
        "notes": row.notes,
    }


def list_notes() -> List[QuotationNote]:
    return QuotationNote.query.order_by(QuotationNote.id.asc()).all()
