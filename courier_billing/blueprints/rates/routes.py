"""
courier_billing/blueprints/rates/routes.py

Party rate slab routes (/api/party-rate-slabs).

- GET    /                 active slabs of ?party_id=, decorated with catalog titles
- POST   /                 upsert one slab (object) or a batch (list, all-or-nothing)
- PUT    /<id>             update; omitted fields keep their stored values
- DELETE /<id>             soft delete
- GET    /audit            ?party_rate_slab_id=&limit=&offset=
- GET    /resolve          price of one shipment (slab_id or weight_grams)
- GET    /scenarios        ?party_id= -> every catalog combination with its status

Reads need billing_operator. Writes need billing_operator too: pricing is
operator work, admins inherit it.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from ...errors import ValidationError
from ...security import role_required
from ...services import rate_slabs, scenarios
from ...utils import json_body, parse_optional_int

logger = logging.getLogger(__name__)

rates_bp = Blueprint("rates", __name__, url_prefix="/api/party-rate-slabs")


def _required_int_arg(*names: str) -> int:
    """First of `names` present in the query string, as an int."""
    for name in names:
        value = parse_optional_int(request.args.get(name))
        if value is not None:
            return value
    raise ValidationError(f"{names[0]} is required", fields=[names[0]])


# ----------------------------------------------------------------------
# Listing & upsert
# ----------------------------------------------------------------------
@rates_bp.route("", methods=["GET"])
@role_required("billing_operator")
def list_rate_slabs():
    party_id = _required_int_arg("party_id", "partyId")
    filters = {
        "shipment_type": (request.args.get("shipment_type") or "").strip().upper() or None,
        "mode_id": parse_optional_int(request.args.get("mode_id")),
        "service_type_id": parse_optional_int(request.args.get("service_type_id")),
        "distance_slab_id": parse_optional_int(request.args.get("distance_slab_id")),
    }
    rows = rate_slabs.list_for_party(party_id, filters)
    return jsonify({"items": [row.to_dict(decorated=True) for row in rows]})


@rates_bp.route("", methods=["POST"])
@role_required("billing_operator")
def upsert_rate_slabs():
    payload = json_body(allow_list=True)
    if isinstance(payload, list):
        if not all(isinstance(item, dict) for item in payload):
            raise ValidationError("Every item must be a JSON object")
        slabs = rate_slabs.upsert_many(payload)
        return jsonify({"items": [slab.to_dict() for slab in slabs]})

    slab = rate_slabs.upsert(payload)
    return jsonify(slab.to_dict())


@rates_bp.route("/<int:slab_id>", methods=["PUT"])
@role_required("billing_operator")
def update_rate_slab(slab_id: int):
    slab = rate_slabs.update(slab_id, json_body())
    return jsonify(slab.to_dict())


@rates_bp.route("/<int:slab_id>", methods=["DELETE"])
@role_required("billing_operator")
def delete_rate_slab(slab_id: int):
    rate_slabs.soft_delete(slab_id)
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Audit
# ----------------------------------------------------------------------
@rates_bp.route("/audit", methods=["GET"])
@role_required("billing_operator")
def rate_slab_audit():
    slab_id = _required_int_arg("party_rate_slab_id", "partyRateSlabId")
    limit = parse_optional_int(request.args.get("limit"))
    offset = parse_optional_int(request.args.get("offset"))
    limit = 50 if limit is None else max(1, min(limit, 200))
    offset = max(offset or 0, 0)
    rows = rate_slabs.audit_log(slab_id, limit=limit, offset=offset)
    return jsonify({"items": [row.to_dict() for row in rows], "limit": limit, "offset": offset})


# ----------------------------------------------------------------------
# Resolution & scenarios
# ----------------------------------------------------------------------
@rates_bp.route("/resolve", methods=["GET"])
@role_required("billing_operator")
def resolve_rate():
    return jsonify(rate_slabs.resolve(request.args.to_dict()))


@rates_bp.route("/scenarios", methods=["GET"])
@role_required("billing_operator")
def rate_scenarios():
    party_id = _required_int_arg("party_id", "partyId")
    return jsonify(scenarios.scenarios_for_party(party_id))
