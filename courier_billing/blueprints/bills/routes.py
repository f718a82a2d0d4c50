"""
courier_billing/blueprints/bills/routes.py

Bill routes (/api/bills).

- GET  /             paginated list (?party_id=, ?page=/?limit=/?offset=)
- POST /generate     create a bill, optionally with an explicit booking selection
- GET  /<id>         bill plus its resolved booking lines
- GET  /<id>/pdf     printable HTML document (the browser prints it to PDF)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, make_response, request
from flask_login import current_user

from ...models import _json_value
from ...security import role_required
from ...services import billing
from ...utils import json_body, pagination_args, parse_optional_int

logger = logging.getLogger(__name__)

bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


@bills_bp.route("", methods=["GET"])
@role_required("billing_operator")
def list_bills():
    limit, offset = pagination_args()
    party_id = parse_optional_int(request.args.get("party_id"))
    bills, total = billing.list_bills(limit, offset, party_id)
    return jsonify({
        "items": [billing.bill_to_dict(b) for b in bills],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@bills_bp.route("/generate", methods=["POST"])
@role_required("billing_operator")
def generate_bill():
    bill = billing.create_bill(json_body(), created_by=current_user.username)
    return jsonify(billing.bill_to_dict(bill)), 201


@bills_bp.route("/<int:bill_id>", methods=["GET"])
@role_required("billing_operator")
def get_bill(bill_id: int):
    bill = billing.load_bill(bill_id)
    lines = billing.resolve_bookings(billing.booking_source_for(bill))
    data = billing.bill_to_dict(bill)
    data["lines"] = [{k: _json_value(v) for k, v in line.items()} for line in lines]
    return jsonify(data)


@bills_bp.route("/<int:bill_id>/pdf", methods=["GET"])
@role_required("billing_operator")
def bill_pdf(bill_id: int):
    document = billing.build_bill(bill_id)
    response = make_response(document.html)
    response.headers["Content-Type"] = "text/html; charset=utf-8"
    response.headers["Content-Disposition"] = f'inline; filename="{document.filename}"'
    return response
