"""
courier_billing/blueprints/invoices/routes.py

Itemized invoices and the payments received against them.

Invoices (/api/invoices):
- GET    /                  paginated (?date_from=&date_to=&party_id=&sort=&order=)
- POST   /                  create with items
- GET    /<id>              invoice with items and allocations
- PUT    /<id>              partial update (items replace the old ones)
- DELETE /<id>              admin only
- GET    /<id>/allocations  payments allocated to the invoice

Payments:
- POST /api/payments                 payment against one invoice
- POST /api/party-payments           party payment with optional allocations
- GET  /api/party-payments?party_id=
- POST /api/payment-allocations      allocate an existing party payment
- GET  /api/party-outstanding?party_id=

Reports:
- GET /api/reports/daily-collection  invoice items (?date_from=&date_to=&party_id=&service_type_id=)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from ...security import role_required
from ...services import invoices
from ...utils import json_body, pagination_args

logger = logging.getLogger(__name__)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api")


# ----------------------------------------------------------------------
# INVOICES
# ----------------------------------------------------------------------
@invoices_bp.route("/invoices", methods=["GET"])
@role_required("billing_operator")
def list_invoices():
    limit, offset = pagination_args()
    rows, total = invoices.list_invoices(limit, offset, request.args.to_dict())
    return jsonify({
        "items": [invoices.invoice_to_dict(i) for i in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@invoices_bp.route("/invoices", methods=["POST"])
@role_required("billing_operator")
def create_invoice():
    invoice = invoices.create_invoice(json_body(), created_by=current_user.username)
    return jsonify(invoices.invoice_to_dict(invoice, detail=True)), 201


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
@role_required("billing_operator")
def get_invoice(invoice_id: int):
    return jsonify(invoices.invoice_to_dict(invoices.load_invoice(invoice_id), detail=True))


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["PUT"])
@role_required("billing_operator")
def update_invoice(invoice_id: int):
    invoice = invoices.update_invoice(invoice_id, json_body())
    return jsonify(invoices.invoice_to_dict(invoice, detail=True))


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["DELETE"])
@role_required("admin")
def delete_invoice(invoice_id: int):
    invoices.delete_invoice(invoice_id)
    return jsonify({"message": "Invoice deleted successfully"})


@invoices_bp.route("/invoices/<int:invoice_id>/allocations", methods=["GET"])
@role_required("billing_operator")
def invoice_allocations(invoice_id: int):
    return jsonify(invoices.invoice_allocations(invoice_id))


# ----------------------------------------------------------------------
# PAYMENTS
# ----------------------------------------------------------------------
@invoices_bp.route("/payments", methods=["POST"])
@role_required("billing_operator")
def record_payment():
    payment = invoices.record_invoice_payment(json_body(), created_by=current_user.username)
    return jsonify(invoices.payment_to_dict(payment)), 201


@invoices_bp.route("/party-payments", methods=["POST"])
@role_required("billing_operator")
def create_party_payment():
    payment = invoices.create_party_payment(json_body(), created_by=current_user.username)
    return jsonify({"party_payment": invoices.payment_to_dict(payment)}), 201


@invoices_bp.route("/party-payments", methods=["GET"])
@role_required("billing_operator")
def list_party_payments():
    rows = invoices.list_party_payments(request.args.get("party_id"))
    return jsonify({"items": [invoices.payment_to_dict(p) for p in rows]})


@invoices_bp.route("/payment-allocations", methods=["POST"])
@role_required("billing_operator")
def add_payment_allocations():
    payload = json_body()
    payment = invoices.add_allocations(payload.get("party_payment_id"), payload.get("allocations"))
    return jsonify({"success": True, "party_payment": invoices.payment_to_dict(payment)}), 201


@invoices_bp.route("/party-outstanding", methods=["GET"])
@role_required("billing_operator")
def party_outstanding():
    return jsonify(invoices.party_outstanding(request.args.get("party_id")))


# ----------------------------------------------------------------------
# REPORTS
# ----------------------------------------------------------------------
@invoices_bp.route("/reports/daily-collection", methods=["GET"])
@role_required("billing_operator")
def daily_collection():
    return jsonify({"items": invoices.daily_collection(request.args.to_dict())})
