"""
courier_billing/blueprints/imports/routes.py

CSV upload routes.

- POST /api/csv-invoices/import     invoice rows (?preview=1 validates without saving)
- POST /api/parties/import          party rows (?preview=1 likewise)
- GET  /api/csv-invoices            imported rows, paginated
- GET  /api/csv-invoices/template   ?type=invoices|parties -> header-only CSV
- POST /api/csv-invoices/<id>/apply-rate  price one row from its party rate slab

The CSV arrives as a multipart "file" field or as the raw request body.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from ...errors import ValidationError
from ...models import CsvInvoice, _json_value
from ...security import role_required
from ...services import csv_import
from ...utils import pagination_args, parse_bool

logger = logging.getLogger(__name__)

imports_bp = Blueprint("imports", __name__, url_prefix="/api")


def _uploaded_text() -> str:
    upload = request.files.get("file")
    if upload is not None:
        raw = upload.read()
    else:
        raw = request.get_data()
    if not raw:
        raise ValidationError("No CSV file uploaded", fields=["file"])
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("CSV must be UTF-8 encoded", fields=["file"]) from None


def _run_import(kind: str, importer):
    text = _uploaded_text()
    if parse_bool(request.args.get("preview")):
        return jsonify(csv_import.preview(text, kind))
    result = importer(text)
    logger.info("Import of %s by upload: %s", kind, result["message"])
    return jsonify(result)


@imports_bp.route("/csv-invoices/import", methods=["POST"])
@role_required("billing_operator")
def import_csv_invoices():
    return _run_import("invoices", csv_import.import_invoices)


@imports_bp.route("/parties/import", methods=["POST"])
@role_required("billing_operator")
def import_parties():
    return _run_import("parties", csv_import.import_parties)


@imports_bp.route("/csv-invoices", methods=["GET"])
@role_required("billing_operator")
def list_csv_invoices():
    limit, offset = pagination_args()
    query = CsvInvoice.query
    total = query.count()
    rows = query.order_by(CsvInvoice.id.desc()).limit(limit).offset(offset).all()
    return jsonify({"items": [r.to_dict() for r in rows], "total": total, "limit": limit, "offset": offset})


@imports_bp.route("/csv-invoices/template", methods=["GET"])
@role_required("billing_operator")
def csv_template():
    kind = request.args.get("type") or "invoices"
    body = csv_import.template_csv(kind)
    return body, 200, {
        "Content-Type": "text/csv; charset=utf-8",
        "Content-Disposition": f'attachment; filename="{kind}-template.csv"',
    }


@imports_bp.route("/csv-invoices/<int:invoice_id>/apply-rate", methods=["POST"])
@role_required("billing_operator")
def apply_rate(invoice_id: int):
    """Optional body: {distance_slab_id, shipment_type} overriding what the row implies."""
    options = request.get_json(silent=True) or {}
    if not isinstance(options, dict):
        raise ValidationError("Request body must be a JSON object")
    row = csv_import.apply_rate(invoice_id, options)
    return jsonify({
        "ok": True,
        "calculated_amount": _json_value(row.calculated_amount),
        "pricing_meta": row.pricing_meta,
        "row": row.to_dict(),
    })
