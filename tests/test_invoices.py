from decimal import Decimal

import pytest

from courier_billing.extensions import db
from courier_billing.models import Invoice, InvoiceItem, PaymentAllocation
from courier_billing.services.invoices import payment_status_for

from conftest import make_party


def _invoice(client, headers, party_id, **overrides):
    payload = {
        "party_id": party_id,
        "invoice_date": "2024-05-10",
        "items": [
            {"item_description": "CN001 Air", "quantity": 2, "unit_price": "100", "consignment_no": "CN001"},
            {"item_description": "CN002 Surface", "unit_price": "50", "total_price": "60"},
        ],
        "tax_amount": "36",
        "additional_charges": "4",
    }
    payload.update(overrides)
    return client.post("/api/invoices", json=payload, headers=headers)


def _pay(client, headers, party_id, amount, allocations=None):
    payload = {"party_id": party_id, "payment_date": "2024-05-20", "amount": amount, "payment_method": "UPI"}
    if allocations is not None:
        payload["allocations"] = allocations
    return client.post("/api/party-payments", json=payload, headers=headers)


@pytest.mark.parametrize(
    "total, received, status",
    [("300", "0", "pending"), ("300", "120", "partial"), ("300", "300", "paid"), ("300", "350", "paid")],
)
def test_payment_status_for(total, received, status):
    assert payment_status_for(Decimal(total), Decimal(received)) == status


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------
def test_create_invoice_computes_totals(client, operator_headers, party_id):
    response = _invoice(client, operator_headers, party_id)

    assert response.status_code == 201
    invoice = response.get_json()
    assert invoice["invoice_number"] == "INV-202405-0001"
    assert Decimal(invoice["subtotal"]) == Decimal("260")
    assert Decimal(invoice["total_amount"]) == Decimal("300")
    assert Decimal(invoice["outstanding"]) == Decimal("300")
    assert invoice["payment_status"] == "pending"
    assert invoice["created_by"] == "operator"
    assert [Decimal(i["total_price"]) for i in invoice["items"]] == [Decimal("200"), Decimal("60")]

    second = _invoice(client, operator_headers, party_id).get_json()
    assert second["invoice_number"] == "INV-202405-0002"


def test_create_invoice_validation(client, operator_headers, party_id):
    no_items = _invoice(client, operator_headers, party_id, items=[])
    assert no_items.status_code == 400
    assert no_items.get_json()["fields"] == ["items"]

    bad_item = _invoice(client, operator_headers, party_id,
                        items=[{"item_description": "", "quantity": 0, "unit_price": "-1"}])
    assert bad_item.get_json()["fields"] == [
        "items[0].item_description", "items[0].quantity", "items[0].unit_price",
    ]

    assert _invoice(client, operator_headers, party_id, tax_amount="-3").get_json()["fields"] == ["tax_amount"]
    assert _invoice(client, operator_headers, party_id, invoice_date="someday").status_code == 400
    assert _invoice(client, operator_headers, 4242).status_code == 404


def test_duplicate_invoice_number_conflicts(client, operator_headers, party_id):
    assert _invoice(client, operator_headers, party_id, invoice_number="INV-1").status_code == 201
    assert _invoice(client, operator_headers, party_id, invoice_number="INV-1").status_code == 409


def test_update_replaces_items_and_recomputes(client, operator_headers, party_id):
    invoice = _invoice(client, operator_headers, party_id).get_json()

    response = client.put(
        f"/api/invoices/{invoice['id']}",
        json={"items": [{"item_description": "Single", "unit_price": "500"}], "notes": "revised"},
        headers=operator_headers,
    )

    assert response.status_code == 200
    updated = response.get_json()
    assert [i["item_description"] for i in updated["items"]] == ["Single"]
    assert Decimal(updated["total_amount"]) == Decimal("540")
    assert updated["notes"] == "revised"


def test_update_cannot_drop_total_below_received(app, client, operator_headers, party_id):
    invoice = _invoice(client, operator_headers, party_id).get_json()
    _pay(client, operator_headers, party_id, "250", [{"invoice_id": invoice["id"], "amount": "250"}])

    response = client.put(f"/api/invoices/{invoice['id']}",
                          json={"items": [{"item_description": "Cheap", "unit_price": "10"}]},
                          headers=operator_headers)

    assert response.status_code == 400
    with app.app_context():
        assert db.session.get(Invoice, invoice["id"]).total_amount == Decimal("300.00")
        assert InvoiceItem.query.count() == 2


def test_list_invoices_filters(client, operator_headers, party_id, app):
    other = make_party(app, name="Beta Logistics", phone="9000000001")
    _invoice(client, operator_headers, party_id, invoice_date="2024-04-30")
    _invoice(client, operator_headers, party_id, invoice_date="2024-05-15")
    _invoice(client, operator_headers, other, invoice_date="2024-05-16")

    body = client.get(f"/api/invoices?party_id={party_id}&date_from=2024-05-01&sort=invoice_date",
                      headers=operator_headers).get_json()
    assert body["total"] == 1
    assert body["items"][0]["party_name"] == "Acme Traders"

    everything = client.get("/api/invoices?sort=invoice_date&order=asc", headers=operator_headers).get_json()
    assert [i["invoice_date"] for i in everything["items"]] == ["2024-04-30", "2024-05-15", "2024-05-16"]

    assert client.get("/api/invoices?date_to=May", headers=operator_headers).status_code == 400


def test_only_admin_deletes_invoices(app, client, operator_headers, admin_headers, party_id):
    invoice = _invoice(client, operator_headers, party_id).get_json()
    _pay(client, operator_headers, party_id, "100", [{"invoice_id": invoice["id"], "amount": "100"}])
    url = f"/api/invoices/{invoice['id']}"

    assert client.delete(url, headers=operator_headers).status_code == 403
    assert client.delete(url, headers=admin_headers).get_json() == {"message": "Invoice deleted successfully"}
    assert client.get(url, headers=operator_headers).status_code == 404
    with app.app_context():
        assert InvoiceItem.query.count() == 0
        assert PaymentAllocation.query.count() == 0


def test_party_with_invoices_cannot_be_deleted(client, operator_headers, admin_headers, party_id):
    _invoice(client, operator_headers, party_id)

    assert client.delete(f"/api/parties/{party_id}", headers=admin_headers).status_code == 409


# ----------------------------------------------------------------------
# Payments & allocations
# ----------------------------------------------------------------------
def test_party_payment_allocations_update_invoices(client, operator_headers, party_id):
    first = _invoice(client, operator_headers, party_id).get_json()
    second = _invoice(client, operator_headers, party_id).get_json()

    response = _pay(client, operator_headers, party_id, "400", [
        {"invoice_id": first["id"], "amount": "300"},
        {"invoice_id": second["id"], "amount": "50"},
    ])

    assert response.status_code == 201
    payment = response.get_json()["party_payment"]
    assert [Decimal(a["amount"]) for a in payment["allocations"]] == [Decimal("300"), Decimal("50")]

    paid = client.get(f"/api/invoices/{first['id']}", headers=operator_headers).get_json()
    partial = client.get(f"/api/invoices/{second['id']}", headers=operator_headers).get_json()
    assert paid["payment_status"] == "paid"
    assert partial["payment_status"] == "partial"
    assert Decimal(partial["received_amount"]) == Decimal("50")
    assert partial["allocations"][0]["payment_method"] == "UPI"

    more = client.post("/api/payment-allocations",
                       json={"party_payment_id": payment["id"], "allocations": [{"invoice_id": second["id"],
                                                                                 "amount": "50"}]},
                       headers=operator_headers)
    assert more.status_code == 201
    history = client.get(f"/api/invoices/{second['id']}/allocations", headers=operator_headers).get_json()
    assert len(history["allocations"]) == 2
    assert Decimal(history["invoice"]["received_amount"]) == Decimal("100")


def test_allocations_cannot_exceed_payment_or_outstanding(app, client, operator_headers, party_id):
    invoice = _invoice(client, operator_headers, party_id).get_json()

    over_payment = _pay(client, operator_headers, party_id, "100", [{"invoice_id": invoice["id"], "amount": "150"}])
    assert over_payment.status_code == 400
    assert over_payment.get_json()["error"] == "Allocations exceed the payment amount"

    over_invoice = _pay(client, operator_headers, party_id, "500", [{"invoice_id": invoice["id"], "amount": "301"}])
    assert over_invoice.status_code == 400

    with app.app_context():
        assert db.session.get(Invoice, invoice["id"]).received_amount == Decimal("0.00")
        assert PaymentAllocation.query.count() == 0


def test_allocation_must_target_the_same_party(app, client, operator_headers, party_id):
    other = make_party(app, name="Beta Logistics", phone="9000000001")
    foreign = _invoice(client, operator_headers, other).get_json()

    response = _pay(client, operator_headers, party_id, "100", [{"invoice_id": foreign["id"], "amount": "10"}])

    assert response.status_code == 400
    assert response.get_json()["fields"] == ["allocations"]


def test_payment_allocation_validation(client, operator_headers, party_id):
    bad = _pay(client, operator_headers, party_id, "0", [{"amount": "-1"}])
    assert bad.get_json()["fields"] == ["amount"]

    bad_allocation = _pay(client, operator_headers, party_id, "10", [{"amount": "-1"}])
    assert bad_allocation.get_json()["fields"] == ["allocations[0].invoice_id", "allocations[0].amount"]

    missing = client.post("/api/payment-allocations", json={"party_payment_id": 999, "allocations": []},
                          headers=operator_headers)
    assert missing.status_code == 404


def test_invoice_payment_is_capped_at_outstanding(client, operator_headers, party_id):
    invoice = _invoice(client, operator_headers, party_id).get_json()
    body = {"invoice_id": invoice["id"], "payment_date": "2024-05-21", "reference_number": "UTR-9"}

    too_much = client.post("/api/payments", json={**body, "amount": "300.01"}, headers=operator_headers)
    assert too_much.status_code == 400
    assert too_much.get_json()["error"] == "Payment exceeds invoice total amount"

    exact = client.post("/api/payments", json={**body, "amount": "300"}, headers=operator_headers)
    assert exact.status_code == 201
    assert exact.get_json()["reference_no"] == "UTR-9"
    assert client.get(f"/api/invoices/{invoice['id']}", headers=operator_headers).get_json()["payment_status"] == "paid"


def test_party_outstanding_and_payment_listing(client, operator_headers, party_id):
    first = _invoice(client, operator_headers, party_id, invoice_date="2024-05-01").get_json()
    second = _invoice(client, operator_headers, party_id, invoice_date="2024-05-02").get_json()
    _pay(client, operator_headers, party_id, "320", [
        {"invoice_id": first["id"], "amount": "300"},
        {"invoice_id": second["id"], "amount": "20"},
    ])

    body = client.get(f"/api/party-outstanding?party_id={party_id}", headers=operator_headers).get_json()

    assert body["summary"]["total_invoices"] == 2
    assert body["summary"]["total_open"] == 1
    assert Decimal(body["summary"]["total_outstanding"]) == Decimal("280")
    assert [i["id"] for i in body["open_invoices"]] == [second["id"]]

    payments = client.get(f"/api/party-payments?party_id={party_id}", headers=operator_headers).get_json()["items"]
    assert [Decimal(p["amount"]) for p in payments] == [Decimal("320")]

    assert client.get("/api/party-outstanding", headers=operator_headers).status_code == 400


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------
def test_daily_collection_lists_invoice_items(client, operator_headers, party_id, catalog):
    _invoice(client, operator_headers, party_id, invoice_date="2024-05-01")
    _invoice(client, operator_headers, party_id, invoice_date="2024-05-03", items=[
        {"item_description": "CN009", "unit_price": "80", "consignment_no": "CN009",
         "service_type_id": catalog["service_type_id"], "weight_kg": "1.2", "shipment_type": "document"},
    ])

    rows = client.get("/api/reports/daily-collection?date_from=2024-05-02",
                      headers=operator_headers).get_json()["items"]

    assert len(rows) == 1
    assert rows[0]["client"] == "Acme Traders"
    assert rows[0]["courier"] == "Express"
    assert rows[0]["package_type"] == "DOCUMENT"
    assert Decimal(rows[0]["weight"]) == Decimal("1.2")
    assert Decimal(rows[0]["amount"]) == Decimal("80")
