from decimal import Decimal

from courier_billing.extensions import db
from courier_billing.models import PartyRateSlab, PartyRateSlabAudit


URL = "/api/party-rate-slabs"


def _list(client, headers, party_id):
    response = client.get(f"{URL}?party_id={party_id}", headers=headers)
    assert response.status_code == 200
    return response.get_json()["items"]


def _audit(client, headers, slab_id):
    response = client.get(f"{URL}/audit?party_rate_slab_id={slab_id}", headers=headers)
    assert response.status_code == 200
    return response.get_json()["items"]


def test_requires_authentication(client, party_id):
    assert client.get(f"{URL}?party_id={party_id}").status_code == 401


def test_double_submit_keeps_one_row(app, client, operator_headers, rate_payload, party_id):
    first = client.post(URL, json=rate_payload(), headers=operator_headers)
    second = client.post(URL, json=rate_payload(rate="55"), headers=operator_headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.get_json()["id"] == second.get_json()["id"]

    rows = _list(client, operator_headers, party_id)
    assert len(rows) == 1
    assert Decimal(rows[0]["rate"]) == Decimal("55")

    actions = [entry["action"] for entry in _audit(client, operator_headers, rows[0]["id"])]
    assert actions == ["update", "create"]

    with app.app_context():
        assert PartyRateSlab.query.count() == 1


def test_camel_case_payload_is_accepted(client, operator_headers, catalog, party_id):
    payload = {
        "partyId": party_id,
        "shipmentType": "document",
        "modeId": catalog["mode_id"],
        "serviceTypeId": catalog["service_type_id"],
        "distanceSlabId": catalog["distance_slab_id"],
        "slabId": catalog["weights"]["100-250g"],
        "rate": "70",
        "fuelPct": "5",
        "fuel_pct": "12",
    }
    response = client.post(URL, json=payload, headers=operator_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["shipment_type"] == "DOCUMENT"
    assert Decimal(body["fuel_pct"]) == Decimal("12")


def test_listing_is_decorated_with_catalog_titles(client, operator_headers, rate_payload, party_id):
    client.post(URL, json=rate_payload(), headers=operator_headers)

    row = _list(client, operator_headers, party_id)[0]
    assert row["mode_title"] == "Air"
    assert row["service_type_title"] == "Express"
    assert row["distance_slab_title"] == "Metro Cities"
    assert row["slab_name"] == "0-100g"


def test_missing_fields_are_reported(client, operator_headers, party_id):
    response = client.post(URL, json={"party_id": party_id, "rate": "10"}, headers=operator_headers)

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"].startswith("Missing fields")
    assert set(body["fields"]) == {"shipment_type", "mode_id", "service_type_id", "distance_slab_id", "slab_id"}


def test_negative_rate_and_unknown_catalog_rejected(client, operator_headers, rate_payload):
    negative = client.post(URL, json=rate_payload(rate="-1"), headers=operator_headers)
    assert negative.status_code == 400
    assert negative.get_json()["fields"] == ["rate"]

    unknown = client.post(URL, json=rate_payload(mode_id=9999), headers=operator_headers)
    assert unknown.status_code == 400
    assert unknown.get_json()["fields"] == ["mode_id"]


def test_unknown_party_is_a_persistence_error(app, client, operator_headers, rate_payload):
    response = client.post(URL, json=rate_payload(party_id=9999), headers=operator_headers)

    assert response.status_code == 500
    assert response.get_json()["error"] == "Could not save party rate slab"
    with app.app_context():
        assert PartyRateSlab.query.count() == 0
        assert PartyRateSlabAudit.query.count() == 0


def test_soft_delete_hides_row_but_keeps_history(app, client, operator_headers, rate_payload, party_id):
    slab_id = client.post(URL, json=rate_payload(), headers=operator_headers).get_json()["id"]

    response = client.delete(f"{URL}/{slab_id}", headers=operator_headers)
    assert response.status_code == 200

    assert _list(client, operator_headers, party_id) == []
    history = _audit(client, operator_headers, slab_id)
    assert [entry["action"] for entry in history] == ["delete", "create"]
    assert history[0]["before_data"]["is_active"] is True
    assert history[0]["after_data"] is None
    assert history[0]["changed_by"] == "operator"

    with app.app_context():
        assert db.session.get(PartyRateSlab, slab_id).is_active is False


def test_resubmitting_a_deleted_key_reactivates_it(client, operator_headers, rate_payload, party_id):
    slab_id = client.post(URL, json=rate_payload(), headers=operator_headers).get_json()["id"]
    client.delete(f"{URL}/{slab_id}", headers=operator_headers)

    again = client.post(URL, json=rate_payload(rate="60"), headers=operator_headers)

    assert again.get_json()["id"] == slab_id
    assert [row["id"] for row in _list(client, operator_headers, party_id)] == [slab_id]


def test_put_onto_another_rows_key_conflicts(client, operator_headers, rate_payload, catalog):
    first = client.post(URL, json=rate_payload(), headers=operator_headers).get_json()
    second = client.post(
        URL, json=rate_payload(slab_id=catalog["weights"]["100-250g"]), headers=operator_headers
    ).get_json()

    response = client.put(
        f"{URL}/{second['id']}",
        json={"slab_id": catalog["weights"]["0-100g"]},
        headers=operator_headers,
    )

    assert response.status_code == 409
    assert response.get_json()["details"] == {"conflictId": first["id"]}


def test_put_keeps_fields_not_sent(client, operator_headers, rate_payload):
    slab = client.post(URL, json=rate_payload(packing="7"), headers=operator_headers).get_json()

    response = client.put(f"{URL}/{slab['id']}", json={"rate": "65"}, headers=operator_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert Decimal(body["rate"]) == Decimal("65")
    assert Decimal(body["packing"]) == Decimal("7")


def test_put_unknown_id_is_not_found(client, operator_headers):
    assert client.put(f"{URL}/4242", json={"rate": "1"}, headers=operator_headers).status_code == 404


def test_batch_is_all_or_nothing(app, client, operator_headers, rate_payload, catalog):
    batch = [
        rate_payload(),
        rate_payload(slab_id=catalog["weights"]["100-250g"], rate="oops"),
    ]
    response = client.post(URL, json=batch, headers=operator_headers)

    assert response.status_code == 400
    with app.app_context():
        assert PartyRateSlab.query.count() == 0


def test_batch_saves_every_item(client, operator_headers, rate_payload, catalog, party_id):
    batch = [rate_payload(slab_id=catalog["weights"][name]) for name in ("0-100g", "100-250g", "250-500g")]
    response = client.post(URL, json=batch, headers=operator_headers)

    assert response.status_code == 200
    assert len(response.get_json()["items"]) == 3
    assert len(_list(client, operator_headers, party_id)) == 3


def test_audit_is_paginated_newest_first(client, operator_headers, rate_payload):
    slab_id = client.post(URL, json=rate_payload(), headers=operator_headers).get_json()["id"]
    for rate in ("51", "52", "53"):
        client.post(URL, json=rate_payload(rate=rate), headers=operator_headers)

    page = client.get(
        f"{URL}/audit?party_rate_slab_id={slab_id}&limit=2&offset=1", headers=operator_headers
    ).get_json()["items"]

    assert len(page) == 2
    assert Decimal(page[0]["after_data"]["rate"]) == Decimal("52")
    assert Decimal(page[1]["after_data"]["rate"]) == Decimal("51")


def test_resolve_by_weight(client, operator_headers, rate_payload, catalog, party_id):
    client.post(
        URL,
        json=rate_payload(
            slab_id=catalog["weights"]["100-250g"],
            rate="100",
            fuel_pct="10",
            packing="5",
            handling="5",
            gst_pct="18",
        ),
        headers=operator_headers,
    )

    response = client.get(
        f"{URL}/resolve",
        query_string={
            "partyId": party_id,
            "shipmentType": "DOCUMENT",
            "modeId": catalog["mode_id"],
            "serviceTypeId": catalog["service_type_id"],
            "distanceSlabId": catalog["distance_slab_id"],
            "weightGrams": 150,
        },
        headers=operator_headers,
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["slabId"] == catalog["weights"]["100-250g"]
    assert body["weightGrams"] == 150
    assert body["fuelAmount"] == "10.00"
    assert body["subtotal"] == "120.00"
    assert body["gstAmount"] == "21.60"
    assert body["total"] == "141.60"


def test_resolve_without_rate_is_not_found(client, operator_headers, catalog, party_id):
    response = client.get(
        f"{URL}/resolve",
        query_string={
            "party_id": party_id,
            "shipment_type": "DOCUMENT",
            "mode_id": catalog["mode_id"],
            "service_type_id": catalog["service_type_id"],
            "distance_slab_id": catalog["distance_slab_id"],
            "slab_id": catalog["weights"]["0-100g"],
        },
        headers=operator_headers,
    )
    assert response.status_code == 404
