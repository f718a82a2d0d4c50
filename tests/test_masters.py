from courier_billing.extensions import db
from courier_billing.models import Carrier, Mode, PartyRateSlab, Region, WeightSlab


def _count(app, model):
    with app.app_context():
        return model.query.count()


# ----------------------------------------------------------------------
# Setup & catalogs
# ----------------------------------------------------------------------
def test_setup_is_idempotent(app, client, admin_headers):
    before = {m.__name__: _count(app, m) for m in (Mode, WeightSlab, Region, Carrier)}

    for _ in range(2):
        response = client.post("/api/setup", headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json() == {"ok": True}

    after = {m.__name__: _count(app, m) for m in (Mode, WeightSlab, Region, Carrier)}
    assert after == before
    assert before["WeightSlab"] == 8


def test_listing_filters_active_rows(client, admin_headers, operator_headers, catalog):
    client.delete(f"/api/masters/modes/{catalog['mode_id']}", headers=admin_headers)

    everything = client.get("/api/masters/modes", headers=operator_headers).get_json()["items"]
    active = client.get("/api/masters/modes?active=1", headers=operator_headers).get_json()["items"]

    assert [m["code"] for m in everything] == ["AIR", "SURFACE"]
    assert [m["code"] for m in active] == ["SURFACE"]


def test_weight_slabs_are_ordered_by_minimum(client, operator_headers):
    items = client.get("/api/masters/weight-slabs", headers=operator_headers).get_json()["items"]
    assert [w["min_weight_grams"] for w in items] == sorted(w["min_weight_grams"] for w in items)


def test_create_and_update_catalog_entry(client, admin_headers):
    created = client.post("/api/masters/service-types", json={"code": "economy", "title": "Economy"},
                          headers=admin_headers)
    assert created.status_code == 201
    row = created.get_json()
    assert row["code"] == "ECONOMY"

    updated = client.put(f"/api/masters/service-types/{row['id']}", json={"title": "Economy Saver"},
                         headers=admin_headers)
    assert updated.get_json()["title"] == "Economy Saver"
    assert updated.get_json()["code"] == "ECONOMY"


def test_duplicate_code_conflicts(client, admin_headers):
    response = client.post("/api/masters/modes", json={"code": "air", "title": "Air again"}, headers=admin_headers)
    assert response.status_code == 409


def test_missing_and_invalid_fields(client, admin_headers):
    missing = client.post("/api/masters/carriers", json={}, headers=admin_headers)
    assert missing.status_code == 400
    assert missing.get_json()["fields"] == ["name"]

    bad_grams = client.post(
        "/api/masters/weight-slabs",
        json={"slab_name": "3kg+", "min_weight_grams": "lots", "max_weight_grams": 5000},
        headers=admin_headers,
    )
    assert bad_grams.get_json()["fields"] == ["min_weight_grams"]


def test_weight_slab_range_must_be_increasing(client, admin_headers, catalog):
    response = client.post(
        "/api/masters/weight-slabs",
        json={"slab_name": "odd", "min_weight_grams": 500, "max_weight_grams": 500},
        headers=admin_headers,
    )
    assert response.status_code == 400

    slab_id = catalog["weights"]["0-100g"]
    response = client.put(f"/api/masters/weight-slabs/{slab_id}", json={"min_weight_grams": 200},
                          headers=admin_headers)
    assert response.status_code == 400


def test_unknown_catalog_and_row(client, admin_headers, operator_headers):
    assert client.get("/api/masters/planets", headers=operator_headers).status_code == 404
    assert client.put("/api/masters/modes/9999", json={"title": "x"}, headers=admin_headers).status_code == 404


def test_centers_need_an_existing_region(app, client, admin_headers):
    with app.app_context():
        region_id = Region.query.filter_by(code="MP").one().id

    bad = client.post("/api/masters/centers", json={"state": "MP", "city": "Rewa", "region_id": 999},
                      headers=admin_headers)
    assert bad.get_json()["fields"] == ["region_id"]

    good = client.post("/api/masters/centers", json={"state": "MP", "city": "Rewa", "region_id": region_id},
                       headers=admin_headers)
    assert good.status_code == 201


def test_regions_are_hard_deleted(app, client, admin_headers):
    with app.app_context():
        region_id = Region.query.filter_by(code="NE").one().id

    assert client.delete(f"/api/masters/regions/{region_id}", headers=admin_headers).status_code == 200
    with app.app_context():
        assert db.session.get(Region, region_id) is None


def test_quotation_notes_are_seeded(client, operator_headers):
    titles = [n["title"] for n in client.get("/api/quotations/notes", headers=operator_headers).get_json()["items"]]
    assert "GST" in titles


# ----------------------------------------------------------------------
# Bookings
# ----------------------------------------------------------------------
def test_bookings_create_and_filter(client, operator_headers):
    for day, sender in (("2024-05-02", "Acme Traders"), ("2024-05-20", " acme traders"), ("2024-06-01", "Acme Traders"),
                        ("2024-05-03", "Beta")):
        response = client.post(
            "/api/account-bookings",
            json={"booking_date": day, "sender": sender, "net_amount": "120", "number_of_boxes": 2},
            headers=operator_headers,
        )
        assert response.status_code == 201

    body = client.get("/api/account-bookings?sender=ACME TRADERS&month=2024-05", headers=operator_headers).get_json()

    assert body["total"] == 2
    assert [b["booking_date"] for b in body["items"]] == ["2024-05-20", "2024-05-02"]


def test_cash_booking_uses_date_field(client, operator_headers):
    response = client.post("/api/cash-bookings", json={"date": "02/05/2024", "sender": "Acme", "cgst": "9"},
                           headers=operator_headers)

    assert response.status_code == 201
    assert response.get_json()["date"] == "2024-05-02"


def test_booking_validation(client, operator_headers):
    response = client.post("/api/account-bookings", json={"net_amount": "-3", "number_of_boxes": "x"},
                           headers=operator_headers)

    assert response.status_code == 400
    assert response.get_json()["fields"] == ["booking_date", "sender", "net_amount", "number_of_boxes"]

    bad_month = client.get("/api/cash-bookings?month=May", headers=operator_headers)
    assert bad_month.status_code == 400


def test_only_admin_deletes_bookings(client, operator_headers, admin_headers):
    booking = client.post("/api/cash-bookings", json={"date": "2024-05-02", "sender": "Acme"},
                          headers=operator_headers).get_json()
    url = f"/api/cash-bookings/{booking['id']}"

    assert client.delete(url, headers=operator_headers).status_code == 403
    assert client.delete(url, headers=admin_headers).status_code == 200
    assert client.delete(url, headers=admin_headers).status_code == 404


# ----------------------------------------------------------------------
# Parties & companies
# ----------------------------------------------------------------------
def test_party_crud(client, operator_headers, admin_headers):
    created = client.post(
        "/api/parties",
        json={"party_name": " Gamma Exports ", "phone": "98260-12345", "gst_number": "23abcde1234f1z5",
              "pincode": "486001"},
        headers=operator_headers,
    )
    assert created.status_code == 201
    party = created.get_json()
    assert party["party_name"] == "Gamma Exports"
    assert party["phone"] == "9826012345"
    assert party["gst_number"] == "23ABCDE1234F1Z5"

    found = client.get("/api/parties?search=9826", headers=operator_headers).get_json()
    assert [p["id"] for p in found["items"]] == [party["id"]]

    updated = client.put(f"/api/parties/{party['id']}", json={"city": "Rewa"}, headers=operator_headers)
    assert updated.get_json()["city"] == "Rewa"
    assert updated.get_json()["party_name"] == "Gamma Exports"

    assert client.delete(f"/api/parties/{party['id']}", headers=operator_headers).status_code == 403
    assert client.delete(f"/api/parties/{party['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/parties/{party['id']}", headers=operator_headers).status_code == 404


def test_party_validation(client, operator_headers, party_id):
    response = client.post(
        "/api/parties",
        json={"phone": "abc", "email": "not-an-email", "gst_type": "alien", "pincode": "0123"},
        headers=operator_headers,
    )
    assert response.status_code == 400
    assert response.get_json()["fields"] == ["party_name", "phone", "email", "gst_type", "pincode"]

    blank_name = client.put(f"/api/parties/{party_id}", json={"party_name": "  "}, headers=operator_headers)
    assert blank_name.get_json()["fields"] == ["party_name"]


def test_party_with_bills_cannot_be_deleted(client, operator_headers, admin_headers, party_id):
    client.post("/api/bills/generate", json={"party_id": party_id, "total_amount": "10"}, headers=operator_headers)

    response = client.delete(f"/api/parties/{party_id}", headers=admin_headers)

    assert response.status_code == 409
    assert client.get(f"/api/parties/{party_id}", headers=operator_headers).status_code == 200


def test_deleting_a_party_drops_its_rate_slabs(app, client, operator_headers, admin_headers, rate_payload, party_id):
    client.post("/api/party-rate-slabs", json=rate_payload(), headers=operator_headers)

    assert client.delete(f"/api/parties/{party_id}", headers=admin_headers).status_code == 200
    with app.app_context():
        assert PartyRateSlab.query.count() == 0


def test_companies(client, operator_headers, admin_headers):
    assert client.get("/api/companies/active", headers=operator_headers).status_code == 404
    assert client.post("/api/companies", json={"business_name": "X"}, headers=operator_headers).status_code == 403
    assert client.post("/api/companies", json={}, headers=admin_headers).status_code == 400

    inactive = client.post("/api/companies", json={"business_name": "Old Co", "is_active": False},
                           headers=admin_headers).get_json()
    active = client.post("/api/companies", json={"business_name": "Pandey Services", "ifsc_code": "HDFC0001"},
                         headers=admin_headers).get_json()

    current = client.get("/api/companies/active", headers=operator_headers).get_json()
    assert current["id"] == active["id"]

    client.put(f"/api/companies/{inactive['id']}", json={"is_active": True}, headers=admin_headers)
    current = client.get("/api/companies/active", headers=operator_headers).get_json()
    assert current["id"] == inactive["id"]

    listed = client.get("/api/companies", headers=operator_headers).get_json()["items"]
    assert len(listed) == 2
