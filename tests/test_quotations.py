import pytest

from courier_billing.services.quotations import _best_key, find_best_matching_key, quotation_grid

from conftest import make_party


RATES = {
    "Mumbai": {"100gm": "30", "500 gm": "55", "Add_1000 gm": "90", "1kg": "80"},
    "Gujarat": {"250 g": "40"},
}


@pytest.mark.parametrize(
    "region, label, expected",
    [
        ("Mumbai", "100gm", "30"),
        ("Mumbai", "100 gm", "30"),
        ("Mumbai", "500 gm", "55"),
        ("Mumbai", "1 kg", "80"),
        ("Gujarat", "250g", "40"),
        ("Mumbai", "Add_1000 gm", "90"),
        ("Mumbai", "2000 gm", ""),
        ("Kerala", "100gm", ""),
        ("Mumbai", "", ""),
    ],
)
def test_find_best_matching_key_returns_the_price(region, label, expected):
    assert find_best_matching_key(RATES, region, label) == expected


def test_number_fallback_takes_the_first_key_containing_the_number():
    rates = {"R": {"Add_1000 gm": "90", "1000 gm": "70"}}
    assert _best_key(rates, "R", "1000 grams") == "Add_1000 gm"
    assert find_best_matching_key(rates, "R", "1000 grams") == "90"


def test_upper_case_region_matches_both_spellings():
    assert find_best_matching_key({"MUMBAI": {"100gm": "30"}}, "MUMBAI", "100 gm") == "30"
    assert find_best_matching_key({"MUMBAI": {"100 g": "25"}}, "MUMBAI", "100 gm") == "25"
    assert find_best_matching_key({"MUMBAI": {"100 g": "25"}}, "MUMBAI", "750 gm") == ""


def test_blank_cell_reads_as_empty():
    assert find_best_matching_key({"R": {"100gm": None}}, "R", "100gm") == ""


def test_grid():
    grid = quotation_grid(RATES, ["Mumbai", "Gujarat", "Kerala"])
    assert grid["columns"] == ["100gm", "500 gm", "Add_1000 gm", "1kg", "250 g"]
    assert grid["rows"][0]["cells"][:2] == ["30", "55"]
    assert grid["rows"][1] == {"region": "Gujarat", "cells": ["", "", "", "", "40"]}
    assert grid["rows"][2]["cells"] == [""] * 5


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------
def _url(party_id):
    return f"/api/parties/{party_id}/quotations"


def test_save_replaces_the_whole_sheet(client, operator_headers, party_id):
    first = {"package_type": "document", "rates": {"Mumbai": {"100 gm": "30", "500 gm": "55"}}}
    second = {"packageType": "DOCUMENT", "rates": {"Mumbai": {"100 gm": 35}}}

    assert client.post(_url(party_id), json=first, headers=operator_headers).status_code == 200
    assert client.post(_url(party_id), json=second, headers=operator_headers).status_code == 200

    items = client.get(_url(party_id), headers=operator_headers).get_json()["items"]
    assert len(items) == 1
    assert items[0]["package_type"] == "DOCUMENT"
    assert items[0]["rates"] == {"Mumbai": {"100 gm": "35"}}

    one = client.get(f"{_url(party_id)}?package_type=document", headers=operator_headers).get_json()
    assert one == {"package_type": "DOCUMENT", "rates": {"Mumbai": {"100 gm": "35"}}}
    empty = client.get(f"{_url(party_id)}?package_type=NON_DOCUMENT", headers=operator_headers).get_json()
    assert empty["rates"] == {}


def test_save_rejects_unknown_package_type(client, operator_headers, party_id):
    response = client.post(_url(party_id), json={"package_type": "PALLET", "rates": {}}, headers=operator_headers)
    assert response.status_code == 400
    assert response.get_json()["fields"] == ["package_type"]


def test_delete_needs_package_type(client, operator_headers, party_id):
    client.post(_url(party_id), json={"package_type": "DOCUMENT", "rates": {}}, headers=operator_headers)

    assert client.delete(_url(party_id), headers=operator_headers).status_code == 400
    assert client.delete(f"{_url(party_id)}?package_type=NON_DOCUMENT", headers=operator_headers).status_code == 404
    assert client.delete(f"{_url(party_id)}?package_type=DOCUMENT", headers=operator_headers).status_code == 200
    assert client.get(_url(party_id), headers=operator_headers).get_json()["items"] == []


def test_copy_to_other_parties(app, client, operator_headers, party_id):
    target = make_party(app, name="Beta Logistics", phone="9000000001")
    client.post(_url(party_id), json={"package_type": "DOCUMENT", "rates": {"Mumbai": {"100 gm": "30"}}},
                headers=operator_headers)

    response = client.post(
        "/api/parties/quotations/copy",
        json={"sourcePartyId": party_id, "targetPartyIds": [target, party_id, 777]},
        headers=operator_headers,
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["copiedCount"] == 1
    assert [r["success"] for r in body["results"]] == [True, False, False]
    copied = client.get(_url(target), headers=operator_headers).get_json()["items"]
    assert copied[0]["rates"] == {"Mumbai": {"100 gm": "30"}}


def test_copy_from_party_without_sheets_is_not_found(app, client, operator_headers, party_id):
    target = make_party(app, name="Beta Logistics", phone="9000000001")
    response = client.post(
        "/api/parties/quotations/copy",
        json={"sourcePartyId": party_id, "targetPartyIds": [target]},
        headers=operator_headers,
    )
    assert response.status_code == 404


def test_print_sheet(client, operator_headers, party_id):
    client.post(_url(party_id), json={"package_type": "DOCUMENT", "rates": {"Mumbai": {"100gm": "30"}}},
                headers=operator_headers)

    response = client.get(f"{_url(party_id)}/print?package_type=DOCUMENT", headers=operator_headers)

    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert "<h3>DOCUMENT</h3>" in html
    assert "<td>30</td>" in html
    assert "GST extra as applicable." in html


def test_quotation_defaults_and_resolve(app, client, admin_headers, operator_headers, catalog):
    regions = client.get("/api/masters/regions", headers=operator_headers).get_json()["items"]
    region_id = regions[0]["id"]
    payload = {
        "region_id": region_id,
        "package_type": "DOCUMENT",
        "slab_id": catalog["weights"]["100-250g"],
        "base_rate": "42",
        "extra_per_1000g": "15",
    }

    assert client.post("/api/quotations/defaults", json=payload, headers=operator_headers).status_code == 403
    assert client.post("/api/quotations/defaults", json=payload, headers=admin_headers).status_code == 201

    resolved = client.get(
        "/api/quotations/resolve?package_type=DOCUMENT&weight_grams=100", headers=operator_headers
    ).get_json()
    assert resolved["slabName"] == "100-250g"
    assert resolved["baseRate"] == "42.00"

    unpriced = client.get(
        "/api/quotations/resolve?package_type=DOCUMENT&weight_grams=50", headers=operator_headers
    ).get_json()
    assert unpriced["baseRate"] == "0"

    too_heavy = client.get("/api/quotations/resolve?package_type=DOCUMENT&weight_grams=5000", headers=operator_headers)
    assert too_heavy.status_code == 404
