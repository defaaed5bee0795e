"""Tests for the housing cooperatives module."""
import pytest

from app.pantbrev.modules.housing_cooperatives.service import (
    build_cooperative_payload,
    delete_error_message,
    update_body,
    validate_cooperative_payload,
)
from conftest import BANK_USER, COOP_ADMIN, CSRF, sign_in_as

COOP = {
    "id": 7,
    "name": "BRF Eken",
    "organisation_number": "7696001234",
    "address": "Storgatan 1",
    "postal_code": "11122",
    "city": "Stockholm",
    "administrator_name": "Karin Ek",
    "administrator_email": "karin@brfeken.se",
    "administrator_person_number": "197505051234",
}


def _form(**extra):
    data = {"csrf_token": CSRF, **COOP}
    data.pop("id")
    data.update(extra)
    return data


class TestValidation:
    def test_valid(self):
        assert validate_cooperative_payload(build_cooperative_payload(_form()), is_new=True) == []

    def test_organisation_number_only_required_on_create(self):
        p = build_cooperative_payload(_form(organisation_number=""))
        assert "Organisation number is required." in validate_cooperative_payload(p, is_new=True)
        assert validate_cooperative_payload(p, is_new=False) == []

    def test_administrator_fields(self):
        p = build_cooperative_payload(_form(administrator_email="nope", administrator_person_number="123"))
        errors = validate_cooperative_payload(p, is_new=True)
        assert "A valid administrator email is required." in errors
        assert "Administrator person number must be 12 digits." in errors

    def test_update_body_never_carries_organisation_number(self):
        body = update_body(build_cooperative_payload(_form()))
        assert "organisation_number" not in body
        assert body["administrator_company"] is None

    @pytest.mark.parametrize(
        "status,expected",
        [
            (409, "active mortgage deeds"),
            (404, "not found"),
            (403, "do not have permission"),
            (500, "Failed to delete housing cooperative: boom"),
        ],
    )
    def test_delete_messages(self, status, expected):
        assert expected in delete_error_message(status, "boom")


def test_list_requires_auth(client):
    assert client.get("/cooperatives").status_code == 302


def test_list_with_search_and_page_size(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("GET", "/api/housing-cooperatives", body=[COOP], headers={"X-Total-Count": "25", "X-Total-Pages": "2", "X-Page-Size": "20"})
    r = client.get("/cooperatives?q=Eken&page_size=20")
    assert r.status_code == 200
    assert b"BRF Eken" in r.data
    assert b"Page 1 of 2" in r.data
    assert http.last("GET", "/api/housing-cooperatives").params == {"page": 1, "page_size": 20, "search": "Eken"}


def test_unsupported_page_size_falls_back(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("GET", "/api/housing-cooperatives", body=[])
    client.get("/cooperatives?page_size=500")
    assert http.last("GET", "/api/housing-cooperatives").params["page_size"] == 10


def test_bank_user_cannot_manage(client, auth):
    sign_in_as(client, auth, BANK_USER)
    assert client.get("/cooperatives/new").status_code == 403


def test_create(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("POST", "/api/housing-cooperatives", status=201, body=COOP)
    r = client.post("/cooperatives/new", data=_form(), follow_redirects=False)
    assert r.status_code == 302
    body = http.last("POST", "/api/housing-cooperatives").json
    assert body["created_by"] == COOP_ADMIN.id
    assert body["organisation_number"] == "7696001234"


def test_create_shows_backend_error(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("POST", "/api/housing-cooperatives", status=400, body={"detail": "Organisation number already exists"})
    r = client.post("/cooperatives/new", data=_form())
    assert r.status_code == 400
    assert b"Organisation number already exists" in r.data


def test_edit_keeps_organisation_number(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("GET", "/api/housing-cooperatives/7696001234", body=COOP)
    http.add("PUT", "/api/housing-cooperatives/7696001234", body=COOP)
    r = client.post("/cooperatives/7696001234/edit", data=_form(name="BRF Eken 2", organisation_number="0000000000"))
    assert r.status_code == 302
    put = http.last("PUT", "/api/housing-cooperatives/7696001234")
    assert put.json["name"] == "BRF Eken 2"
    assert "organisation_number" not in put.json


def test_delete_with_active_deeds(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("DELETE", "/api/housing-cooperatives/7696001234", status=409, body={"detail": "Conflict"})
    http.add("GET", "/api/housing-cooperatives", body=[COOP])
    r = client.post("/cooperatives/7696001234/delete", data={"csrf_token": CSRF}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Cannot delete a housing cooperative that has active mortgage deeds." in r.data


def test_delete_ok_refreshes_list(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("GET", "/api/housing-cooperatives", body=[COOP])
    client.get("/cooperatives")
    http.add("DELETE", "/api/housing-cooperatives/7696001234", status=204)
    http.add("GET", "/api/housing-cooperatives", body=[])
    r = client.post("/cooperatives/7696001234/delete", data={"csrf_token": CSRF}, follow_redirects=True)
    assert b"Housing cooperative deleted." in r.data
    assert b"BRF Eken" not in r.data


def test_setup_cooperative(client, auth, http):
    sign_in_as(client, auth, COOP_ADMIN)
    http.add("POST", "/api/housing-cooperatives", status=201, body={"id": 8})
    r = client.post(
        "/setup-cooperative",
        data={
            "csrf_token": CSRF,
            "organisation_number": "7696009999",
            "name": "BRF Björken",
            "address": "Lillgatan 2",
            "city": "Uppsala",
            "postal_code": "75310",
        },
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")
    assert http.last("POST", "/api/housing-cooperatives").json["admin_id"] == COOP_ADMIN.id


def test_setup_requires_fields(client, auth):
    sign_in_as(client, auth, COOP_ADMIN)
    r = client.post("/setup-cooperative", data={"csrf_token": CSRF, "name": "BRF"})
    assert r.status_code == 400
    assert b"Organisation number is required." in r.data
