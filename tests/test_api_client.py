"""Tests for the backend API client."""
import threading
from dataclasses import replace

import pytest
import requests

from app.pantbrev.api_client import BackendClient, DeedFilters
from app.pantbrev.cache import ResponseCache
from app.pantbrev.errors import ApiError, RequestCancelled
from app.pantbrev.fetcher import CancelToken
from conftest import FakeHttp, deed_json, make_response


@pytest.fixture()
def http():
    return FakeHttp()


@pytest.fixture()
def api(http):
    return BackendClient(base_url="http://backend.test", cache=ResponseCache(), http=http).with_token("tok", scope="u1")


class TestRequest:
    def test_no_token_is_unauthorized_without_network(self, http):
        client = BackendClient(base_url="http://backend.test", http=http)
        with pytest.raises(ApiError) as exc:
            client.get_statistics_summary()
        assert exc.value.status == 401
        assert http.calls == []

    def test_bearer_token_attached(self, api, http):
        http.add("GET", "/api/statistics/summary", body={})
        api.get_statistics_summary()
        assert http.last("GET", "/api/statistics/summary").headers["Authorization"] == "Bearer tok"

    def test_error_detail_becomes_message(self, api, http):
        http.add("GET", "/api/mortgage-deeds/9", status=404, body={"detail": "Mortgage deed not found"})
        with pytest.raises(ApiError) as exc:
            api.get_mortgage_deed(9)
        assert exc.value.status == 404
        assert exc.value.message == "Mortgage deed not found"

    def test_timeout_maps_to_504(self, api, http):
        http.fail("GET", "/api/statistics/summary", requests.Timeout("slow"))
        with pytest.raises(ApiError) as exc:
            api.get_statistics_summary()
        assert exc.value.status == 504

    def test_connection_error_maps_to_503(self, api, http):
        http.fail("GET", "/api/statistics/summary", requests.ConnectionError("refused"))
        with pytest.raises(ApiError) as exc:
            api.get_statistics_summary()
        assert exc.value.status == 503

    def test_cancelled_before_send(self, api, http):
        token = CancelToken()
        token.cancel()
        with pytest.raises(RequestCancelled):
            api.get_statistics_summary(cancel=token)
        assert http.calls == []


class TestMortgageDeeds:
    def test_list_sends_filters_and_reads_pagination(self, api, http):
        http.add(
            "GET",
            "/api/mortgage-deeds",
            body=[deed_json(1), deed_json(2, status="COMPLETED")],
            headers={"X-Total-Count": "12", "X-Total-Pages": "2", "X-Current-Page": "1", "X-Page-Size": "10"},
        )
        deeds, pagination = api.list_mortgage_deeds(
            DeedFilters(deed_status="COMPLETED", credit_numbers=["A1", "B2"], sort_by="bogus")
        )
        params = http.last("GET", "/api/mortgage-deeds").params
        assert params["deed_status"] == "COMPLETED"
        assert params["credit_numbers"] == "A1,B2"
        assert "sort_by" not in params
        assert [d.id for d in deeds] == [1, 2]
        assert deeds[1].status_label == "Slutförd"
        assert pagination.total_count == 12
        assert pagination.has_next

    def test_missing_pagination_headers_default(self, api, http):
        http.add("GET", "/api/mortgage-deeds", body=[])
        _, pagination = api.list_mortgage_deeds()
        assert (pagination.total_count, pagination.total_pages, pagination.current_page, pagination.page_size) == (0, 0, 1, 10)

    def test_reads_are_cached(self, api, http):
        http.add("GET", "/api/mortgage-deeds/1", body=deed_json(1))
        api.get_mortgage_deed(1)
        api.get_mortgage_deed(1)
        assert http.count("GET", "/api/mortgage-deeds/1") == 1

    def test_cache_is_per_user(self, api, http):
        http.add("GET", "/api/mortgage-deeds/1", body=deed_json(1))
        api.get_mortgage_deed(1)
        api.with_token("other", scope="u2").get_mortgage_deed(1)
        assert http.count("GET", "/api/mortgage-deeds/1") == 2

    def test_mutation_invalidates_deed_and_statistics_reads(self, api, http):
        http.add("GET", "/api/mortgage-deeds/1", body=deed_json(1))
        http.add("GET", "/api/statistics/summary", body={"total_deeds": 1})
        http.add("PUT", "/api/mortgage-deeds/1", body={"id": 1})
        api.get_mortgage_deed(1)
        api.get_statistics_summary()

        api.update_mortgage_deed(1, {"notes": "x"})
        api.get_mortgage_deed(1)
        api.get_statistics_summary()
        assert http.count("GET", "/api/mortgage-deeds/1") == 2
        assert http.count("GET", "/api/statistics/summary") == 2

    def test_create_posts_to_create_endpoint(self, api, http):
        http.add("POST", "/api/mortgage-deeds/create", status=201, body={"deed_id": 5})
        assert api.create_mortgage_deed({"credit_number": "A"}) == {"deed_id": 5}

    def test_delete_accepts_no_content(self, api, http):
        http.add("DELETE", "/api/mortgage-deeds/3", status=204)
        assert api.delete_mortgage_deed(3) is None

    def test_send_for_signing_path(self, api, http):
        http.add("POST", "/api/mortgage-deeds/deeds/3/send-for-signing", body={"message": "sent"})
        assert api.send_for_signing(3) == {"message": "sent"}

    def test_audit_logs(self, api, http):
        http.add(
            "GET",
            "/api/mortgage-deeds/3/audit-logs",
            body=[{"id": 1, "deed_id": 3, "action_type": "BORROWER_REMOVED", "description": "x", "timestamp": "2024-01-01T00:00:00"}],
        )
        logs = api.get_audit_logs(3)
        assert logs[0].is_destructive


class TestHousingCooperatives:
    def test_list_with_search(self, api, http):
        http.add("GET", "/api/housing-cooperatives", body=[{"id": 1, "name": "BRF Eken", "organisation_number": "1"}])
        coops, _ = api.list_housing_cooperatives(2, 20, search="Eken")
        assert coops[0].name == "BRF Eken"
        assert http.last("GET", "/api/housing-cooperatives").params == {"page": 2, "page_size": 20, "search": "Eken"}

    def test_update_invalidates_deeds_too(self, api, http):
        http.add("GET", "/api/mortgage-deeds", body=[])
        http.add("PUT", "/api/housing-cooperatives/769600-1234", body={})
        api.list_mortgage_deeds()
        api.update_housing_cooperative("769600-1234", {"name": "New"})
        api.list_mortgage_deeds()
        assert http.count("GET", "/api/mortgage-deeds") == 2


class TestSigning:
    def test_verify_without_session(self, http):
        client = BackendClient(base_url="http://backend.test", http=http)
        http.add("GET", "/api/signing/verify/abc", body={"deed": {"credit_number": "CR-1"}})
        assert client.verify_signing_token("abc")["deed"]["credit_number"] == "CR-1"
        assert "Authorization" not in http.last("GET", "/api/signing/verify/abc").headers

    def test_verify_invalid_token_message(self, http):
        client = BackendClient(base_url="http://backend.test", http=http)
        http.add("GET", "/api/signing/verify/bad", status=400, body={"detail": "Token expired"})
        with pytest.raises(ApiError) as exc:
            client.verify_signing_token("bad")
        assert exc.value.message == "Invalid or expired signing link"

    def test_sign_confirms_signature(self, http):
        client = BackendClient(base_url="http://backend.test", http=http)
        http.add("POST", "/api/signing/sign", body={"message": "ok"})
        client.sign_deed("abc")
        assert http.last("POST", "/api/signing/sign").json == {"token": "abc", "signature_confirmed": True}


class TestCacheConsistency:
    def test_read_overlapping_an_update_does_not_stick(self, api, http):
        in_flight = threading.Event()
        release = threading.Event()
        status = {"value": "CREATED"}

        def list_route(method, path, params, json):
            body = [deed_json(1, status["value"])]
            if not in_flight.is_set():
                in_flight.set()
                release.wait(5)
            return make_response(200, body)

        http.routes[("GET", "/api/mortgage-deeds")] = list_route
        http.add("PUT", "/api/mortgage-deeds/1", body={"id": 1})

        reader = threading.Thread(target=api.list_mortgage_deeds)
        reader.start()
        assert in_flight.wait(5)
        status["value"] = "PENDING_BORROWER_SIGNATURE"
        api.update_mortgage_deed(1, {"notes": "x"})
        release.set()
        reader.join(5)

        deeds, _ = api.list_mortgage_deeds()
        assert deeds[0].status == "PENDING_BORROWER_SIGNATURE"

    def test_mutations_notify_hook(self, http):
        bumps = []
        api = replace(
            BackendClient(base_url="http://backend.test", cache=ResponseCache(), http=http).with_token("tok", scope="u1"),
            on_mutation=lambda: bumps.append(1),
        )
        http.add("DELETE", "/api/mortgage-deeds/1", status=204)
        http.add("POST", "/api/signing/sign", body={})
        api.delete_mortgage_deed(1)
        api.sign_deed("tok123")
        assert len(bumps) == 2

    def test_failed_mutation_does_not_notify(self, http):
        bumps = []
        api = replace(
            BackendClient(base_url="http://backend.test", http=http).with_token("tok"),
            on_mutation=lambda: bumps.append(1),
        )
        http.add("PUT", "/api/mortgage-deeds/1", status=400, body={"detail": "bad"})
        with pytest.raises(ApiError):
            api.update_mortgage_deed(1, {})
        assert bumps == []
