from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import requests

from app.pantbrev.cache import ResponseCache, make_key
from app.pantbrev.constants import COOPERATIVES_PATH, DEEDS_PATH, SIGNING_PATH, SORT_FIELDS, STATISTICS_PATH
from app.pantbrev.errors import ApiError
from app.pantbrev.models import AuditLogEntry, HousingCooperative, MortgageDeed, Pagination, StatsSummary

if TYPE_CHECKING:
    from app.pantbrev.fetcher import CancelToken

logger = logging.getLogger(__name__)

DASHBOARD_STATS_PATHS = {
    "bank_user": f"{STATISTICS_PATH}/bank-dashboard",
    "cooperative_admin": f"{STATISTICS_PATH}/cooperative-dashboard",
    "accounting_firm": f"{STATISTICS_PATH}/accounting-dashboard",
}


@dataclass(frozen=True)
class ApiResponse:
    data: Any
    headers: dict[str, str]


@dataclass
class DeedFilters:
    deed_status: str | None = None
    housing_cooperative_id: int | None = None
    created_after: str | None = None
    created_before: str | None = None
    borrower_person_number: str | None = None
    housing_cooperative_name: str | None = None
    apartment_number: str | None = None
    credit_numbers: list[str] | None = None
    sort_by: str | None = "created_at"
    sort_order: str | None = "desc"
    page: int = 1
    page_size: int = 10

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if value is None or value == "":
                continue
            if isinstance(value, (list, tuple)):
                if not value:
                    continue
                value = ",".join(str(v) for v in value)
            params[name] = value
        if params.get("sort_by") not in SORT_FIELDS:
            params.pop("sort_by", None)
        if params.get("sort_order") not in ("asc", "desc"):
            params.pop("sort_order", None)
        return params


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            return detail
    return f"Request failed: {resp.reason or resp.status_code}"


@dataclass(frozen=True)
class BackendClient:
    base_url: str
    timeout_seconds: float = 10.0
    cache: ResponseCache | None = None
    token: str | None = None
    scope: str = ""
    http: requests.Session = field(default_factory=requests.Session, repr=False, compare=False)
    on_mutation: Callable[[], None] | None = field(default=None, repr=False, compare=False)

    def with_token(self, token: str | None, *, scope: str = "") -> "BackendClient":
        return replace(self, token=token, scope=scope)

    def _auth_header(self) -> str:
        return f"Bearer {self.token}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        authenticated: bool = True,
        cancel: "CancelToken | None" = None,
    ) -> ApiResponse:
        if authenticated and not self.token:
            raise ApiError(401, "Unauthorized: No session found")
        if cancel is not None:
            cancel.raise_if_cancelled()

        url = self.base_url.rstrip("/") + path
        headers = {"Accept": "application/json"}
        if authenticated:
            headers["Authorization"] = self._auth_header()

        try:
            resp = self.http.request(
                method,
                url,
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                json=json_body,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as e:
            raise ApiError(504, f"Request timed out after {self.timeout_seconds:g}s ({path})") from e
        except requests.ConnectionError as e:
            raise ApiError(503, f"Backend unreachable ({path})") from e
        except requests.RequestException as e:
            raise ApiError(500, f"Request failed ({path}): {e}") from e

        if cancel is not None:
            cancel.raise_if_cancelled()

        if not resp.ok:
            logger.info("Backend %s %s -> %s", method, path, resp.status_code)
            raise ApiError(resp.status_code, _error_message(resp))

        if resp.status_code == 204 or not resp.content:
            data = None
        else:
            try:
                data = resp.json()
            except ValueError as e:
                raise ApiError(502, f"Invalid JSON from backend ({path})") from e
        return ApiResponse(data=data, headers=dict(resp.headers))

    def get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancel: "CancelToken | None" = None,
        use_cache: bool = True,
    ) -> ApiResponse:
        if self.cache is None or not use_cache:
            return self.request("GET", path, params=params, cancel=cancel)
        key = make_key(path, params, scope=self.scope)
        return self.cache.get_or_fetch(key, lambda: self.request("GET", path, params=params, cancel=cancel))

    def _mutate(self, method: str, path: str, *, json_body: Any = None, invalidates: tuple[str, ...] = ()) -> Any:
        resp = self.request(method, path, json_body=json_body)
        self._after_mutation(invalidates)
        return resp.data

    def _after_mutation(self, invalidates: tuple[str, ...]) -> None:
        if self.cache is not None:
            for prefix in invalidates:
                self.cache.invalidate(prefix)
        if self.on_mutation is not None:
            self.on_mutation()

    # ---------- Mortgage deeds ----------
    def list_mortgage_deeds(
        self, filters: DeedFilters | None = None, *, cancel: "CancelToken | None" = None
    ) -> tuple[list[MortgageDeed], Pagination]:
        params = (filters or DeedFilters()).to_params()
        resp = self.get(DEEDS_PATH, params=params, cancel=cancel)
        deeds = [MortgageDeed.from_dict(d) for d in resp.data or []]
        return deeds, Pagination.from_headers(resp.headers)

    def get_mortgage_deed(self, deed_id: int, *, cancel: "CancelToken | None" = None) -> MortgageDeed:
        resp = self.get(f"{DEEDS_PATH}/{int(deed_id)}", cancel=cancel)
        if not isinstance(resp.data, dict):
            raise ApiError(404, "Mortgage deed not found")
        return MortgageDeed.from_dict(resp.data)

    def create_mortgage_deed(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._mutate("POST", f"{DEEDS_PATH}/create", json_body=payload, invalidates=(DEEDS_PATH, STATISTICS_PATH))
        return data if isinstance(data, dict) else {}

    def update_mortgage_deed(self, deed_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._mutate(
            "PUT", f"{DEEDS_PATH}/{int(deed_id)}", json_body=payload, invalidates=(DEEDS_PATH, STATISTICS_PATH)
        )
        return data if isinstance(data, dict) else {}

    def delete_mortgage_deed(self, deed_id: int) -> None:
        self._mutate("DELETE", f"{DEEDS_PATH}/{int(deed_id)}", invalidates=(DEEDS_PATH, STATISTICS_PATH))

    def send_for_signing(self, deed_id: int) -> dict[str, Any]:
        data = self._mutate(
            "POST",
            f"{DEEDS_PATH}/deeds/{int(deed_id)}/send-for-signing",
            invalidates=(DEEDS_PATH, STATISTICS_PATH),
        )
        return data if isinstance(data, dict) else {}

    def get_audit_logs(self, deed_id: int, *, cancel: "CancelToken | None" = None) -> list[AuditLogEntry]:
        resp = self.get(f"{DEEDS_PATH}/{int(deed_id)}/audit-logs", cancel=cancel)
        return [AuditLogEntry.from_dict(e) for e in resp.data or []]

    # ---------- Housing cooperatives ----------
    def list_housing_cooperatives(
        self,
        page: int = 1,
        page_size: int = 10,
        *,
        search: str | None = None,
        cancel: "CancelToken | None" = None,
    ) -> tuple[list[HousingCooperative], Pagination]:
        params = {"page": page, "page_size": page_size, "search": search or None}
        resp = self.get(COOPERATIVES_PATH, params=params, cancel=cancel)
        coops = [HousingCooperative.from_dict(c) for c in resp.data or []]
        return coops, Pagination.from_headers(resp.headers)

    def get_housing_cooperative(self, organisation_number: str, *, cancel: "CancelToken | None" = None) -> HousingCooperative:
        resp = self.get(f"{COOPERATIVES_PATH}/{urllib.parse.quote(str(organisation_number))}", cancel=cancel)
        if not isinstance(resp.data, dict):
            raise ApiError(404, "Housing cooperative not found")
        return HousingCooperative.from_dict(resp.data)

    def create_housing_cooperative(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._mutate("POST", COOPERATIVES_PATH, json_body=payload, invalidates=(COOPERATIVES_PATH, STATISTICS_PATH))
        return data if isinstance(data, dict) else {}

    def update_housing_cooperative(self, organisation_number: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._mutate(
            "PUT",
            f"{COOPERATIVES_PATH}/{urllib.parse.quote(str(organisation_number))}",
            json_body=payload,
            invalidates=(COOPERATIVES_PATH, DEEDS_PATH),
        )
        return data if isinstance(data, dict) else {}

    def delete_housing_cooperative(self, organisation_number: str) -> None:
        self._mutate(
            "DELETE",
            f"{COOPERATIVES_PATH}/{urllib.parse.quote(str(organisation_number))}",
            invalidates=(COOPERATIVES_PATH, STATISTICS_PATH),
        )

    # ---------- Statistics ----------
    def get_statistics_summary(self, *, cancel: "CancelToken | None" = None) -> StatsSummary:
        resp = self.get(f"{STATISTICS_PATH}/summary", cancel=cancel)
        return StatsSummary.from_dict(resp.data or {})

    def get_dashboard_stats(self, role: str | None, *, cancel: "CancelToken | None" = None) -> dict[str, Any]:
        path = DASHBOARD_STATS_PATHS.get(role or "")
        if path is None:
            return {}
        resp = self.get(path, cancel=cancel)
        return resp.data if isinstance(resp.data, dict) else {}

    # ---------- Public signing ----------
    def verify_signing_token(self, token: str) -> dict[str, Any]:
        try:
            resp = self.request(
                "GET", f"{SIGNING_PATH}/verify/{urllib.parse.quote(token)}", authenticated=False
            )
        except ApiError as e:
            if e.status in (400, 404, 410):
                raise ApiError(e.status, "Invalid or expired signing link") from e
            raise
        return resp.data if isinstance(resp.data, dict) else {}

    def sign_deed(self, token: str) -> dict[str, Any]:
        resp = self.request(
            "POST",
            f"{SIGNING_PATH}/sign",
            json_body={"token": token, "signature_confirmed": True},
            authenticated=False,
        )
        self._after_mutation((DEEDS_PATH, STATISTICS_PATH))
        return resp.data if isinstance(resp.data, dict) else {}


CACHE_GENERATION_KEY = "cache_gen"


def _bump_cache_generation() -> None:
    from flask import session

    session[CACHE_GENERATION_KEY] = int(session.get(CACHE_GENERATION_KEY) or 0) + 1


def backend_client() -> BackendClient:
    """
    Client bound to the current request's session token. Use inside request
    handlers, after the session gate has run.

    The cache scope carries a generation counter stored in the session cookie.
    A mutation bumps it, so the user's next request misses every entry cached
    before the write, whichever worker process serves it. Invalidation inside
    this process still covers other users.
    """
    from flask import current_app, g, session

    client: BackendClient = current_app.extensions["backend_client"]
    auth_session = getattr(g, "auth_session", None)
    if auth_session is None:
        return client
    user = getattr(g, "current_user", None)
    generation = int(session.get(CACHE_GENERATION_KEY) or 0)
    scope = f"{user.id if user else ''}:{generation}"
    return replace(
        client.with_token(auth_session.access_token, scope=scope),
        on_mutation=_bump_cache_generation,
    )
