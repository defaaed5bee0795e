import json
import time
from dataclasses import dataclass, replace
from urllib.parse import urlsplit

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from app.pantbrev import auth as auth_module
from app.pantbrev import create_app
from app.pantbrev.errors import AuthError
from app.pantbrev.models import User
from app.pantbrev.supabase_auth import AuthSession

BANK_USER = User(
    id="u-bank",
    email="bank@example.com",
    user_name="Bank User",
    role="bank_user",
    bank_id="1",
    bank_name="Nordbanken",
)
COOP_ADMIN = User(id="u-coop", email="coop@example.com", user_name="Coop Admin", role="cooperative_admin")
ACCOUNTANT = User(id="u-acc", email="acc@example.com", user_name="Accountant", role="accounting_firm")

CSRF = "test-csrf-token"


def make_response(status: int = 200, body=None, headers=None, url: str = "http://backend.test/") -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r._content = b"" if body is None else json.dumps(body).encode()
    r.headers = CaseInsensitiveDict(headers or {})
    if body is not None:
        r.headers.setdefault("Content-Type", "application/json")
    r.reason = "OK" if status < 400 else "Error"
    r.url = url
    return r


@dataclass
class Call:
    method: str
    path: str
    params: dict
    json: object
    headers: dict


class FakeHttp:
    """Stands in for requests.Session; routes are keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.calls: list[Call] = []

    def add(self, method, path, status=200, body=None, headers=None):
        self.routes[(method, path)] = (status, body, headers)

    def fail(self, method, path, exc):
        self.routes[(method, path)] = exc

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append(Call(method, path, dict(params or {}), json, dict(headers or {})))
        route = self.routes.get((method, path))
        if route is None:
            return make_response(404, {"detail": "Not found"}, url=url)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(method, path, params, json)
        status, body, hdrs = route
        return make_response(status, body, hdrs, url=url)

    def count(self, method, path):
        return sum(1 for c in self.calls if c.method == method and c.path == path)

    def last(self, method, path) -> Call:
        return [c for c in self.calls if c.method == method and c.path == path][-1]


class FakeAuth:
    def __init__(self):
        self.users: dict[str, tuple[str, User]] = {}
        self.ttl = 3600
        self.refresh_fails = False
        self.refresh_calls = 0
        self.signed_up = []
        self.signed_out = []
        self.updates = []
        self.resets = []
        self.reset_fails = False
        self._n = 0

    def add_user(self, user: User, password: str = "pw") -> None:
        self.users[user.email] = (password, user)

    def session_for(self, user: User, *, expires_in: int | None = None) -> AuthSession:
        self._n += 1
        return AuthSession(
            access_token=f"access-{user.id}-{self._n}",
            refresh_token=f"refresh-{user.id}",
            expires_at=int(time.time()) + (self.ttl if expires_in is None else expires_in),
            user=user,
        )

    def sign_in(self, email, password):
        found = self.users.get(email)
        if not found or found[0] != password:
            raise AuthError("Invalid login credentials")
        return self.session_for(found[1])

    def sign_up(self, email, password, metadata):
        if email in self.users:
            raise AuthError("User already registered")
        self.signed_up.append((email, metadata))

    def send_password_reset(self, email):
        if self.reset_fails:
            raise AuthError("Email rate limit exceeded")
        self.resets.append(email)

    def refresh(self, refresh_token):
        self.refresh_calls += 1
        if self.refresh_fails:
            raise AuthError("Failed to refresh session: invalid refresh token")
        for _, user in self.users.values():
            if refresh_token == f"refresh-{user.id}":
                return self.session_for(user)
        raise AuthError("Failed to refresh session: unknown token")

    def sign_out(self, auth_session):
        self.signed_out.append(auth_session.user.id)

    def update_user(self, auth_session, *, email, metadata):
        self.updates.append((email, metadata))
        return replace(
            auth_session.user,
            email=email or auth_session.user.email,
            first_name=metadata.get("first_name"),
            last_name=metadata.get("last_name"),
            phone=metadata.get("phone"),
        )


@pytest.fixture()
def app(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("BACKEND_URL", "http://backend.test")
    for k in ("SUPABASE_URL", "SUPABASE_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    auth_module._login_attempts.clear()

    http = FakeHttp()
    auth = FakeAuth()
    for u in (BANK_USER, COOP_ADMIN, ACCOUNTANT):
        auth.add_user(u)
    app.extensions["backend_client"] = replace(app.extensions["backend_client"], http=http)
    app.extensions["auth_provider"] = auth
    return app


@pytest.fixture()
def http(app) -> FakeHttp:
    return app.extensions["backend_client"].http


@pytest.fixture()
def auth(app) -> FakeAuth:
    return app.extensions["auth_provider"]


@pytest.fixture()
def client(app):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return c


@pytest.fixture()
def second_worker(app):
    """Another app instance (as in a second gunicorn worker) with its own response cache."""
    other = create_app()
    other.config["TESTING"] = True
    other.extensions["backend_client"] = replace(other.extensions["backend_client"], http=app.extensions["backend_client"].http)
    other.extensions["auth_provider"] = app.extensions["auth_provider"]
    assert other.extensions["response_cache"] is not app.extensions["response_cache"]
    return other


def login(client, email="bank@example.com", password="pw"):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


def deed_json(deed_id=1, status="CREATED", **overrides):
    d = {
        "id": deed_id,
        "credit_number": f"CR-{deed_id}",
        "credit_numbers": [f"CR-{deed_id}"],
        "housing_cooperative_id": 7,
        "apartment_number": "1101",
        "apartment_address": "Storgatan 1",
        "apartment_postal_code": "11122",
        "apartment_city": "Stockholm",
        "status": status,
        "created_at": "2024-03-01T10:00:00Z",
        "borrowers": [
            {"id": 1, "name": "Anna Svensson", "person_number": "198001011234", "email": "anna@example.com", "ownership_percentage": 100}
        ],
        "housing_cooperative": {
            "id": 7,
            "name": "BRF Eken",
            "organisation_number": "7696001234",
            "address": "Storgatan 1",
            "postal_code": "11122",
            "city": "Stockholm",
        },
        "housing_cooperative_signers": [],
    }
    d.update(overrides)
    return d


def sign_in_as(client, auth, user=BANK_USER, *, expires_in=None) -> AuthSession:
    """Put a session straight into the cookie, skipping the login form."""
    s = auth.session_for(user, expires_in=expires_in)
    with client.session_transaction() as sess:
        sess["auth"] = s.to_dict()
    return s


def carry_session(src, dst):
    """Copy the session cookie so the next request from `dst` is the same browser."""
    dst.set_cookie("session", src.get_cookie("session").value)
