from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.pantbrev.audit import record_event
from app.pantbrev.constants import PUBLIC_PATHS, UNGATED_PREFIXES
from app.pantbrev.errors import AuthError
from app.pantbrev.supabase_auth import AuthSession, SupabaseAuth
from app.pantbrev.utils import is_valid_email, safe_next_url

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

AUTH_SESSION_KEY = "auth"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def auth_provider() -> SupabaseAuth:
    return current_app.extensions["auth_provider"]


def is_public_path(path: str) -> bool:
    for route in PUBLIC_PATHS:
        if path == route:
            return True
        if route != "/" and path.startswith(route + "/"):
            return True
    return False


def store_auth_session(auth_session: AuthSession) -> None:
    session[AUTH_SESSION_KEY] = auth_session.to_dict()
    g.auth_session = auth_session
    g.current_user = auth_session.user


def clear_auth_session() -> None:
    session.pop(AUTH_SESSION_KEY, None)
    g.auth_session = None
    g.current_user = None


def _login_redirect():
    nxt = request.full_path or request.path
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def enforce_session():
    """
    Session gate, run before every request.

    Public and ungated paths pass through (with the stored user attached when
    there is one, for navigation). Everything else needs a session; a session
    that is expired or about to expire is refreshed first, and a failed refresh
    sends the user back to login.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.auth_session = None

    path = request.path
    if path.startswith(UNGATED_PREFIXES):
        return None

    stored = session.get(AUTH_SESSION_KEY)
    auth_session = AuthSession.from_dict(stored) if isinstance(stored, dict) else None
    if stored and auth_session is None:
        current_app.logger.warning("Discarding malformed auth session (request_id=%s)", g.request_id)
        session.pop(AUTH_SESSION_KEY, None)

    if is_public_path(path):
        if auth_session is not None:
            g.auth_session = auth_session
            g.current_user = auth_session.user
            if path.startswith(("/login", "/signup")):
                return redirect(url_for("dashboard.index"))
        return None

    if auth_session is None:
        clear_auth_session()
        return _login_redirect()

    margin = int(current_app.config.get("SESSION_REFRESH_MARGIN_SECONDS", 300))
    if auth_session.expires_within(margin):
        try:
            auth_session = auth_provider().refresh(auth_session.refresh_token)
        except AuthError as e:
            current_app.logger.info("Session refresh failed (request_id=%s): %s", g.request_id, e)
            clear_auth_session()
            flash("Your session has expired. Please sign in again.", "warning")
            return _login_redirect()
        current_app.logger.debug("Session refreshed for user %s", auth_session.user.id)
        session[AUTH_SESSION_KEY] = auth_session.to_dict()

    g.auth_session = auth_session
    g.current_user = auth_session.user
    return None


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    if not email or not password:
        flash("Email and password are required.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    try:
        auth_session = auth_provider().sign_in(email, password)
    except AuthError as e:
        current_app.logger.info("Login failed (email=%s request_id=%s): %s", email, g.request_id, e)
        record_event(actor=None, action="auth.login_failed", entity_type="User", entity_id=email, reason="Invalid credentials")
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session.permanent = True
    store_auth_session(auth_session)
    _login_attempts[ip].clear()
    record_event(actor=auth_session.user, action="auth.login", entity_type="User", entity_id=auth_session.user.id)
    return redirect(safe_next_url(nxt) or url_for("dashboard.index"))


@bp.get("/signup")
def signup_get():
    return render_template("auth/signup.html")


@bp.post("/signup")
def signup_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    user_name = (request.form.get("user_name") or "").strip()
    phone = (request.form.get("phone") or "").strip()
    bank_id = (request.form.get("bank_id") or "").strip()

    errors = []
    if not is_valid_email(email):
        errors.append("A valid email is required.")
    if len(password) < 6:
        errors.append("Password must be at least 6 characters.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/signup.html", email=email, user_name=user_name, phone=phone), 400

    metadata = {"user_name": user_name or email.split("@")[0], "phone": phone}
    if bank_id:
        metadata["bank_id"] = bank_id

    try:
        auth_provider().sign_up(email, password, metadata)
    except AuthError as e:
        flash(str(e) or "Sign up failed.", "danger")
        return render_template("auth/signup.html", email=email, user_name=user_name, phone=phone), 400

    record_event(actor=None, action="auth.signup", entity_type="User", entity_id=email)
    flash("Check your email for the verification link!", "success")
    return redirect(url_for("auth.login_get"))


@bp.get("/password-reset")
def password_reset_get():
    return render_template("auth/password_reset.html", email="", sent=False)


@bp.post("/password-reset")
def password_reset_post():
    email = (request.form.get("email") or "").strip().lower()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many attempts. Please wait 5 minutes.", "danger")
        return render_template("auth/password_reset.html", email=email, sent=False), 429
    _record_attempt(ip)

    if not is_valid_email(email):
        flash("A valid email is required.", "danger")
        return render_template("auth/password_reset.html", email=email, sent=False), 400

    try:
        auth_provider().send_password_reset(email)
    except AuthError as e:
        current_app.logger.warning("Password reset failed (request_id=%s): %s", g.request_id, e)
        flash("Error Password reset.", "danger")
        return render_template("auth/password_reset.html", email=email, sent=False), 400

    record_event(actor=None, action="auth.password_reset_requested", entity_type="User", entity_id=email)
    flash("Check your email for password reset instructions.", "success")
    return render_template("auth/password_reset.html", email=email, sent=True)


@bp.get("/logout")
def logout():
    auth_session = getattr(g, "auth_session", None)
    if auth_session is not None:
        try:
            auth_provider().sign_out(auth_session)
        except AuthError as e:
            # Local session is cleared regardless; the token expires on its own.
            current_app.logger.warning("Error during logout (request_id=%s): %s", g.request_id, e)
        record_event(actor=auth_session.user, action="auth.logout", entity_type="User", entity_id=auth_session.user.id)
    clear_auth_session()
    return redirect(url_for("auth.login_get"))
