from __future__ import annotations

from dataclasses import replace

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.pantbrev.audit import record_event
from app.pantbrev.auth import AUTH_SESSION_KEY, auth_provider
from app.pantbrev.errors import AuthError
from app.pantbrev.rbac import require_permission
from app.pantbrev.supabase_auth import AuthSession
from app.pantbrev.utils import is_valid_email, is_valid_swedish_phone

bp = Blueprint("account", __name__)


@bp.get("/settings")
@require_permission("settings.edit")
def settings_get():
    u = g.current_user
    form = {
        "first_name": u.first_name or "",
        "last_name": u.last_name or "",
        "email": u.email,
        "phone": u.phone or "",
    }
    return render_template("account/settings.html", form=form, errors=[])


@bp.post("/settings")
@require_permission("settings.edit")
def settings_post():
    u = g.current_user
    form = {
        "first_name": (request.form.get("first_name") or "").strip(),
        "last_name": (request.form.get("last_name") or "").strip(),
        "email": (request.form.get("email") or "").strip().lower(),
        "phone": (request.form.get("phone") or "").strip(),
    }
    errors = []
    if not is_valid_email(form["email"]):
        errors.append("A valid email is required.")
    if form["phone"] and not is_valid_swedish_phone(form["phone"]):
        errors.append("Phone number must be in format +46701234567")
    if errors:
        return render_template("account/settings.html", form=form, errors=errors), 400

    auth_session: AuthSession = g.auth_session
    metadata = {"first_name": form["first_name"], "last_name": form["last_name"], "phone": form["phone"]}
    try:
        updated = auth_provider().update_user(auth_session, email=form["email"], metadata=metadata)
    except AuthError as e:
        current_app.logger.warning("Profile update failed for user %s: %s", u.id, e)
        return render_template("account/settings.html", form=form, errors=["Could not update profile."]), 400

    refreshed = replace(auth_session, user=updated)
    session[AUTH_SESSION_KEY] = refreshed.to_dict()
    record_event(
        actor=u,
        action="account.update",
        entity_type="User",
        entity_id=u.id,
        metadata={"email_changed": form["email"] != u.email},
    )
    flash("Profile updated successfully", "success")
    return redirect(url_for("account.settings_get"))
