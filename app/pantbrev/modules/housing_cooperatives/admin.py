from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.pantbrev.api_client import backend_client
from app.pantbrev.audit import record_event
from app.pantbrev.constants import PAGE_SIZES
from app.pantbrev.errors import ApiError
from app.pantbrev.fetcher import fetch_once
from app.pantbrev.models import HousingCooperative, User
from app.pantbrev.modules.housing_cooperatives.service import (
    build_cooperative_payload,
    build_setup_payload,
    create_body,
    delete_error_message,
    update_body,
    validate_cooperative_payload,
    validate_setup_payload,
)
from app.pantbrev.rbac import require_permission
from app.pantbrev.utils import parse_positive_int

bp = Blueprint("housing_cooperatives", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _load(organisation_number: str) -> HousingCooperative:
    try:
        return backend_client().get_housing_cooperative(organisation_number)
    except ApiError as e:
        if e.status == 404:
            abort(404)
        raise


# ---------- List ----------
@bp.get("/cooperatives")
@require_permission("cooperatives.view")
def cooperatives_list():
    search = (request.args.get("q") or "").strip()
    page = parse_positive_int(request.args.get("page"), 1)
    page_size = parse_positive_int(request.args.get("page_size"), 10)
    if page_size not in PAGE_SIZES:
        page_size = 10

    query = fetch_once(
        lambda token: backend_client().list_housing_cooperatives(page, page_size, search=search or None, cancel=token)
    )
    cooperatives, pagination = query.data if query.data is not None else ([], None)
    return render_template(
        "cooperatives/list.html",
        cooperatives=cooperatives,
        pagination=pagination,
        search=search,
        page_size=page_size,
        page_sizes=PAGE_SIZES,
        load_error=query.error,
    )


# ---------- New ----------
@bp.get("/cooperatives/new")
@require_permission("cooperatives.manage")
def cooperatives_new_get():
    return render_template("cooperatives/form.html", form={}, cooperative=None, errors=[])


@bp.post("/cooperatives/new")
@require_permission("cooperatives.manage")
def cooperatives_new_post():
    u = _current_user()
    payload = build_cooperative_payload(request.form)
    errors = validate_cooperative_payload(payload, is_new=True)
    if errors:
        return render_template("cooperatives/form.html", form=payload, cooperative=None, errors=errors), 400

    try:
        backend_client().create_housing_cooperative(create_body(payload, u.id))
    except ApiError as e:
        if e.is_unauthorized:
            raise
        errors = [e.message or "Failed to create housing cooperative."]
        return render_template("cooperatives/form.html", form=payload, cooperative=None, errors=errors), 400

    record_event(
        actor=u,
        action="cooperative.create",
        entity_type="HousingCooperative",
        entity_id=payload["organisation_number"],
        metadata={"name": payload["name"]},
    )
    flash("The housing cooperative has been created successfully.", "success")
    return redirect(url_for("housing_cooperatives.cooperatives_list"))


# ---------- Edit ----------
@bp.get("/cooperatives/<organisation_number>/edit")
@require_permission("cooperatives.manage")
def cooperatives_edit_get(organisation_number: str):
    coop = _load(organisation_number)
    form = {
        "organisation_number": coop.organisation_number,
        "name": coop.name,
        "address": coop.address,
        "city": coop.city,
        "postal_code": coop.postal_code,
        "administrator_company": coop.administrator_company or "",
        "administrator_name": coop.administrator_name,
        "administrator_email": coop.administrator_email,
        "administrator_person_number": coop.administrator_person_number,
    }
    return render_template("cooperatives/form.html", form=form, cooperative=coop, errors=[])


@bp.post("/cooperatives/<organisation_number>/edit")
@require_permission("cooperatives.manage")
def cooperatives_edit_post(organisation_number: str):
    u = _current_user()
    coop = _load(organisation_number)
    payload = build_cooperative_payload(request.form)
    payload["organisation_number"] = coop.organisation_number
    errors = validate_cooperative_payload(payload, is_new=False)
    if errors:
        return render_template("cooperatives/form.html", form=payload, cooperative=coop, errors=errors), 400

    try:
        backend_client().update_housing_cooperative(coop.organisation_number, update_body(payload))
    except ApiError as e:
        if e.is_unauthorized:
            raise
        errors = [e.message or "Failed to update housing cooperative."]
        return render_template("cooperatives/form.html", form=payload, cooperative=coop, errors=errors), 400

    record_event(actor=u, action="cooperative.update", entity_type="HousingCooperative", entity_id=coop.organisation_number)
    flash("The housing cooperative has been updated successfully.", "success")
    return redirect(url_for("housing_cooperatives.cooperatives_list"))


# ---------- Delete ----------
@bp.post("/cooperatives/<organisation_number>/delete")
@require_permission("cooperatives.manage")
def cooperatives_delete(organisation_number: str):
    u = _current_user()
    try:
        backend_client().delete_housing_cooperative(organisation_number)
    except ApiError as e:
        if e.is_unauthorized:
            raise
        flash(delete_error_message(e.status, e.message), "danger")
        return redirect(url_for("housing_cooperatives.cooperatives_list"))

    record_event(actor=u, action="cooperative.delete", entity_type="HousingCooperative", entity_id=organisation_number)
    flash("Housing cooperative deleted.", "success")
    return redirect(url_for("housing_cooperatives.cooperatives_list"))


# ---------- First-run setup ----------
@bp.get("/setup-cooperative")
@require_permission("cooperatives.setup")
def setup_get():
    return render_template("cooperatives/setup.html", form={}, errors=[])


@bp.post("/setup-cooperative")
@require_permission("cooperatives.setup")
def setup_post():
    u = _current_user()
    payload = build_setup_payload(request.form, u.id)
    errors = validate_setup_payload(payload)
    if errors:
        return render_template("cooperatives/setup.html", form=payload, errors=errors), 400

    try:
        backend_client().create_housing_cooperative(payload)
    except ApiError as e:
        if e.is_unauthorized:
            raise
        current_msg = e.message or "Failed to create housing cooperative."
        return render_template("cooperatives/setup.html", form=payload, errors=[current_msg]), 400

    record_event(actor=u, action="cooperative.setup", entity_type="HousingCooperative", entity_id=payload["organisation_number"])
    flash("Your housing cooperative has been created successfully!", "success")
    return redirect(url_for("dashboard.index"))
