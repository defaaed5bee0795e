from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.pantbrev.api_client import DeedFilters, backend_client
from app.pantbrev.audit import record_event
from app.pantbrev.constants import AUDIT_ACTION_LABELS, PAGE_SIZES, SORT_FIELDS, DeedStatus
from app.pantbrev.errors import ApiError
from app.pantbrev.fetcher import fetch_once
from app.pantbrev.models import MortgageDeed, User
from app.pantbrev.modules.mortgage_deeds.service import (
    build_deed_payload,
    deed_to_form,
    empty_deed_form,
    ownership_total,
    resolve_cooperative,
    submission_body,
    validate_deed_payload,
)
from app.pantbrev.rbac import require_permission
from app.pantbrev.utils import parse_positive_int

bp = Blueprint("mortgage_deeds", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _filters_from_args() -> DeedFilters:
    page_size = parse_positive_int(request.args.get("page_size"), 10)
    if page_size not in PAGE_SIZES:
        page_size = 10
    credit_raw = (request.args.get("credit_numbers") or "").strip()
    status = (request.args.get("status") or "").strip()
    sort_by = (request.args.get("sort_by") or "created_at").strip()
    sort_order = (request.args.get("sort_order") or "desc").strip().lower()
    return DeedFilters(
        deed_status=status if status in DeedStatus.__members__ else None,
        created_after=(request.args.get("created_after") or "").strip() or None,
        created_before=(request.args.get("created_before") or "").strip() or None,
        borrower_person_number=(request.args.get("borrower_person_number") or "").strip() or None,
        housing_cooperative_name=(request.args.get("housing_cooperative_name") or "").strip() or None,
        apartment_number=(request.args.get("apartment_number") or "").strip() or None,
        credit_numbers=[c.strip() for c in credit_raw.split(",") if c.strip()] or None,
        sort_by=sort_by if sort_by in SORT_FIELDS else "created_at",
        sort_order=sort_order if sort_order in ("asc", "desc") else "desc",
        page=parse_positive_int(request.args.get("page"), 1),
        page_size=page_size,
    )


def _load_deed(deed_id: int) -> MortgageDeed:
    try:
        return backend_client().get_mortgage_deed(deed_id)
    except ApiError as e:
        if e.status == 404:
            abort(404)
        raise


def _render_form(form: dict, *, deed: MortgageDeed | None = None, errors: list[str] | None = None, status: int = 200):
    return (
        render_template(
            "deeds/form.html",
            form=form,
            deed=deed,
            errors=errors or [],
            ownership_total=ownership_total(form.get("borrowers") or []),
        ),
        status,
    )


# ---------- List ----------
@bp.get("/pantbrev")
@require_permission("deeds.view")
def deeds_list():
    filters = _filters_from_args()
    query = fetch_once(lambda token: backend_client().list_mortgage_deeds(filters, cancel=token))
    deeds, pagination = query.data if query.data is not None else ([], None)
    return render_template(
        "deeds/list.html",
        deeds=deeds,
        pagination=pagination,
        filters=filters,
        credit_numbers=",".join(filters.credit_numbers or []),
        load_error=query.error,
        statuses=list(DeedStatus),
        page_sizes=PAGE_SIZES,
    )


# ---------- New ----------
@bp.get("/pantbrev/new")
@require_permission("deeds.create")
def deeds_new_get():
    form = empty_deed_form()
    org = (request.args.get("organisation_number") or "").strip()
    if org:
        form["organization_number"] = org
        try:
            coop = backend_client().get_housing_cooperative(org)
        except ApiError as e:
            if e.status != 404:
                raise
            flash("No cooperative found with that organisation number. Fill in its details below.", "info")
        else:
            form.update(
                housing_cooperative_id=coop.id,
                cooperative_name=coop.name,
                cooperative_address=coop.address,
                cooperative_postal_code=coop.postal_code,
                cooperative_city=coop.city,
                administrator_company=coop.administrator_company or "",
            )
    return _render_form(form)


@bp.post("/pantbrev/new")
@require_permission("deeds.create")
def deeds_new_post():
    u = _current_user()
    payload = build_deed_payload(request.form)
    errors = validate_deed_payload(payload)
    if errors:
        return _render_form(payload, errors=errors, status=400)

    client = backend_client()
    coop_id, warning = resolve_cooperative(client, payload, u.id)
    if warning:
        flash(warning, "warning")
    if coop_id is None:
        return _render_form(payload, errors=["Select a housing cooperative."], status=400)

    try:
        created = client.create_mortgage_deed(submission_body(payload, coop_id))
    except ApiError as e:
        if e.is_unauthorized:
            raise
        return _render_form(payload, errors=[f"Failed to create mortgage deed: {e.message}"], status=400)

    deed_id = created.get("deed_id") or created.get("id")
    record_event(
        actor=u,
        action="deed.create",
        entity_type="MortgageDeed",
        entity_id=str(deed_id or ""),
        metadata={"credit_number": payload["credit_number"], "borrowers": len(payload["borrowers"])},
    )
    flash("Mortgage deed created.", "success")
    if deed_id:
        return redirect(url_for("mortgage_deeds.deed_detail", deed_id=int(deed_id)))
    return redirect(url_for("mortgage_deeds.deeds_list"))


# ---------- Detail ----------
@bp.get("/pantbrev/<int:deed_id>")
@require_permission("deeds.view")
def deed_detail(deed_id: int):
    deed = _load_deed(deed_id)
    audit = fetch_once(lambda token: backend_client().get_audit_logs(deed_id, cancel=token))
    return render_template(
        "deeds/detail.html",
        deed=deed,
        audit_logs=audit.data or [],
        audit_error=audit.error,
        audit_labels=AUDIT_ACTION_LABELS,
    )


# ---------- Edit ----------
@bp.get("/pantbrev/<int:deed_id>/edit")
@require_permission("deeds.edit")
def deeds_edit_get(deed_id: int):
    deed = _load_deed(deed_id)
    if not deed.is_editable:
        flash("Only deeds that have not been sent for signing can be edited.", "warning")
        return redirect(url_for("mortgage_deeds.deed_detail", deed_id=deed_id))
    return _render_form(deed_to_form(deed), deed=deed)


@bp.post("/pantbrev/<int:deed_id>/edit")
@require_permission("deeds.edit")
def deeds_edit_post(deed_id: int):
    u = _current_user()
    deed = _load_deed(deed_id)
    if not deed.is_editable:
        flash("Only deeds that have not been sent for signing can be edited.", "warning")
        return redirect(url_for("mortgage_deeds.deed_detail", deed_id=deed_id))

    payload = build_deed_payload(request.form)
    if payload.get("housing_cooperative_id") is None:
        payload["housing_cooperative_id"] = deed.housing_cooperative_id
    errors = validate_deed_payload(payload)
    if errors:
        return _render_form(payload, deed=deed, errors=errors, status=400)

    client = backend_client()
    coop_id, warning = resolve_cooperative(client, payload, u.id)
    if warning:
        flash(warning, "warning")

    try:
        client.update_mortgage_deed(deed_id, submission_body(payload, coop_id))
    except ApiError as e:
        if e.is_unauthorized:
            raise
        return _render_form(payload, deed=deed, errors=[f"Failed to update mortgage deed: {e.message}"], status=400)

    record_event(actor=u, action="deed.update", entity_type="MortgageDeed", entity_id=str(deed_id))
    flash("Mortgage deed updated.", "success")
    return redirect(url_for("mortgage_deeds.deed_detail", deed_id=deed_id))


# ---------- Delete ----------
@bp.post("/pantbrev/<int:deed_id>/delete")
@require_permission("deeds.delete")
def deeds_delete(deed_id: int):
    u = _current_user()
    reason = (request.form.get("reason") or "").strip() or None
    try:
        backend_client().delete_mortgage_deed(deed_id)
    except ApiError as e:
        if e.is_unauthorized:
            raise
        if e.status == 404:
            flash("Mortgage deed not found.", "danger")
        else:
            flash(f"Failed to delete mortgage deed: {e.message}", "danger")
        return redirect(url_for("mortgage_deeds.deeds_list"))

    record_event(actor=u, action="deed.delete", entity_type="MortgageDeed", entity_id=str(deed_id), reason=reason)
    flash("Mortgage deed deleted.", "success")
    return redirect(url_for("mortgage_deeds.deeds_list"))


# ---------- Send for signing ----------
@bp.post("/pantbrev/<int:deed_id>/send-for-signing")
@require_permission("deeds.send")
def deeds_send_for_signing(deed_id: int):
    u = _current_user()
    try:
        backend_client().send_for_signing(deed_id)
    except ApiError as e:
        if e.is_unauthorized:
            raise
        flash(f"Failed to send for signing: {e.message}", "danger")
        return redirect(url_for("mortgage_deeds.deed_detail", deed_id=deed_id))

    record_event(actor=u, action="deed.send_for_signing", entity_type="MortgageDeed", entity_id=str(deed_id))
    flash("Signing requests sent to borrowers.", "success")
    return redirect(url_for("mortgage_deeds.deed_detail", deed_id=deed_id))


# ---------- Cooperative lookup (deed form typeahead) ----------
@bp.get("/pantbrev/cooperatives/search")
@require_permission("deeds.create")
def cooperative_search():
    term = (request.args.get("q") or "").strip()
    if len(term) < 2:
        return jsonify([])
    coops, _ = backend_client().list_housing_cooperatives(1, 10, search=term)
    return jsonify(
        [
            {
                "id": c.id,
                "name": c.name,
                "organisation_number": c.organisation_number,
                "address": c.address,
                "postal_code": c.postal_code,
                "city": c.city,
            }
            for c in coops
        ]
    )
