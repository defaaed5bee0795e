from __future__ import annotations

from flask import Blueprint, current_app, flash, render_template

from app.pantbrev.api_client import backend_client
from app.pantbrev.audit import record_event
from app.pantbrev.errors import ApiError

bp = Blueprint("signing", __name__)


def _deed_info(data: dict) -> dict:
    deed = data.get("deed") if isinstance(data.get("deed"), dict) else {}
    coop = deed.get("housing_cooperative") if isinstance(deed.get("housing_cooperative"), dict) else {}
    return {
        "credit_number": deed.get("credit_number") or "",
        "apartment_number": deed.get("apartment_number") or "",
        "apartment_address": deed.get("apartment_address") or "",
        "cooperative_name": coop.get("name") or "",
        "signer_name": data.get("signer_name") or data.get("name") or "",
    }


@bp.get("/sign/<token>")
def sign_get(token: str):
    try:
        data = backend_client().verify_signing_token(token)
    except ApiError as e:
        current_app.logger.info("Signing link rejected (status=%s)", e.status)
        status = e.status if 400 <= e.status < 500 else 502
        return render_template("signing/error.html", message=e.message), status
    return render_template("signing/sign.html", token=token, deed=_deed_info(data))


@bp.post("/sign/<token>")
def sign_post(token: str):
    client = backend_client()
    try:
        data = client.verify_signing_token(token)
    except ApiError as e:
        status = e.status if 400 <= e.status < 500 else 502
        return render_template("signing/error.html", message=e.message), status

    try:
        client.sign_deed(token)
    except ApiError as e:
        current_app.logger.warning("Signing failed (status=%s): %s", e.status, e.message)
        flash("Failed to sign mortgage deed", "danger")
        return render_template("signing/sign.html", token=token, deed=_deed_info(data)), 400

    deed = _deed_info(data)
    record_event(actor=None, action="deed.sign", entity_type="MortgageDeed", entity_id=deed["credit_number"])
    flash("Mortgage deed signed successfully!", "success")
    return render_template("signing/done.html", deed=deed)
