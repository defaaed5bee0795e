from __future__ import annotations

from typing import Any

from app.pantbrev.utils import is_valid_email, is_valid_person_number

EDITABLE_FIELDS = (
    "name",
    "address",
    "city",
    "postal_code",
    "administrator_company",
    "administrator_name",
    "administrator_email",
    "administrator_person_number",
)

DELETE_ERROR_MESSAGES = {
    409: "Cannot delete a housing cooperative that has active mortgage deeds.",
    404: "Housing cooperative not found.",
    403: "You do not have permission to delete this housing cooperative.",
}


def _clean(value: Any) -> str:
    return ("" if value is None else str(value)).strip()


def build_cooperative_payload(form: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"organisation_number": _clean(form.get("organisation_number"))}
    for name in EDITABLE_FIELDS:
        payload[name] = _clean(form.get(name))
    payload["administrator_company"] = payload["administrator_company"] or None
    return payload


def validate_cooperative_payload(payload: dict[str, Any], *, is_new: bool) -> list[str]:
    """Validate cooperative create/update payload. Returns list of errors."""
    errors = []
    if is_new and not payload.get("organisation_number"):
        errors.append("Organisation number is required.")
    if not payload.get("name"):
        errors.append("Name is required.")
    if not payload.get("address"):
        errors.append("Address is required.")
    if not payload.get("postal_code"):
        errors.append("Postal code is required.")
    if not payload.get("city"):
        errors.append("City is required.")
    if not payload.get("administrator_name"):
        errors.append("Administrator name is required.")
    if not is_valid_email(payload.get("administrator_email")):
        errors.append("A valid administrator email is required.")
    if not is_valid_person_number(payload.get("administrator_person_number")):
        errors.append("Administrator person number must be 12 digits.")
    return errors


def create_body(payload: dict[str, Any], created_by: str | None) -> dict[str, Any]:
    body = dict(payload)
    body["created_by"] = created_by
    return body


def update_body(payload: dict[str, Any]) -> dict[str, Any]:
    """Update body: the organisation number is the key, never part of the changes."""
    return {k: payload.get(k) for k in EDITABLE_FIELDS}


def delete_error_message(status: int, fallback: str) -> str:
    return DELETE_ERROR_MESSAGES.get(status) or f"Failed to delete housing cooperative: {fallback}"


def build_setup_payload(form: Any, admin_id: str) -> dict[str, Any]:
    return {
        "organisation_number": _clean(form.get("organisation_number")),
        "name": _clean(form.get("name")),
        "address": _clean(form.get("address")),
        "city": _clean(form.get("city")),
        "postal_code": _clean(form.get("postal_code")),
        "admin_id": admin_id,
        "created_by": admin_id,
    }


def validate_setup_payload(payload: dict[str, Any]) -> list[str]:
    labels = {
        "organisation_number": "Organisation number",
        "name": "Cooperative name",
        "address": "Street address",
        "city": "City",
        "postal_code": "Postal code",
    }
    return [f"{label} is required." for key, label in labels.items() if not payload.get(key)]
