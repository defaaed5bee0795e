from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from werkzeug.datastructures import MultiDict

from app.pantbrev.errors import ApiError
from app.pantbrev.utils import is_valid_email, is_valid_person_number, parse_percentage

if TYPE_CHECKING:
    from app.pantbrev.api_client import BackendClient
    from app.pantbrev.models import MortgageDeed

logger = logging.getLogger(__name__)

OWNERSHIP_TOTAL = 100.0
OWNERSHIP_TOLERANCE = 0.01

BORROWER_FIELDS = ("name", "person_number", "email", "ownership_percentage")
SIGNER_FIELDS = ("administrator_name", "administrator_person_number", "administrator_email")
COOPERATIVE_FIELDS = (
    "organization_number",
    "cooperative_name",
    "cooperative_address",
    "cooperative_postal_code",
    "cooperative_city",
    "administrator_company",
)
APARTMENT_FIELDS = ("apartment_address", "apartment_postal_code", "apartment_city", "apartment_number")


def _clean(value: Any) -> str:
    return ("" if value is None else str(value)).strip()


def parse_indexed_rows(form: MultiDict, prefix: str, fields: tuple[str, ...]) -> list[dict[str, str]]:
    """
    Collect `<prefix>-<n>-<field>` inputs into rows ordered by n.
    Rows where every field is blank are dropped (removed form rows).
    """
    rows: dict[int, dict[str, str]] = {}
    for key in form.keys():
        parts = key.split("-", 2)
        if len(parts) != 3 or parts[0] != prefix or parts[2] not in fields:
            continue
        try:
            idx = int(parts[1])
        except ValueError:
            continue
        rows.setdefault(idx, {})[parts[2]] = _clean(form.get(key))
    out = []
    for idx in sorted(rows):
        row = {f: rows[idx].get(f, "") for f in fields}
        if any(row.values()):
            out.append(row)
    return out


def ownership_total(borrowers: list[dict[str, Any]]) -> float:
    return round(sum(parse_percentage(b.get("ownership_percentage")) or 0.0 for b in borrowers), 2)


def build_deed_payload(form: MultiDict) -> dict[str, Any]:
    """Turn the deed form into the JSON body the backend expects."""
    borrowers = []
    for row in parse_indexed_rows(form, "borrowers", BORROWER_FIELDS):
        pct = parse_percentage(row["ownership_percentage"])
        borrowers.append(
            {
                "name": row["name"],
                "person_number": row["person_number"],
                "email": row["email"],
                "ownership_percentage": pct if pct is not None else row["ownership_percentage"],
            }
        )

    coop_id_raw = _clean(form.get("housing_cooperative_id"))
    payload: dict[str, Any] = {
        "credit_number": _clean(form.get("credit_number")),
        "credit_numbers": [n for n in (_clean(v) for v in form.getlist("credit_numbers")) if n],
        "housing_cooperative_id": int(coop_id_raw) if coop_id_raw.isdigit() else None,
        "is_accounting_firm": form.get("is_accounting_firm") in ("1", "on", "true"),
        "accounting_firm_name": _clean(form.get("accounting_firm_name")),
        "accounting_firm_email": _clean(form.get("accounting_firm_email")),
        "administrator_name": _clean(form.get("administrator_name")),
        "administrator_person_number": _clean(form.get("administrator_person_number")),
        "administrator_email": _clean(form.get("administrator_email")),
        "borrowers": borrowers,
        "housing_cooperative_signers": parse_indexed_rows(form, "signers", SIGNER_FIELDS),
        "has_existing_mortgages": form.get("has_existing_mortgages") in ("1", "on", "true"),
        "existing_mortgage_bank": _clean(form.get("existing_mortgage_bank")),
        "existing_mortgage_date": _clean(form.get("existing_mortgage_date")),
        "notes": _clean(form.get("notes")),
    }
    for name in COOPERATIVE_FIELDS + APARTMENT_FIELDS:
        payload[name] = _clean(form.get(name))
    return payload


def validate_deed_payload(payload: dict[str, Any]) -> list[str]:
    """Validate deed create/update payload. Returns list of errors."""
    errors = []
    if not payload.get("credit_number"):
        errors.append("Primary credit number is required.")
    if not payload.get("housing_cooperative_id") and not payload.get("organization_number"):
        errors.append("Select a housing cooperative or enter its organisation number.")
    labels = {
        "apartment_address": "Apartment address",
        "apartment_postal_code": "Apartment postal code",
        "apartment_city": "Apartment city",
        "apartment_number": "Apartment number",
    }
    for name, label in labels.items():
        if not payload.get(name):
            errors.append(f"{label} is required.")

    borrowers = payload.get("borrowers") or []
    if not borrowers:
        errors.append("At least one borrower is required.")
    for i, b in enumerate(borrowers, start=1):
        if not b.get("name"):
            errors.append(f"Borrower {i}: name is required.")
        if not is_valid_person_number(b.get("person_number")):
            errors.append(f"Borrower {i}: person number must be 12 digits.")
        if not is_valid_email(b.get("email")):
            errors.append(f"Borrower {i}: a valid email is required.")
        pct = parse_percentage(b.get("ownership_percentage"))
        if pct is None or pct <= 0 or pct > OWNERSHIP_TOTAL:
            errors.append(f"Borrower {i}: ownership must be between 0 and 100.")
    if borrowers:
        total = ownership_total(borrowers)
        if abs(total - OWNERSHIP_TOTAL) > OWNERSHIP_TOLERANCE:
            errors.append(f"Borrower ownership must total 100% (currently {total:g}%).")

    for i, s in enumerate(payload.get("housing_cooperative_signers") or [], start=1):
        if not s.get("administrator_name"):
            errors.append(f"Signer {i}: name is required.")
        if not is_valid_person_number(s.get("administrator_person_number")):
            errors.append(f"Signer {i}: person number must be 12 digits.")
        if not is_valid_email(s.get("administrator_email")):
            errors.append(f"Signer {i}: a valid email is required.")

    if payload.get("is_accounting_firm") and not payload.get("accounting_firm_name"):
        errors.append("Accounting firm name is required when an accounting firm signs.")
    return errors


def cooperative_payload_from_deed(payload: dict[str, Any], created_by: str | None) -> dict[str, Any] | None:
    """
    Cooperative record implied by the deed form, or None when the form does
    not carry complete cooperative details.

    The administrator is the first cooperative signer, unless an accounting
    firm signs for the cooperative.
    """
    required = ("organization_number", "cooperative_name", "cooperative_address", "cooperative_postal_code", "cooperative_city")
    if not all(payload.get(k) for k in required):
        return None
    coop: dict[str, Any] = {
        "organisation_number": payload["organization_number"],
        "name": payload["cooperative_name"],
        "address": payload["cooperative_address"],
        "city": payload["cooperative_city"],
        "postal_code": payload["cooperative_postal_code"],
        "administrator_company": payload.get("administrator_company") or None,
        "created_by": created_by,
    }
    signers = payload.get("housing_cooperative_signers") or []
    if payload.get("is_accounting_firm"):
        coop.update(
            administrator_name="",
            administrator_email="",
            administrator_person_number="",
            accounting_firm_name=payload.get("accounting_firm_name") or "",
            accounting_firm_email=payload.get("accounting_firm_email") or "",
        )
    elif signers:
        first = signers[0]
        coop.update(
            administrator_name=first.get("administrator_name") or "",
            administrator_email=first.get("administrator_email") or "",
            administrator_person_number=first.get("administrator_person_number") or "",
            accounting_firm_name="",
            accounting_firm_email="",
        )
    else:
        coop.update(
            administrator_name=payload.get("administrator_name") or "",
            administrator_email=payload.get("administrator_email") or "",
            administrator_person_number=payload.get("administrator_person_number") or "",
        )
    return coop


def resolve_cooperative(client: "BackendClient", payload: dict[str, Any], created_by: str | None) -> tuple[int | None, str | None]:
    """
    Create or update the cooperative described on the deed form.

    Returns (cooperative id, warning). A failure here does not block the deed:
    the existing `housing_cooperative_id` is kept and a warning is returned.
    """
    coop = cooperative_payload_from_deed(payload, created_by)
    current_id = payload.get("housing_cooperative_id")
    if coop is None:
        return current_id, None

    org = coop["organisation_number"]
    try:
        try:
            existing = client.get_housing_cooperative(org)
        except ApiError as e:
            if e.status != 404:
                raise
            existing = None
        if existing is None:
            created = client.create_housing_cooperative(coop)
            return created.get("id", current_id), None
        update = {k: v for k, v in coop.items() if k not in ("organisation_number", "created_by")}
        client.update_housing_cooperative(org, update)
        return existing.id or current_id, None
    except ApiError as e:
        if e.is_unauthorized:
            raise
        logger.warning("Saving cooperative %s failed: %s", org, e)
        return current_id, "Failed to save housing cooperative data, but the mortgage deed will still be saved."


def submission_body(payload: dict[str, Any], cooperative_id: int | None) -> dict[str, Any]:
    body = dict(payload)
    body["housing_cooperative_id"] = cooperative_id
    return body


def deed_to_form(deed: "MortgageDeed") -> dict[str, Any]:
    """Pre-fill values for the edit form, in the shape `build_deed_payload` produces."""
    coop = deed.housing_cooperative
    numbers = deed.all_credit_numbers
    return {
        "credit_number": numbers[0] if numbers else "",
        "credit_numbers": numbers[1:],
        "housing_cooperative_id": deed.housing_cooperative_id,
        "organization_number": coop.organisation_number if coop else "",
        "cooperative_name": coop.name if coop else "",
        "cooperative_address": coop.address if coop else "",
        "cooperative_postal_code": coop.postal_code if coop else "",
        "cooperative_city": coop.city if coop else "",
        "administrator_company": (coop.administrator_company or "") if coop else "",
        "administrator_name": coop.administrator_name if coop else "",
        "administrator_person_number": coop.administrator_person_number if coop else "",
        "administrator_email": coop.administrator_email if coop else "",
        "is_accounting_firm": bool(coop and coop.accounting_firm_name),
        "accounting_firm_name": (coop.accounting_firm_name or "") if coop else "",
        "accounting_firm_email": (coop.accounting_firm_email or "") if coop else "",
        "apartment_address": deed.apartment_address,
        "apartment_postal_code": deed.apartment_postal_code,
        "apartment_city": deed.apartment_city,
        "apartment_number": deed.apartment_number,
        "borrowers": [
            {
                "name": b.name,
                "person_number": b.person_number,
                "email": b.email,
                "ownership_percentage": b.ownership_percentage,
            }
            for b in deed.borrowers
        ],
        "housing_cooperative_signers": [
            {
                "administrator_name": s.administrator_name,
                "administrator_person_number": s.administrator_person_number,
                "administrator_email": s.administrator_email,
            }
            for s in deed.housing_cooperative_signers
        ],
        "has_existing_mortgages": deed.has_existing_mortgages,
        "existing_mortgage_bank": deed.existing_mortgage_bank or "",
        "existing_mortgage_date": deed.existing_mortgage_date or "",
        "notes": deed.notes or "",
    }


def empty_deed_form() -> dict[str, Any]:
    return {
        "credit_number": "",
        "credit_numbers": [],
        "housing_cooperative_id": None,
        "is_accounting_firm": False,
        "borrowers": [{"name": "", "person_number": "", "email": "", "ownership_percentage": 100}],
        "housing_cooperative_signers": [],
        "has_existing_mortgages": False,
    }
