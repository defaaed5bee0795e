"""
Central constants for the pantbrev portal.
"""
from __future__ import annotations

from enum import Enum


class DeedStatus(str, Enum):
    CREATED = "CREATED"
    PENDING_BORROWER_SIGNATURE = "PENDING_BORROWER_SIGNATURE"
    PENDING_HOUSING_COOPERATIVE_SIGNATURE = "PENDING_HOUSING_COOPERATIVE_SIGNATURE"
    COMPLETED = "COMPLETED"


DEED_STATUS_LABELS = {
    DeedStatus.CREATED: "Skapad",
    DeedStatus.PENDING_BORROWER_SIGNATURE: "Väntar på låntagares signering",
    DeedStatus.PENDING_HOUSING_COOPERATIVE_SIGNATURE: "Väntar på föreningens signering",
    DeedStatus.COMPLETED: "Slutförd",
}

# Row action shown in the deed list, per status
DEED_STATUS_ACTIONS = {
    DeedStatus.CREATED: "Redigera",
    DeedStatus.PENDING_BORROWER_SIGNATURE: "Påminn",
    DeedStatus.PENDING_HOUSING_COOPERATIVE_SIGNATURE: "Påminn",
    DeedStatus.COMPLETED: "Visa",
}

AUDIT_ACTION_LABELS = {
    "DEED_CREATED": "Pantbrev skapat",
    "DEED_UPDATED": "Pantbrev uppdaterat",
    "BORROWER_ADDED": "Låntagare tillagd",
    "BORROWER_REMOVED": "Låntagare borttagen",
    "BORROWER_SIGNED": "Låntagare har signerat",
    "COOPERATIVE_SIGNER_ADDED": "Föreningsfirmatecknare tillagd",
    "COOPERATIVE_SIGNER_SIGNED": "Föreningen har signerat",
    "DEED_COMPLETED": "Pantbrev slutfört",
    "DEED_DELETED": "Pantbrev borttaget",
}

ROLE_BANK_USER = "bank_user"
ROLE_COOPERATIVE_ADMIN = "cooperative_admin"
ROLE_ACCOUNTING_FIRM = "accounting_firm"

# Paths reachable without a session (exact match or sub-path)
PUBLIC_PATHS = ("/", "/login", "/signup", "/logout", "/password-reset")
# Prefixes that skip the session gate entirely
UNGATED_PREFIXES = ("/static/", "/health", "/healthz", "/sign/")

SORT_FIELDS = ("created_at", "status", "apartment_number")
PAGE_SIZES = (10, 20, 50)

DEEDS_PATH = "/api/mortgage-deeds"
COOPERATIVES_PATH = "/api/housing-cooperatives"
STATISTICS_PATH = "/api/statistics"
SIGNING_PATH = "/api/signing"
