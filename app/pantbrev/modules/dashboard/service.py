from __future__ import annotations

from typing import TYPE_CHECKING

from app.pantbrev.api_client import DeedFilters
from app.pantbrev.constants import DeedStatus

if TYPE_CHECKING:
    from app.pantbrev.api_client import BackendClient
    from app.pantbrev.fetcher import CancelToken
    from app.pantbrev.models import MortgageDeed

ARCHIVE_FILTERS = ("pending", "approved")
PENDING_STATUSES = (
    DeedStatus.CREATED,
    DeedStatus.PENDING_BORROWER_SIGNATURE,
    DeedStatus.PENDING_HOUSING_COOPERATIVE_SIGNATURE,
)
ARCHIVE_PAGE_SIZE = 50
ARCHIVE_MAX_PAGES = 20


def archive_deeds(
    client: "BackendClient", status_filter: str, *, cancel: "CancelToken | None" = None
) -> tuple[list["MortgageDeed"], bool]:
    """
    Deeds for the archive view: "approved" is every completed deed, "pending"
    is everything still in progress, newest first.

    Each status is paged through using the pagination headers, up to
    ARCHIVE_MAX_PAGES pages. The flag is True when that limit cut the list short.
    """
    statuses = (DeedStatus.COMPLETED,) if status_filter == "approved" else PENDING_STATUSES
    deeds: list[MortgageDeed] = []
    truncated = False
    for status in statuses:
        page = 1
        while True:
            found, pagination = client.list_mortgage_deeds(
                DeedFilters(deed_status=status.value, page=page, page_size=ARCHIVE_PAGE_SIZE), cancel=cancel
            )
            deeds.extend(found)
            if not found or page >= pagination.total_pages:
                break
            if page >= ARCHIVE_MAX_PAGES:
                truncated = True
                break
            page += 1
    deeds.sort(key=lambda d: d.created_at or "", reverse=True)
    return deeds, truncated


def filter_by_term(deeds: list["MortgageDeed"], term: str) -> list["MortgageDeed"]:
    term = (term or "").strip().lower()
    if not term:
        return deeds
    out = []
    for d in deeds:
        haystack = [d.apartment_address, d.apartment_number, d.credit_number]
        if d.housing_cooperative is not None:
            haystack.append(d.housing_cooperative.name)
        haystack.extend(b.name for b in d.borrowers)
        if any(term in (h or "").lower() for h in haystack):
            out.append(d)
    return out
