from __future__ import annotations

from flask import Blueprint, g, render_template, request

from app.pantbrev.api_client import backend_client
from app.pantbrev.constants import DEED_STATUS_LABELS, DeedStatus
from app.pantbrev.fetcher import fetch_once
from app.pantbrev.modules.dashboard.service import (
    ARCHIVE_FILTERS,
    ARCHIVE_MAX_PAGES,
    ARCHIVE_PAGE_SIZE,
    archive_deeds,
    filter_by_term,
)
from app.pantbrev.rbac import require_permission

bp = Blueprint("dashboard", __name__)


@bp.get("/dashboard")
@require_permission("dashboard.view")
def index():
    user = g.current_user
    summary = fetch_once(lambda token: backend_client().get_statistics_summary(cancel=token))
    role_stats = fetch_once(lambda token: backend_client().get_dashboard_stats(user.role, cancel=token))
    return render_template(
        "dashboard/index.html",
        summary=summary.data,
        summary_error=summary.error,
        role_stats=role_stats.data or {},
        role_stats_error=role_stats.error,
        statuses=[(s, DEED_STATUS_LABELS[s]) for s in DeedStatus],
    )


@bp.get("/archive")
@require_permission("archive.view")
def archive():
    status_filter = (request.args.get("status") or "pending").strip()
    if status_filter not in ARCHIVE_FILTERS:
        status_filter = "pending"
    term = (request.args.get("q") or "").strip()
    query = fetch_once(lambda token: archive_deeds(backend_client(), status_filter, cancel=token))
    deeds, truncated = query.data if query.data is not None else ([], False)
    return render_template(
        "dashboard/archive.html",
        deeds=filter_by_term(deeds, term),
        truncated=truncated,
        shown_limit=ARCHIVE_MAX_PAGES * ARCHIVE_PAGE_SIZE,
        status_filter=status_filter,
        term=term,
        load_error=query.error,
    )
