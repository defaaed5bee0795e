from __future__ import annotations

import logging
import threading
from dataclasses import replace

import click
from flask import current_app
from flask.cli import AppGroup

from app.pantbrev.api_client import BackendClient, DeedFilters
from app.pantbrev.constants import DeedStatus
from app.pantbrev.errors import ApiError, AuthError
from app.pantbrev.fetcher import CancelToken, Query, RetryPolicy
from app.pantbrev.models import MortgageDeed, Pagination

logger = logging.getLogger(__name__)

deeds_cli = AppGroup("deeds", help="Mortgage deed utilities.")


def status_changes(seen: dict[int, str], deeds: list[MortgageDeed]) -> list[tuple[MortgageDeed, str | None]]:
    """
    Deeds whose status differs from the last poll (or that are new), as
    (deed, previous status). Updates `seen` in place.
    """
    changes = []
    for deed in deeds:
        previous = seen.get(deed.id)
        if previous != deed.status:
            changes.append((deed, previous))
            seen[deed.id] = deed.status
    return changes


def retry_policy_from_config(config) -> RetryPolicy:
    return RetryPolicy(
        max_retries=int(config.get("API_MAX_RETRIES", 3)),
        base_delay=float(config.get("API_RETRY_DELAY_SECONDS", 2.0)),
        max_delay=float(config.get("API_RETRY_MAX_DELAY_SECONDS", 30.0)),
    )


@deeds_cli.command("watch")
@click.option("--email", envvar="PANTBREV_WATCH_EMAIL", required=True, help="Account to poll as.")
@click.option("--password", envvar="PANTBREV_WATCH_PASSWORD", prompt=True, hide_input=True)
@click.option("--interval", type=float, default=60.0, show_default=True, help="Seconds between polls.")
@click.option("--status", type=click.Choice([s.value for s in DeedStatus]), default=None, help="Only watch one status.")
@click.option("--once", is_flag=True, help="Poll a single time and exit.")
def watch(email: str, password: str, interval: float, status: str | None, once: bool) -> None:
    """Poll the deed list and report status changes."""
    app = current_app._get_current_object()
    provider = app.extensions["auth_provider"]
    try:
        auth_session = provider.sign_in(email, password)
    except AuthError as e:
        raise click.ClickException(f"Sign in failed: {e}") from e

    margin = int(app.config.get("SESSION_REFRESH_MARGIN_SECONDS", 300))
    base: BackendClient = replace(app.extensions["backend_client"], cache=None)
    state = {"session": auth_session}
    seen: dict[int, str] = {}
    filters = DeedFilters(deed_status=status, page_size=50)

    def fetch(token: CancelToken) -> tuple[list[MortgageDeed], Pagination]:
        if state["session"].expires_within(margin):
            try:
                state["session"] = provider.refresh(state["session"].refresh_token)
            except AuthError as e:
                raise ApiError(401, f"Session refresh failed: {e}") from e
        s = state["session"]
        return base.with_token(s.access_token, scope=s.user.id).list_mortgage_deeds(filters, cancel=token)

    def on_success(result: tuple[list[MortgageDeed], Pagination]) -> None:
        deeds, pagination = result
        for deed, previous in status_changes(seen, deeds):
            if previous is None:
                click.echo(f"{deed.id}\t{deed.credit_number}\t{deed.status_label}")
            else:
                click.echo(f"{deed.id}\t{deed.credit_number}\t{previous} -> {deed.status}")
                logger.info("Deed %s status changed %s -> %s", deed.id, previous, deed.status)
        logger.debug("Polled %s deeds (total=%s)", len(deeds), pagination.total_count)

    def on_error(err: ApiError) -> None:
        click.echo(f"Fetch failed ({err.status}): {err.message}", err=True)

    query = Query(
        fetch,
        on_success=on_success,
        on_error=on_error,
        refetch_interval=None if once else interval,
        retry_on_error=not once,
        retry_policy=retry_policy_from_config(app.config),
    )
    with query:
        if once:
            if query.error is not None:
                raise click.ClickException(query.error.message)
            return
        stop = threading.Event()
        try:
            while not stop.wait(1.0):
                if query.error is not None and query.error.is_unauthorized:
                    raise click.ClickException("Session expired; sign in again.")
        except KeyboardInterrupt:
            click.echo("Stopped.")


def register_cli(app) -> None:
    app.cli.add_command(deeds_cli)
