from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.pantbrev.constants import ROLE_ACCOUNTING_FIRM, ROLE_BANK_USER, ROLE_COOPERATIVE_ADMIN
from app.pantbrev.models import User

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_BANK_USER: frozenset(
        {
            "dashboard.view",
            "archive.view",
            "deeds.view",
            "deeds.create",
            "deeds.edit",
            "deeds.delete",
            "deeds.send",
            "cooperatives.view",
        }
    ),
    ROLE_COOPERATIVE_ADMIN: frozenset(
        {
            "dashboard.view",
            "archive.view",
            "deeds.view",
            "cooperatives.view",
            "cooperatives.manage",
            "cooperatives.setup",
        }
    ),
    ROLE_ACCOUNTING_FIRM: frozenset(
        {
            "dashboard.view",
            "archive.view",
            "deeds.view",
            "cooperatives.view",
        }
    ),
}

# Every signed-in user, whatever the role
BASE_PERMISSIONS = frozenset({"dashboard.view", "settings.edit"})


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user:
        return False
    if permission_key in BASE_PERMISSIONS:
        return True
    return permission_key in ROLE_PERMISSIONS.get(user.role or "", frozenset())


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login
            if not user:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


@dataclass(frozen=True)
class NavItem:
    label: str
    endpoint: str
    permission: str
    primary: bool = False


NAV_ITEMS = (
    NavItem("Overview", "dashboard.index", "dashboard.view"),
    NavItem("My Cooperatives", "housing_cooperatives.cooperatives_list", "cooperatives.manage"),
    NavItem("Archive", "dashboard.archive", "archive.view"),
    NavItem("New Mortgage", "mortgage_deeds.deeds_new_get", "deeds.create", primary=True),
)


def navigation_for(user: User | None) -> list[NavItem]:
    """Links shown in the top bar; empty when nobody is signed in."""
    if not user:
        return []
    return [item for item in NAV_ITEMS if user_has_permission(user, item.permission)]
