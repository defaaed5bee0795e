import logging
from datetime import timedelta

from flask import Flask, flash, g, redirect, render_template, request, url_for
from dotenv import load_dotenv

from app.pantbrev.api_client import BackendClient
from app.pantbrev.auth import bp as auth_bp, clear_auth_session, enforce_session
from app.pantbrev.cache import ResponseCache
from app.pantbrev.cli import register_cli
from app.pantbrev.config import load_config
from app.pantbrev.errors import ApiError
from app.pantbrev.modules.account.admin import bp as account_bp
from app.pantbrev.modules.dashboard.admin import bp as dashboard_bp
from app.pantbrev.modules.housing_cooperatives.admin import bp as housing_cooperatives_bp
from app.pantbrev.modules.mortgage_deeds.admin import bp as mortgage_deeds_bp
from app.pantbrev.modules.signing.admin import bp as signing_bp
from app.pantbrev.routes import bp as routes_bp
from app.pantbrev.supabase_auth import SupabaseAuth


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.pantbrev.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.pantbrev.rbac import navigation_for, user_has_permission

        user = getattr(g, "current_user", None)

        def has_perm(key: str) -> bool:
            return user_has_permission(user, key)

        return {"has_perm": has_perm, "current_user": user, "nav_items": navigation_for(user)}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        from app.pantbrev.utils import format_timestamp

        return format_timestamp(value, format)

    @app.template_filter("percent")
    def _percent_filter(value) -> str:
        try:
            return f"{float(value):g}%"
        except (TypeError, ValueError):
            return "-"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow auth endpoints to pass through (login/signup)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("BACKEND_URL"):
            raise RuntimeError("BACKEND_URL is required in production.")
        missing = [k for k in ("SUPABASE_URL", "SUPABASE_KEY") if not app.config.get(k)]
        if missing:
            raise RuntimeError(f"Auth service is not configured: missing {', '.join(missing)}.")

    app.extensions["response_cache"] = ResponseCache(ttl_seconds=float(app.config["API_CACHE_TTL_SECONDS"]))
    app.extensions["backend_client"] = BackendClient(
        base_url=app.config["BACKEND_URL"],
        timeout_seconds=float(app.config["API_TIMEOUT_SECONDS"]),
        cache=app.extensions["response_cache"],
    )
    app.extensions["auth_provider"] = SupabaseAuth(app.config["SUPABASE_URL"], app.config["SUPABASE_KEY"])
    if not app.config["SUPABASE_URL"]:
        app.logger.warning("SUPABASE_URL not set; sign-in will fail until it is configured.")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(mortgage_deeds_bp)
    app.register_blueprint(housing_cooperatives_bp)
    app.register_blueprint(signing_bp)
    app.register_blueprint(account_bp)

    app.before_request(enforce_session)
    register_cli(app)

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        rid = getattr(g, "request_id", None)
        if e.is_unauthorized:
            app.logger.info("Backend rejected session (request_id=%s); signing out", rid)
            clear_auth_session()
            flash("Your session has expired. Please sign in again.", "warning")
            return redirect(url_for("auth.login_get", next=request.path))
        app.logger.warning("Backend error %s on %s (request_id=%s): %s", e.status, request.path, rid, e.message)
        status = e.status if 400 <= e.status < 600 else 500
        return render_template("errors/api.html", error=e), status

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
