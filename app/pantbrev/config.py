import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str

    backend_url: str
    supabase_url: str
    supabase_key: str

    api_timeout_seconds: float
    api_cache_ttl_seconds: float
    api_retry_delay_seconds: float
    api_retry_max_delay_seconds: float
    api_max_retries: int
    session_refresh_margin_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        backend_url=_getenv("BACKEND_URL", "http://localhost:8000"),
        supabase_url=_getenv("SUPABASE_URL", ""),
        supabase_key=_getenv("SUPABASE_KEY", ""),
        api_timeout_seconds=_getfloat("API_TIMEOUT_SECONDS", 10.0),
        api_cache_ttl_seconds=_getfloat("API_CACHE_TTL_SECONDS", 300.0),
        api_retry_delay_seconds=_getfloat("API_RETRY_DELAY_SECONDS", 2.0),
        api_retry_max_delay_seconds=_getfloat("API_RETRY_MAX_DELAY_SECONDS", 30.0),
        api_max_retries=int(_getfloat("API_MAX_RETRIES", 3)),
        session_refresh_margin_seconds=int(_getfloat("SESSION_REFRESH_MARGIN_SECONDS", 300)),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "BACKEND_URL": s.backend_url,
        "SUPABASE_URL": s.supabase_url,
        "SUPABASE_KEY": s.supabase_key,
        "API_TIMEOUT_SECONDS": s.api_timeout_seconds,
        "API_CACHE_TTL_SECONDS": s.api_cache_ttl_seconds,
        "API_RETRY_DELAY_SECONDS": s.api_retry_delay_seconds,
        "API_RETRY_MAX_DELAY_SECONDS": s.api_retry_max_delay_seconds,
        "API_MAX_RETRIES": s.api_max_retries,
        "SESSION_REFRESH_MARGIN_SECONDS": s.session_refresh_margin_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
