from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import jwt
from supabase import Client, create_client

from app.pantbrev.errors import AuthError
from app.pantbrev.models import User


def token_expiry(access_token: str) -> int | None:
    """Read `exp` from an access token without verifying the signature."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    return int(exp) if isinstance(exp, (int, float)) else None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str
    expires_at: int | None
    user: User

    def expires_within(self, seconds: int, now: float | None = None) -> bool:
        expires_at = self.expires_at if self.expires_at is not None else token_expiry(self.access_token)
        if expires_at is None:
            return False
        now = time.time() if now is None else now
        return expires_at <= int(now) + seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "user": self.user.to_session(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthSession | None":
        try:
            return cls(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=data.get("expires_at"),
                user=User.from_session(data["user"]),
            )
        except (KeyError, TypeError):
            return None


def _user_from_supabase(u: Any) -> User:
    return User.from_auth(u.id, getattr(u, "email", None), getattr(u, "user_metadata", None))


def _session_from_response(res: Any) -> AuthSession:
    s = getattr(res, "session", None)
    u = getattr(res, "user", None) or getattr(s, "user", None)
    if s is None or u is None:
        raise AuthError("No session returned by auth service")
    return AuthSession(
        access_token=s.access_token,
        refresh_token=s.refresh_token,
        expires_at=getattr(s, "expires_at", None),
        user=_user_from_supabase(u),
    )


class SupabaseAuth:
    """
    Thin wrapper over the Supabase auth API.

    A fresh client is built per call: the Supabase client keeps session state
    internally and this server handles many users.
    """

    def __init__(self, url: str, key: str):
        self.url = url
        self.key = key

    def _client(self) -> Client:
        if not self.url or not self.key:
            raise AuthError("SUPABASE_URL and SUPABASE_KEY must be configured.")
        return create_client(self.url, self.key)

    def sign_in(self, email: str, password: str) -> AuthSession:
        client = self._client()
        try:
            res = client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            raise AuthError(str(e)) from e
        return _session_from_response(res)

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> None:
        client = self._client()
        try:
            client.auth.sign_up({"email": email, "password": password, "options": {"data": metadata}})
        except Exception as e:
            raise AuthError(str(e)) from e

    def send_password_reset(self, email: str) -> None:
        client = self._client()
        try:
            client.auth.reset_password_for_email(email)
        except Exception as e:
            raise AuthError(str(e)) from e

    def refresh(self, refresh_token: str) -> AuthSession:
        client = self._client()
        try:
            res = client.auth.refresh_session(refresh_token)
        except Exception as e:
            raise AuthError(f"Failed to refresh session: {e}") from e
        return _session_from_response(res)

    def sign_out(self, auth_session: AuthSession) -> None:
        client = self._client()
        try:
            client.auth.set_session(auth_session.access_token, auth_session.refresh_token)
            client.auth.sign_out()
        except Exception as e:
            raise AuthError(str(e)) from e

    def update_user(self, auth_session: AuthSession, *, email: str | None, metadata: dict[str, Any]) -> User:
        attributes: dict[str, Any] = {"data": metadata}
        if email and email != auth_session.user.email:
            attributes["email"] = email
        client = self._client()
        try:
            client.auth.set_session(auth_session.access_token, auth_session.refresh_token)
            res = client.auth.update_user(attributes)
        except Exception as e:
            raise AuthError(str(e)) from e
        if res is None or res.user is None:
            raise AuthError("No user returned by auth service")
        return _user_from_supabase(res.user)
