"""Session state consumed by the coordinator, plus Supabase password sign-in."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import AuthError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    tenant_scope: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.access_token and self.tenant_scope)


class SessionProvider:
    """Holds the current session; ``authenticated`` needs both a token and a shop."""

    def __init__(self, session: Session | None = None) -> None:
        self._session = session or Session()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def authenticated(self) -> bool:
        return self._session.authenticated

    @property
    def tenant_scope(self) -> Optional[str]:
        return self._session.tenant_scope

    def set_session(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = Session()


class SupabaseAuth:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
        self.supabase_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_KEY") or ""
        self.profiles_table = os.getenv("SUPABASE_PROFILES_TABLE", "profiles")
        self._transport = transport

    async def sign_in(self, email: str, password: str) -> Session:
        """Exchange credentials for a session scoped to the user's shop."""
        payload = await self._call(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        token = str(payload.get("access_token") or "").strip()
        user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
        user_id = str(user.get("id") or "").strip()
        if not token or not user_id:
            raise AuthError("Sign-in response did not include a session", operation="sign_in")

        profile = await self.fetch_profile(token, user_id)
        return Session(
            access_token=token,
            user_id=user_id,
            tenant_scope=_optional(profile.get("shop_id")),
            full_name=_optional(profile.get("full_name")),
        )

    async def fetch_user(self, token: str) -> Dict[str, Any]:
        payload = await self._call("GET", "/auth/v1/user", token=token)
        user_id = str(payload.get("id") or "").strip()
        if not user_id:
            raise AuthError("Invalid authentication token", operation="fetch_user")
        payload["id"] = user_id
        return payload

    async def fetch_profile(self, token: str, user_id: str) -> Dict[str, Any]:
        rows = await self._call(
            "GET",
            f"/rest/v1/{self.profiles_table}",
            params={"select": "id,shop_id,full_name,role", "id": f"eq.{user_id}", "limit": 1},
            token=token,
        )
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        logger.warning("No profile found for user %s; session has no shop scope", user_id)
        return {}

    async def _call(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Any = None,
        token: str | None = None,
    ) -> Any:
        if not (self.supabase_url and self.supabase_key):
            raise TransportError("Supabase configuration is incomplete", operation=path)

        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {token or self.supabase_key}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.supabase_url}{path}",
                    params=params,
                    json=json,
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (400, 401, 403):
                raise AuthError("Invalid credentials or session", operation=path) from exc
            raise TransportError(f"Supabase auth request failed ({status})", operation=path) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Supabase auth request failed: {exc}", operation=path) from exc
        except ValueError as exc:
            raise TransportError("Supabase auth returned a non-JSON body", operation=path) from exc


def _optional(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    return text or None
