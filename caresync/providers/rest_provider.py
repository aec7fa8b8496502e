# REST Profile Provider - reads the caller's current profile from the hosted backend
# Main function: fetch() queries the profiles table through the backend's REST gateway
# Flow: GET profiles?id=eq.<user> -> map row to UserAttributes -> None when no row

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from structlog import get_logger

from caresync.core.config import get_settings
from caresync.core.errors import AttributeLookupError
from caresync.models.attributes import UserAttributes

from .base import ProfileProvider, register_provider


logger = get_logger(__name__)


class RestProfileProvider(ProfileProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__("rest")
        settings = get_settings()
        self.base_url = (base_url or settings.PROFILE_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PROFILE_API_KEY
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    async def fetch(self, user_id: str) -> Optional[UserAttributes]:
        if not self.base_url:
            raise AttributeLookupError("PROFILE_API_URL is not configured")
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/rest/v1/profiles",
                    params={"id": f"eq.{user_id}", "select": "*"},
                    headers=self._headers(),
                )
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPError as exc:
            raise AttributeLookupError(f"profile lookup for {user_id} failed: {exc}") from exc
        logger.info("profile_provider.fetch", provider=self.provider_id, user_id=user_id, found=bool(rows))
        if not rows:
            return None
        return _profile_from_row(rows[0])


def _profile_from_row(row: Dict[str, Any]) -> UserAttributes:
    roles = row.get("roles")
    if roles is None:
        roles = [row["role"]] if row.get("role") else []
    return UserAttributes(
        id=str(row["id"]),
        roles=list(roles),
        primary_role=row.get("primary_role") or (roles[0] if roles else None),
        hospital_id=row.get("hospital_id"),
        department=row.get("department"),
        seniority=row.get("seniority"),
        clearance_level=row.get("clearance_level") or "low",
        is_active=bool(row.get("is_active", True)),
        last_login_at=row.get("last_login_at"),
    )


register_provider(RestProfileProvider())
