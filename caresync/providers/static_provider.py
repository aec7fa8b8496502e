from __future__ import annotations

from typing import Dict, Iterable, Optional

from structlog import get_logger

from caresync.models.attributes import UserAttributes

from .base import ProfileProvider, register_provider


logger = get_logger(__name__)


class StaticProfileProvider(ProfileProvider):
    """In-memory profile store for local development and tests."""

    def __init__(self, profiles: Iterable[UserAttributes] = (), provider_id: str = "static") -> None:
        super().__init__(provider_id)
        self._profiles: Dict[str, UserAttributes] = {profile.id: profile for profile in profiles}

    def put(self, profile: UserAttributes) -> None:
        self._profiles[profile.id] = profile

    async def fetch(self, user_id: str) -> Optional[UserAttributes]:
        profile = self._profiles.get(user_id)
        logger.debug("profile_provider.fetch", provider=self.provider_id, user_id=user_id, found=profile is not None)
        return profile


register_provider(StaticProfileProvider())
