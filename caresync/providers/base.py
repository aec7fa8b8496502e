from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Optional

from caresync.models.attributes import UserAttributes


class ProfileProvider(ABC):
    provider_id: str

    def __init__(self, provider_id: str):
        self.provider_id = provider_id

    @abstractmethod
    async def fetch(self, user_id: str) -> Optional[UserAttributes]:
        """Return the current profile for ``user_id`` or None if there is none."""


_registry: Dict[str, ProfileProvider] = {}


def register_provider(provider: ProfileProvider) -> None:
    _registry[provider.provider_id] = provider


def get_provider(provider_id: str) -> ProfileProvider:
    provider = _registry.get(provider_id)
    if not provider:
        raise KeyError(f"profile provider {provider_id} not registered")
    return provider


def list_providers() -> list[str]:
    return list(_registry.keys())
