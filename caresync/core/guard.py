from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from caresync.core.aggregator import PermissionAggregator, has_any_role
from caresync.core.catalog import RoleCatalog, get_catalog
from caresync.models.attributes import DISCLOSABLE_REASONS, GENERIC_DENIAL


ACCESS_DENIED_TITLE = "Access Denied"


class GuardState(str, Enum):
    AUTHENTICATING = "authenticating"
    AUTHORIZED = "authorized"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class GuardResult:
    state: GuardState
    reason: Optional[str] = None

    @property
    def authorized(self) -> bool:
        return self.state is GuardState.AUTHORIZED

    @property
    def message(self) -> Optional[str]:
        """Text for the access-denied view; internal reasons collapse to a generic line."""
        if self.state is not GuardState.UNAUTHORIZED:
            return None
        if self.reason in DISCLOSABLE_REASONS:
            return f"{ACCESS_DENIED_TITLE}: {self.reason}"
        return f"{ACCESS_DENIED_TITLE}: {GENERIC_DENIAL}"


class RouteGuard:
    def __init__(self, catalog: RoleCatalog):
        self.catalog = catalog
        self.aggregator = PermissionAggregator(catalog)

    def evaluate(
        self,
        roles: Optional[Iterable[Any]],
        *,
        is_loading: bool = False,
        required_roles: Iterable[Any] = (),
        required_permissions: Iterable[str] = (),
    ) -> GuardResult:
        if is_loading:
            return GuardResult(GuardState.AUTHENTICATING)
        held = [tag for tag in (self.catalog.normalize(role) for role in roles or []) if tag]
        if not held:
            return GuardResult(GuardState.UNAUTHORIZED, "user not authenticated")

        required_roles = list(required_roles)
        if required_roles and not has_any_role(held, required_roles):
            return GuardResult(GuardState.UNAUTHORIZED, "role not permitted")

        required_permissions = list(required_permissions)
        if required_permissions:
            merged = self.aggregator.merge_permissions(held)
            if not all(merged.allows(perm) for perm in required_permissions):
                return GuardResult(GuardState.UNAUTHORIZED, "RBAC permission denied")

        return GuardResult(GuardState.AUTHORIZED)

    def guard_route(self, path: str, roles: Optional[Iterable[Any]], *, is_loading: bool = False) -> GuardResult:
        allowed_roles = self.catalog.routes.get(path)
        if allowed_roles is None:
            # Unlisted routes stay closed.
            if is_loading:
                return GuardResult(GuardState.AUTHENTICATING)
            return GuardResult(GuardState.UNAUTHORIZED, "unknown route")
        return self.evaluate(roles, is_loading=is_loading, required_roles=sorted(allowed_roles))


def evaluate_guard(roles: Optional[Iterable[Any]], **kwargs: Any) -> GuardResult:
    return RouteGuard(get_catalog()).evaluate(roles, **kwargs)


def guard_route(path: str, roles: Optional[Iterable[Any]], *, is_loading: bool = False) -> GuardResult:
    return RouteGuard(get_catalog()).guard_route(path, roles, is_loading=is_loading)
