# RBAC Evaluator - static role -> permission checks with category wildcards
# Main functions: RBACEvaluator.has_permission() and friends; module-level helpers bound to the default catalog
# Flow: normalize role -> exact token match -> `category:*` match -> deny

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from caresync.core.catalog import RoleCatalog, get_catalog, wildcard_for


class RBACEvaluator:
    def __init__(self, catalog: RoleCatalog):
        self.catalog = catalog

    def is_valid_role(self, role: Any) -> bool:
        return self.catalog.normalize(role) is not None

    def has_permission(self, role: Any, permission: str) -> bool:
        tag = self.catalog.normalize(role)
        if tag is None or not isinstance(permission, str):
            return False
        grants = self.catalog.role_permissions[tag]
        if permission in grants:
            return True
        return wildcard_for(permission) in grants

    def has_any_permission(self, role: Any, permissions: Iterable[str]) -> bool:
        return any(self.has_permission(role, perm) for perm in permissions)

    def has_all_permissions(self, role: Any, permissions: Iterable[str]) -> bool:
        # Vacuously true for an empty list, whatever the role.
        return all(self.has_permission(role, perm) for perm in permissions)

    def get_role_permissions(self, role: Any) -> List[str]:
        tag = self.catalog.normalize(role)
        if tag is None:
            return []
        return sorted(self.catalog.role_permissions[tag])

    def get_accessible_routes(self, role: Any) -> List[str]:
        routes = ["/dashboard"]
        for path, perm in self.catalog.navigation.items():
            if self.has_permission(role, perm):
                routes.append(path)
        return routes


def _default() -> RBACEvaluator:
    return RBACEvaluator(get_catalog())


def has_permission(role: Optional[Any], permission: str) -> bool:
    return _default().has_permission(role, permission)


def has_any_permission(role: Optional[Any], permissions: Iterable[str]) -> bool:
    return _default().has_any_permission(role, permissions)


def has_all_permissions(role: Optional[Any], permissions: Iterable[str]) -> bool:
    return _default().has_all_permissions(role, permissions)


def get_role_permissions(role: Optional[Any]) -> List[str]:
    return _default().get_role_permissions(role)


def get_accessible_routes(role: Optional[Any]) -> List[str]:
    return _default().get_accessible_routes(role)


def is_valid_role(role: Any) -> bool:
    return _default().is_valid_role(role)
