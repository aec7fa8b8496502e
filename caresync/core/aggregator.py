# Permission Aggregator - merges static grants across every role a user holds
# Main functions: PermissionAggregator.merge_permissions() -> PermissionSet
# Flow: all-false baseline -> OR in each held role's grants -> derive capability flags

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping

from caresync.core.catalog import RoleCatalog, get_catalog, wildcard_for
from caresync.core.rbac import RBACEvaluator


@dataclass(frozen=True)
class PermissionSet:
    grants: FrozenSet[str]
    permissions: Mapping[str, bool]
    capabilities: Mapping[str, bool]

    def allows(self, permission: str) -> bool:
        if not isinstance(permission, str):
            return False
        return permission in self.grants or wildcard_for(permission) in self.grants

    def granted(self) -> List[str]:
        return [perm for perm, allowed in self.permissions.items() if allowed]


class PermissionAggregator:
    def __init__(self, catalog: RoleCatalog):
        self.catalog = catalog
        self.rbac = RBACEvaluator(catalog)

    def merge_permissions(self, roles: Iterable[Any]) -> PermissionSet:
        held = {tag for tag in (self.catalog.normalize(role) for role in roles or []) if tag}

        grants: set = set()
        for tag in held:
            grants |= self.catalog.role_permissions[tag]

        permissions: Dict[str, bool] = dict.fromkeys(self.catalog.known_permissions(), False)
        for perm in permissions:
            permissions[perm] = any(self.rbac.has_permission(tag, perm) for tag in held)

        capabilities = {
            flag: any(self.rbac.has_permission(tag, perm) for tag in held)
            for flag, perm in self.catalog.capabilities.items()
        }
        return PermissionSet(
            grants=frozenset(grants),
            permissions=MappingProxyType(permissions),
            capabilities=MappingProxyType(capabilities),
        )


def has_any_role(user_roles: Iterable[Any], required_roles: Iterable[Any]) -> bool:
    held = {_tag(role) for role in user_roles or []}
    return any(_tag(role) in held for role in required_roles)


def has_all_roles(user_roles: Iterable[Any], required_roles: Iterable[Any]) -> bool:
    held = {_tag(role) for role in user_roles or []}
    return all(_tag(role) in held for role in required_roles)


def _tag(role: Any) -> Any:
    return getattr(role, "value", role)


def merge_permissions(roles: Iterable[Any]) -> PermissionSet:
    return PermissionAggregator(get_catalog()).merge_permissions(roles)
