# Role Hierarchy - delegated management decisions between roles
# Main functions: RoleHierarchy.can_manage_role(), get_accessible_roles(), can_access_admin_panel()
# Flow: unknown role -> deny; exclusion table -> deny; manage-all grant -> allow; else compare levels

from __future__ import annotations

from typing import Any, List

from caresync.core.catalog import RoleCatalog, get_catalog


class RoleHierarchy:
    """Levels are used for management decisions only, never for clinical actions."""

    def __init__(self, catalog: RoleCatalog):
        self.catalog = catalog

    def get_role_level(self, role: Any) -> int:
        tag = self.catalog.normalize(role)
        if tag is None:
            return 0
        return self.catalog.role_levels[tag]

    def can_manage_role(self, manager_role: Any, target_role: Any) -> bool:
        manager = self.catalog.normalize(manager_role)
        target = self.catalog.normalize(target_role)
        if manager is None or target is None:
            return False
        # Table entries are applied before any level arithmetic.
        if (manager, target) in self.catalog.exclusions:
            return False
        if manager in self.catalog.manage_all_roles:
            return manager != target
        return self.catalog.role_levels[manager] > self.catalog.role_levels[target]

    def can_access_admin_panel(self, role: Any) -> bool:
        tag = self.catalog.normalize(role)
        return tag is not None and tag in self.catalog.admin_panel_roles

    def get_accessible_roles(self, role: Any) -> List[str]:
        return [target for target in self.catalog.roles if self.can_manage_role(role, target)]

    def validate_role_hierarchy(self, higher_role: Any, lower_role: Any) -> bool:
        higher = self.catalog.normalize(higher_role)
        lower = self.catalog.normalize(lower_role)
        if higher is None or lower is None:
            return False
        return self.catalog.role_levels[higher] > self.catalog.role_levels[lower]

    def can_access_role(self, user_role: Any, target_role: Any) -> bool:
        user = self.catalog.normalize(user_role)
        target = self.catalog.normalize(target_role)
        if user is None or target is None:
            return False
        levels = self.catalog.role_levels
        if user in self.catalog.strict_access_roles:
            return levels[target] < levels[user]
        return levels[target] <= levels[user]


def _default() -> RoleHierarchy:
    return RoleHierarchy(get_catalog())


def get_role_level(role: Any) -> int:
    return _default().get_role_level(role)


def can_manage_role(manager_role: Any, target_role: Any) -> bool:
    return _default().can_manage_role(manager_role, target_role)


def can_access_admin_panel(role: Any) -> bool:
    return _default().can_access_admin_panel(role)


def get_accessible_roles(role: Any) -> List[str]:
    return _default().get_accessible_roles(role)


def validate_role_hierarchy(higher_role: Any, lower_role: Any) -> bool:
    return _default().validate_role_hierarchy(higher_role, lower_role)
