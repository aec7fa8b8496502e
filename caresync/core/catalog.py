# Role Catalog - immutable role/permission/hierarchy configuration
# Main functions: load_catalog() parses the access policy YAML, get_catalog() caches the process-wide instance
# Flow: read YAML once at startup -> validate -> freeze into RoleCatalog -> inject into evaluators

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import yaml
from structlog import get_logger

from caresync.core.config import get_settings
from caresync.core.errors import CatalogError
from caresync.models.attributes import ClearanceLevel, Role, Sensitivity


logger = get_logger(__name__)

_PERMISSION_RE = re.compile(r"^[a-z][a-z0-9_]*:(\*|[a-z][a-z0-9_]*)$")

WILDCARD = "*"


class PermissionCategory(str, Enum):
    PATIENT_READ = "patient:read"
    PATIENT_WRITE = "patient:write"
    PATIENT_DELETE = "patient:delete"
    APPOINTMENT_READ = "appointment:read"
    APPOINTMENT_WRITE = "appointment:write"
    APPOINTMENT_DELETE = "appointment:delete"
    APPOINTMENT_CHECK_IN = "appointment:check_in"
    CONSULTATION_READ = "consultation:read"
    CONSULTATION_WRITE = "consultation:write"
    CONSULTATION_START = "consultation:start"
    PRESCRIPTION_READ = "prescription:read"
    PRESCRIPTION_WRITE = "prescription:write"
    PRESCRIPTION_DISPENSE = "prescription:dispense"
    LAB_READ = "lab:read"
    LAB_WRITE = "lab:write"
    LAB_PROCESS = "lab:process"
    LAB_UPLOAD_RESULTS = "lab:upload_results"
    PHARMACY_READ = "pharmacy:read"
    PHARMACY_WRITE = "pharmacy:write"
    PHARMACY_DISPENSE = "pharmacy:dispense"
    PHARMACY_INVENTORY = "pharmacy:inventory"
    BILLING_READ = "billing:read"
    BILLING_WRITE = "billing:write"
    BILLING_PROCESS = "billing:process"
    BILLING_INVOICE = "billing:invoice"
    STAFF_READ = "staff:read"
    STAFF_WRITE = "staff:write"
    STAFF_MANAGE = "staff:manage"
    STAFF_INVITE = "staff:invite"
    SETTINGS_READ = "settings:read"
    SETTINGS_WRITE = "settings:write"
    HOSPITAL_SETTINGS = "hospital:settings"
    REPORTS_READ = "reports:read"
    REPORTS_GENERATE = "reports:generate"
    QUEUE_READ = "queue:read"
    QUEUE_WRITE = "queue:write"
    QUEUE_MANAGE = "queue:manage"
    VITALS_READ = "vitals:read"
    VITALS_WRITE = "vitals:write"
    INVENTORY_READ = "inventory:read"
    INVENTORY_WRITE = "inventory:write"
    INVENTORY_MANAGE = "inventory:manage"
    TELEMEDICINE_READ = "telemedicine:read"
    TELEMEDICINE_WRITE = "telemedicine:write"
    WORKFLOW_READ = "workflow:read"
    WORKFLOW_MANAGE = "workflow:manage"
    ACTIVITY_LOGS_READ = "activity_logs:read"
    PORTAL_ACCESS = "portal:access"
    SYSTEM_MAINTENANCE = "system:maintenance"
    AUDIT_LOGS = "audit:logs"
    COMPLIANCE_REPORTS = "compliance:reports"


def permission_category(permission: str) -> str:
    return permission.split(":", 1)[0]


def wildcard_for(permission: str) -> str:
    return f"{permission_category(permission)}:{WILDCARD}"


@dataclass(frozen=True)
class ContextConstraint:
    """Deny rule over sensitivity plus time, device or location context."""

    id: str
    reason: str
    min_sensitivity: Sensitivity = Sensitivity.RESTRICTED
    after_hours: bool = False
    device_types: FrozenSet[str] = frozenset()
    locations: FrozenSet[str] = frozenset()
    exempt_clearance: Optional[ClearanceLevel] = None


@dataclass(frozen=True)
class AbacPolicy:
    read_actions: FrozenSet[str] = frozenset({"read"})
    forbidden: FrozenSet[str] = frozenset()
    emergency_roles: FrozenSet[str] = frozenset()
    emergency_permissions: FrozenSet[str] = frozenset()
    department_override_clearance: Optional[ClearanceLevel] = None
    sensitivity_clearance: Mapping[Sensitivity, ClearanceLevel] = field(
        default_factory=lambda: MappingProxyType({s: ClearanceLevel.LOW for s in Sensitivity})
    )
    constraints: Tuple[ContextConstraint, ...] = ()


@dataclass(frozen=True)
class RoleCatalog:
    role_permissions: Mapping[str, FrozenSet[str]]
    role_levels: Mapping[str, int]
    admin_panel_roles: FrozenSet[str] = frozenset()
    hospital_wide_roles: FrozenSet[str] = frozenset()
    manage_all_roles: FrozenSet[str] = frozenset()
    strict_access_roles: FrozenSet[str] = frozenset()
    exclusions: FrozenSet[Tuple[str, str]] = frozenset()
    capabilities: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    navigation: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    routes: Mapping[str, FrozenSet[str]] = field(default_factory=lambda: MappingProxyType({}))
    abac: AbacPolicy = field(default_factory=AbacPolicy)

    @property
    def roles(self) -> Tuple[str, ...]:
        return tuple(self.role_levels)

    def normalize(self, role: Any) -> Optional[str]:
        """Return the catalog tag for ``role`` or None when it is unknown."""
        if isinstance(role, Role):
            role = role.value
        if not isinstance(role, str):
            return None
        return role if role in self.role_levels else None

    def known_permissions(self) -> Tuple[str, ...]:
        """Every concrete token granted anywhere or referenced by a capability."""
        tokens: Dict[str, None] = {}
        for perm in PermissionCategory:
            tokens[perm.value] = None
        for grants in self.role_permissions.values():
            for perm in sorted(grants):
                if not perm.endswith(f":{WILDCARD}"):
                    tokens[perm] = None
        for perm in self.capabilities.values():
            tokens[perm] = None
        return tuple(tokens)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoleCatalog":
        roles_section = data.get("roles") or {}
        if not roles_section:
            raise CatalogError("access policy defines no roles")

        role_permissions: Dict[str, FrozenSet[str]] = {}
        role_levels: Dict[str, int] = {}
        for name, entry in roles_section.items():
            entry = entry or {}
            level = entry.get("level", 0)
            if not isinstance(level, int) or isinstance(level, bool):
                raise CatalogError(f"role {name} has non-integer level {level!r}")
            perms = entry.get("permissions") or []
            for perm in perms:
                _check_permission(perm, f"role {name}")
            role_levels[name] = level
            role_permissions[name] = frozenset(perms)

        known = set(role_levels)
        hierarchy = data.get("hierarchy") or {}
        exclusions = set()
        for item in hierarchy.get("exclusions") or []:
            pair = (item.get("manager"), item.get("target"))
            _check_roles(pair, known, "hierarchy.exclusions")
            exclusions.add(pair)

        routes = {}
        for path, allowed_roles in (data.get("routes") or {}).items():
            _check_roles(allowed_roles, known, f"routes {path}")
            routes[path] = frozenset(allowed_roles)

        capabilities = dict(data.get("capabilities") or {})
        for flag, perm in capabilities.items():
            _check_permission(perm, f"capability {flag}")
        navigation = dict(data.get("navigation") or {})
        for path, perm in navigation.items():
            _check_permission(perm, f"navigation {path}")

        return cls(
            role_permissions=MappingProxyType(role_permissions),
            role_levels=MappingProxyType(role_levels),
            admin_panel_roles=_role_set(hierarchy.get("admin_panel_roles"), known, "hierarchy.admin_panel_roles"),
            hospital_wide_roles=_role_set(hierarchy.get("hospital_wide_roles"), known, "hierarchy.hospital_wide_roles"),
            manage_all_roles=_role_set(hierarchy.get("manage_all_roles"), known, "hierarchy.manage_all_roles"),
            strict_access_roles=_role_set(
                hierarchy.get("strict_access_roles"), known, "hierarchy.strict_access_roles"
            ),
            exclusions=frozenset(exclusions),
            capabilities=MappingProxyType(capabilities),
            navigation=MappingProxyType(navigation),
            routes=MappingProxyType(routes),
            abac=_parse_abac(data.get("abac") or {}, known),
        )


def _check_permission(perm: Any, where: str) -> None:
    if not isinstance(perm, str) or not _PERMISSION_RE.match(perm):
        raise CatalogError(f"{where}: invalid permission token {perm!r}")


def _check_roles(roles: Iterable[Any], known: set, where: str) -> None:
    unknown = [role for role in roles if role not in known]
    if unknown:
        raise CatalogError(f"{where}: unknown roles {unknown}")


def _role_set(values: Optional[Iterable[str]], known: set, where: str) -> FrozenSet[str]:
    values = list(values or [])
    _check_roles(values, known, where)
    return frozenset(values)


def _clearance(value: Any, where: str) -> ClearanceLevel:
    try:
        return ClearanceLevel(value)
    except ValueError as exc:
        raise CatalogError(f"{where}: invalid clearance level {value!r}") from exc


def _sensitivity(value: Any, where: str) -> Sensitivity:
    try:
        return Sensitivity(value)
    except ValueError as exc:
        raise CatalogError(f"{where}: invalid sensitivity {value!r}") from exc


def _parse_abac(section: Mapping[str, Any], known: set) -> AbacPolicy:
    emergency = section.get("emergency") or {}
    for perm in list(section.get("forbidden") or []) + list(emergency.get("permissions") or []):
        _check_permission(perm, "abac")

    table = {s: ClearanceLevel.LOW for s in Sensitivity}
    for sens, clearance in (section.get("sensitivity_clearance") or {}).items():
        table[_sensitivity(sens, "abac.sensitivity_clearance")] = _clearance(clearance, "abac.sensitivity_clearance")

    override = section.get("department_override_clearance")
    constraints = []
    for item in section.get("constraints") or []:
        exempt = item.get("exempt_clearance")
        constraints.append(
            ContextConstraint(
                id=item["id"],
                reason=item["reason"],
                min_sensitivity=_sensitivity(item.get("min_sensitivity", "restricted"), f"constraint {item['id']}"),
                after_hours=bool(item.get("after_hours", False)),
                device_types=frozenset(item.get("device_types") or []),
                locations=frozenset(item.get("locations") or []),
                exempt_clearance=_clearance(exempt, f"constraint {item['id']}") if exempt else None,
            )
        )

    return AbacPolicy(
        read_actions=frozenset(section.get("read_actions") or ["read"]),
        forbidden=frozenset(section.get("forbidden") or []),
        emergency_roles=_role_set(emergency.get("eligible_roles"), known, "abac.emergency.eligible_roles"),
        emergency_permissions=frozenset(emergency.get("permissions") or []),
        department_override_clearance=_clearance(override, "abac.department_override_clearance") if override else None,
        sensitivity_clearance=MappingProxyType(table),
        constraints=tuple(constraints),
    )


def load_catalog(path: Path) -> RoleCatalog:
    try:
        data = yaml.safe_load(Path(path).read_text("utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise CatalogError(f"cannot read access policy {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise CatalogError(f"access policy {path} is not a mapping")
    catalog = RoleCatalog.from_dict(data)
    logger.info("catalog.loaded", path=str(path), roles=len(catalog.role_levels))
    return catalog


@lru_cache
def get_catalog() -> RoleCatalog:
    return load_catalog(get_settings().policy_path)
