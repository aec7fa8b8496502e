# ABAC Evaluator - attribute rules layered over the RBAC baseline
# Main function: ABACEvaluator.evaluate_access() -> PermissionDecision (allowed + reason + rule id)
# Flow: validate request -> refresh profile (bounded, fail closed) -> tenant/forbidden -> emergency (audited)
#       -> ownership -> department -> clearance -> context constraints -> RBAC fallback

from __future__ import annotations

import asyncio
import datetime as dt
from functools import lru_cache
from typing import Any, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError
from structlog import get_logger

from caresync.core.aggregator import PermissionAggregator
from caresync.core.catalog import ContextConstraint, RoleCatalog, get_catalog, wildcard_for
from caresync.core.config import get_settings
from caresync.core.errors import MalformedRequestError
from caresync.core.security import correlation_id
from caresync.models.attributes import (
    EnvironmentAttributes,
    PermissionDecision,
    PermissionRequest,
    UserAttributes,
)
from caresync.models.audit import AccessAuditEvent
from caresync.providers.base import ProfileProvider, get_provider


logger = get_logger(__name__)

# Profile fields that replace the request snapshot when a fresh profile is fetched.
_PROFILE_FIELDS = (
    "roles",
    "primary_role",
    "hospital_id",
    "department",
    "seniority",
    "clearance_level",
    "is_active",
    "last_login_at",
)


class AuditSink(Protocol):
    async def emit(self, event: dict) -> str: ...


def _allow(reason: str, rule: str, requires_audit: bool = False) -> PermissionDecision:
    return PermissionDecision(allowed=True, reason=reason, rule=rule, requires_audit=requires_audit)


def _deny(reason: str, rule: str) -> PermissionDecision:
    return PermissionDecision(allowed=False, reason=reason, rule=rule)


def _coerce_request(request: Any) -> PermissionRequest:
    if isinstance(request, PermissionRequest):
        if not request.action or request.resource is None or not request.resource.type:
            raise MalformedRequestError("permission request requires an action and a resource type")
        return request
    if isinstance(request, Mapping):
        try:
            return PermissionRequest.model_validate(request)
        except ValidationError as exc:
            raise MalformedRequestError(f"malformed permission request: {exc}") from exc
    raise MalformedRequestError(f"expected PermissionRequest, got {type(request).__name__}")


class ABACEvaluator:
    def __init__(
        self,
        catalog: RoleCatalog,
        *,
        audit_sink: AuditSink,
        attribute_provider: Optional[ProfileProvider] = None,
        lookup_timeout: Optional[float] = None,
        business_hours: Optional[Tuple[int, int]] = None,
        audit_all: Optional[bool] = None,
    ):
        settings = get_settings()
        self.catalog = catalog
        self.policy = catalog.abac
        self.aggregator = PermissionAggregator(catalog)
        self.audit_sink = audit_sink
        self.attribute_provider = attribute_provider
        self.lookup_timeout = settings.ATTRIBUTE_LOOKUP_TIMEOUT_SEC if lookup_timeout is None else lookup_timeout
        self.business_hours = business_hours or (settings.BUSINESS_HOURS_START, settings.BUSINESS_HOURS_END)
        self.audit_all = settings.AUDIT_ALL_DECISIONS if audit_all is None else audit_all

    async def evaluate_access(self, request: Any) -> PermissionDecision:
        """Decide one request. Raises MalformedRequestError only for malformed input."""
        request = _coerce_request(request)
        user, decision = await self._evaluate(request)
        logger.info(
            "abac.decision",
            user_id=request.user.id if request.user else None,
            resource_type=request.resource.type,
            action=request.action,
            allowed=decision.allowed,
            rule=decision.rule,
        )
        if self.audit_all and user is not None and not decision.requires_audit:
            try:
                await self.audit_sink.emit(self._audit_event(request, user, decision))
            except Exception as exc:
                logger.warning("abac.audit_failed", rule=decision.rule, error=str(exc))
        return decision

    async def _evaluate(self, request: PermissionRequest) -> Tuple[Optional[UserAttributes], PermissionDecision]:
        user = request.user
        if user is None:
            return None, _deny("user not authenticated", "authentication")

        if self.attribute_provider is not None:
            try:
                profile = await asyncio.wait_for(self.attribute_provider.fetch(user.id), timeout=self.lookup_timeout)
            except asyncio.TimeoutError:
                logger.warning("abac.lookup_timeout", user_id=user.id, timeout=self.lookup_timeout)
                return user, _deny("attribute lookup failed", "attribute-lookup")
            except Exception as exc:
                logger.warning("abac.lookup_failed", user_id=user.id, error=str(exc))
                return user, _deny("attribute lookup failed", "attribute-lookup")
            if profile is None:
                return user, _deny("user not authenticated", "authentication")
            user = user.model_copy(update={name: getattr(profile, name) for name in _PROFILE_FIELDS})

        if not user.is_active:
            return user, _deny("user inactive", "authentication")

        user = self._with_environment(user, request.environment)
        held = {tag for tag in (self.catalog.normalize(role) for role in user.roles) if tag}
        resource = request.resource
        permission = request.permission

        if resource.hospital_id is not None and user.hospital_id != resource.hospital_id:
            return user, _deny("tenant isolation violated", "tenant-isolation")
        if permission in self.policy.forbidden or wildcard_for(permission) in self.policy.forbidden:
            return user, _deny("action explicitly forbidden", "forbidden-action")

        if self._emergency_applies(request, held):
            return user, await self._emergency_override(request, user)

        if resource.owner_id is not None and resource.owner_id == user.id and request.action in self.policy.read_actions:
            return user, _allow("self-access", "ownership")

        if resource.department and not self._in_department(user, resource.department, held):
            return user, _deny("out of department scope", "department-scope")

        required = self.policy.sensitivity_clearance.get(resource.sensitivity)
        if required is not None and user.clearance_level.rank < required.rank:
            return user, _deny("insufficient clearance", "clearance")

        for constraint in self.policy.constraints:
            if self._constraint_blocks(constraint, request, user):
                return user, _deny(constraint.reason, constraint.id)

        if self.aggregator.merge_permissions(held).allows(permission):
            return user, _allow("RBAC permission granted", "rbac")
        return user, _deny("RBAC permission denied", "rbac")

    @staticmethod
    def _with_environment(user: UserAttributes, environment: EnvironmentAttributes) -> UserAttributes:
        update = {}
        if user.device_type is None and environment.device_type:
            update["device_type"] = environment.device_type
        if user.location is None and environment.location:
            update["location"] = environment.location
        return user.model_copy(update=update) if update else user

    def _emergency_applies(self, request: PermissionRequest, held: set) -> bool:
        if request.environment.is_emergency is not True:
            return False
        if not held & self.policy.emergency_roles:
            return False
        allowlist = self.policy.emergency_permissions
        return request.permission in allowlist or wildcard_for(request.permission) in allowlist

    async def _emergency_override(self, request: PermissionRequest, user: UserAttributes) -> PermissionDecision:
        decision = _allow("emergency override", "emergency-override", requires_audit=True)
        try:
            await self.audit_sink.emit(self._audit_event(request, user, decision))
        except Exception as exc:
            logger.error("abac.emergency_audit_failed", user_id=user.id, error=str(exc))
            return _deny("emergency audit failed", "emergency-override")
        return decision

    def _in_department(self, user: UserAttributes, department: str, held: set) -> bool:
        if held & self.catalog.hospital_wide_roles:
            return True
        if user.department and user.department.casefold() == department.casefold():
            return True
        override = self.policy.department_override_clearance
        return override is not None and user.clearance_level.rank >= override.rank

    def _constraint_blocks(self, constraint: ContextConstraint, request: PermissionRequest, user: UserAttributes) -> bool:
        if request.resource.sensitivity.rank < constraint.min_sensitivity.rank:
            return False
        if constraint.exempt_clearance is not None and user.clearance_level.rank >= constraint.exempt_clearance.rank:
            return False

        checks = []
        if constraint.after_hours:
            checks.append(self._after_hours(request.environment.time))
        if constraint.device_types:
            checks.append(user.device_type in constraint.device_types)
        if constraint.locations:
            checks.append(user.location in constraint.locations)
        return bool(checks) and all(checks)

    def _after_hours(self, when: dt.datetime) -> bool:
        start, end = self.business_hours
        return when.hour < start or when.hour >= end

    @staticmethod
    def _audit_event(request: PermissionRequest, user: UserAttributes, decision: PermissionDecision) -> dict:
        event = AccessAuditEvent(
            ts=dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            corr_id=correlation_id(),
            action=f"access.{request.action}",
            user_id=user.id,
            tenant=user.hospital_id,
            resource_type=request.resource.type,
            resource_id=request.resource.id,
            allowed=decision.allowed,
            reason=decision.reason,
            rule=decision.rule,
            emergency_declared_by=request.environment.emergency_declared_by,
        )
        return event.model_dump(exclude_none=True)


@lru_cache
def get_evaluator() -> ABACEvaluator:
    from caresync.providers import rest_provider, static_provider  # noqa: F401 - ensure registration
    from caresync.utils.audit_logger import get_audit_logger

    settings = get_settings()
    provider = get_provider(settings.PROFILE_PROVIDER) if settings.PROFILE_PROVIDER else None
    return ABACEvaluator(get_catalog(), audit_sink=get_audit_logger(), attribute_provider=provider)


async def evaluate_access(request: Any) -> PermissionDecision:
    return await get_evaluator().evaluate_access(request)
