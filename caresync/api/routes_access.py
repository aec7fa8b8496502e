# Access API - decision and capability endpoints consumed by UI enforcement points
# Main functions: my_permissions() for capability flags, evaluate() for ABAC decisions, check_route() for guards
# Flow: verify token -> build caller attributes from claims -> evaluate -> return decision with safe reason

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from caresync.api.deps import get_abac_evaluator, get_claims, get_role_catalog, require_permissions
from caresync.core.abac import ABACEvaluator
from caresync.core.aggregator import PermissionAggregator
from caresync.core.catalog import RoleCatalog
from caresync.core.guard import RouteGuard
from caresync.core.hierarchy import RoleHierarchy
from caresync.core.rbac import RBACEvaluator
from caresync.core.security import correlation_id
from caresync.models.attributes import (
    AccessLevel,
    EnvironmentAttributes,
    PermissionRequest,
    ResourceAttributes,
    UserAttributes,
)


router = APIRouter(prefix="/access", tags=["access"])


class EvaluateBody(BaseModel):
    resource: ResourceAttributes
    action: str = Field(min_length=1)
    environment: EnvironmentAttributes = Field(default_factory=EnvironmentAttributes)


def _user_from_claims(claims: Dict[str, Any]) -> UserAttributes:
    try:
        roles = list(claims.get("roles") or [])
        return UserAttributes(
            id=str(claims["sub"]),
            roles=roles,
            primary_role=claims.get("primary_role") or (roles[0] if roles else None),
            hospital_id=claims.get("hospital_id"),
            department=claims.get("department"),
            seniority=claims.get("seniority"),
            clearance_level=claims.get("clearance_level") or "low",
            is_active=bool(claims.get("is_active", True)),
        )
    except (KeyError, TypeError, ValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "Invalid identity claims", "corr_id": correlation_id()},
        ) from exc


def _environment(body: EvaluateBody, request: Request, claims: Dict[str, Any]) -> EnvironmentAttributes:
    update: Dict[str, Any] = {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("User-Agent"),
    }
    # Emergencies are asserted by an operator through the identity provider, never by the request body.
    if body.environment.is_emergency and claims.get("emergency") is True:
        update["access_level"] = AccessLevel.EMERGENCY
        update["emergency_declared_by"] = claims.get("emergency_declared_by") or str(claims["sub"])
    else:
        update["is_emergency"] = False
        update["emergency_declared_by"] = None
        if body.environment.access_level is AccessLevel.EMERGENCY:
            update["access_level"] = AccessLevel.NORMAL
    return body.environment.model_copy(update=update)


@router.get("/me/permissions")
async def my_permissions(
    claims: Dict[str, Any] = Depends(get_claims),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    roles = list(claims.get("roles") or [])
    merged = PermissionAggregator(catalog).merge_permissions(roles)
    rbac = RBACEvaluator(catalog)
    hierarchy = RoleHierarchy(catalog)

    routes: List[str] = []
    for role in roles:
        for path in rbac.get_accessible_routes(role):
            if path not in routes:
                routes.append(path)

    return JSONResponse(
        {
            "sub": claims.get("sub"),
            "roles": [role for role in roles if rbac.is_valid_role(role)],
            "permissions": merged.granted(),
            "capabilities": dict(merged.capabilities),
            "routes": routes,
            "admin_panel": any(hierarchy.can_access_admin_panel(role) for role in roles),
        }
    )


@router.post("/evaluate")
async def evaluate(
    body: EvaluateBody,
    request: Request,
    claims: Dict[str, Any] = Depends(get_claims),
    evaluator: ABACEvaluator = Depends(get_abac_evaluator),
):
    permission_request = PermissionRequest(
        user=_user_from_claims(claims),
        resource=body.resource,
        action=body.action,
        environment=_environment(body, request, claims),
    )
    decision = await evaluator.evaluate_access(permission_request)
    return JSONResponse(
        {
            "allowed": decision.allowed,
            "reason": decision.public_reason(),
            "rule": decision.rule if decision.allowed else None,
            "requires_audit": decision.requires_audit,
        }
    )


@router.get("/roles/manageable")
async def manageable_roles(
    claims: Dict[str, Any] = Depends(require_permissions("staff:manage")),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    hierarchy = RoleHierarchy(catalog)
    manageable: List[str] = []
    for role in claims.get("roles") or []:
        for target in hierarchy.get_accessible_roles(role):
            if target not in manageable:
                manageable.append(target)
    return JSONResponse({"roles": manageable})


@router.get("/routes/check")
async def check_route(
    path: str = Query(min_length=1),
    claims: Dict[str, Any] = Depends(get_claims),
    catalog: RoleCatalog = Depends(get_role_catalog),
):
    result = RouteGuard(catalog).guard_route(path, claims.get("roles"))
    return JSONResponse({"path": path, "state": result.state.value, "message": result.message})
