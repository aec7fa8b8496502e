from __future__ import annotations

from typing import Any, Callable, Dict

from fastapi import Depends, HTTPException, Request, status

from caresync.core.abac import ABACEvaluator, get_evaluator
from caresync.core.catalog import RoleCatalog, get_catalog
from caresync.core.guard import RouteGuard
from caresync.core.security import correlation_id, decode_caller_jwt


async def get_claims(request: Request) -> Dict[str, Any]:
    bearer = request.headers.get("Authorization")
    claims = decode_caller_jwt(bearer)
    request.state.claims = claims
    request.state.correlation_id = correlation_id()
    return claims


def get_role_catalog() -> RoleCatalog:
    return get_catalog()


def get_abac_evaluator() -> ABACEvaluator:
    return get_evaluator()


def _forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "FORBIDDEN", "message": message, "corr_id": correlation_id()},
    )


def require_roles(*roles: str) -> Callable[..., Any]:
    """Route guard: caller must hold at least one of ``roles``."""

    async def dependency(
        claims: Dict[str, Any] = Depends(get_claims),
        catalog: RoleCatalog = Depends(get_role_catalog),
    ) -> Dict[str, Any]:
        result = RouteGuard(catalog).evaluate(claims.get("roles"), required_roles=roles)
        if not result.authorized:
            raise _forbidden(result.message or "Access Denied")
        return claims

    return dependency


def require_permissions(*permissions: str) -> Callable[..., Any]:
    """Route guard: caller's merged roles must grant every permission."""

    async def dependency(
        claims: Dict[str, Any] = Depends(get_claims),
        catalog: RoleCatalog = Depends(get_role_catalog),
    ) -> Dict[str, Any]:
        result = RouteGuard(catalog).evaluate(claims.get("roles"), required_permissions=permissions)
        if not result.authorized:
            raise _forbidden(result.message or "Access Denied")
        return claims

    return dependency
