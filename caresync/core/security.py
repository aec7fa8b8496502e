from __future__ import annotations

import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from .config import get_dev_crypto_material, get_settings


_correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


def correlation_id(force_new: bool = False, value: str | None = None) -> str:
    """Return correlation id for current context, creating one if missing."""
    if value:
        _correlation_id_ctx.set(value)
        return value
    current = "" if force_new else _correlation_id_ctx.get()
    if current:
        return current
    new_id = uuid.uuid4().hex
    _correlation_id_ctx.set(new_id)
    return new_id


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "UNAUTHORIZED", "message": message, "corr_id": correlation_id()},
    )


def _public_keys() -> dict[str, Any]:
    jwks, _ = get_dev_crypto_material()
    return {key["kid"]: key for key in jwks.get("keys", []) if key.get("kid")}


def decode_caller_jwt(bearer: Optional[str]) -> Dict[str, Any]:
    """Validate incoming Bearer token and return the caller's identity claims."""
    if not bearer or not bearer.lower().startswith("bearer "):
        raise _unauthorized("Missing bearer token")

    token = bearer.split(" ", 1)[1].strip()
    if not token:
        raise _unauthorized("Invalid bearer token")

    settings = get_settings()

    try:
        header = jwt.get_unverified_header(token)
        key = _public_keys().get(header.get("kid"))
        if not key:
            raise _unauthorized("Unknown token key id")
        claims = jwt.decode(token, key, algorithms=[settings.JWT_ALG], audience=settings.JWT_AUDIENCE, issuer=settings.JWT_ISSUER)
    except JWTError as exc:
        raise _unauthorized(f"JWT validation failed: {exc}") from exc

    exp = claims.get("exp")
    if exp and int(exp) < int(time.time()):
        raise _unauthorized("Token expired")

    claims.setdefault("roles", [])
    claims.setdefault("emergency", False)
    return claims


def issue_caller_jwt(subject: str, roles: List[str], ttl: int = 600, **extra: Any) -> str:
    """Issue a short-lived caller JWT signed with the dev key (dev and tests only)."""
    settings = get_settings()
    _, private_key = get_dev_crypto_material()
    now = int(time.time())
    payload = {
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "sub": subject,
        "iat": now,
        "exp": now + ttl,
        "roles": roles,
        **extra,
    }
    return jwt.encode(payload, private_key, algorithm=settings.JWT_ALG, headers={"kid": "dev-key"})
