# Internal Service API - liveness and loaded policy summary
# Main function: health() reports status and the size of the loaded role catalog

from __future__ import annotations

from fastapi import APIRouter, Depends

from caresync.api.deps import get_role_catalog
from caresync.core.catalog import RoleCatalog


router = APIRouter(tags=["internal"])


@router.get("/health")
async def health(catalog: RoleCatalog = Depends(get_role_catalog)) -> dict:
    return {"status": "ok", "roles": len(catalog.role_levels)}
