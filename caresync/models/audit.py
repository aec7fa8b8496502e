from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class AccessAuditEvent(BaseModel):
    ts: str
    corr_id: str
    action: str
    user_id: str
    tenant: Optional[str] = None
    resource_type: str
    resource_id: str
    allowed: bool
    reason: str
    rule: str
    emergency_declared_by: Optional[str] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None
