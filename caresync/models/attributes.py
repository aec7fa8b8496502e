from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    RECEPTIONIST = "receptionist"
    PHARMACIST = "pharmacist"
    LAB_TECHNICIAN = "lab_technician"
    PATIENT = "patient"


class ClearanceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _CLEARANCE_ORDER.index(self)


class Sensitivity(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"

    @property
    def rank(self) -> int:
        return _SENSITIVITY_ORDER.index(self)


_CLEARANCE_ORDER = list(ClearanceLevel)
_SENSITIVITY_ORDER = list(Sensitivity)


class AccessLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    EMERGENCY = "emergency"


class UserAttributes(BaseModel):
    """Per-request snapshot of the caller. Never cached across requests."""

    id: str = Field(min_length=1)
    roles: List[str] = Field(default_factory=list)
    primary_role: Optional[str] = None
    hospital_id: Optional[str] = None
    department: Optional[str] = None
    seniority: Optional[int] = None
    clearance_level: ClearanceLevel = ClearanceLevel.LOW
    is_active: bool = True
    last_login_at: Optional[dt.datetime] = None
    device_type: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ResourceAttributes(BaseModel):
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    owner_id: Optional[str] = None
    hospital_id: Optional[str] = None
    department: Optional[str] = None
    sensitivity: Sensitivity = Sensitivity.INTERNAL
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(extra="ignore")


class EnvironmentAttributes(BaseModel):
    time: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    location: Optional[str] = None
    is_emergency: bool = False
    access_level: AccessLevel = AccessLevel.NORMAL
    emergency_declared_by: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class PermissionRequest(BaseModel):
    user: Optional[UserAttributes] = None
    resource: ResourceAttributes
    action: str = Field(min_length=1)
    environment: EnvironmentAttributes = Field(default_factory=EnvironmentAttributes)

    @property
    def permission(self) -> str:
        return f"{self.resource.type}:{self.action}"


# Reasons that may be shown to the denied caller as-is.
DISCLOSABLE_REASONS = frozenset(
    {
        "user not authenticated",
        "user inactive",
        "out of department scope",
        "insufficient clearance",
        "outside permitted hours",
        "untrusted device",
        "location not permitted",
        "RBAC permission denied",
    }
)

GENERIC_DENIAL = "Access denied"


class PermissionDecision(BaseModel):
    allowed: bool
    reason: str = Field(min_length=1)
    rule: str = "rbac"
    requires_audit: bool = False

    model_config = ConfigDict(frozen=True)

    def public_reason(self) -> str:
        if self.allowed or self.reason in DISCLOSABLE_REASONS:
            return self.reason
        return GENERIC_DENIAL
