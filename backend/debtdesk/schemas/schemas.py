"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ── Pagination ──

class PaginatedResponse(BaseModel):
    total: int
    page: int
    size: int
    pages: int


# ── Delegations ──

class DelegationCreate(BaseModel):
    case_ids: list[str]
    delegated_to_employee_code: str = Field(..., min_length=1)
    expiry_date: datetime
    notes: str | None = None


class DelegationSchema(BaseModel):
    delegation_id: str
    case_id: str
    delegated_by_employee_code: str
    delegated_to_employee_code: str
    delegation_date: datetime
    expiry_date: datetime
    status: str
    notes: str | None = None
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    expired_at: datetime | None = None
    customer_name: str | None = None
    delegator_name: str | None = None
    delegatee_name: str | None = None


class DelegationSummary(BaseModel):
    totalDelegated: int
    delegatorCodes: list[str]
    delegateeCode: str
    expiryDate: datetime
    notes: str | None = None


class DelegationCreateResponse(BaseModel):
    message: str
    delegations: list[DelegationSchema]
    summary: DelegationSummary


class DelegationListResponse(PaginatedResponse):
    items: list[DelegationSchema]


class ExpireOverdueResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    affected_count: int = Field(..., alias="affectedCount")
    notifications_sent: int = Field(..., alias="notificationsSent")


# ── Permissions ──

class PermissionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None


class EffectivePermissionsResponse(BaseModel):
    employee_code: str
    role: str
    department: str | None = None
    branch_code: str | None = None
    permissions: dict[str, bool]
    can_export_report: bool


class UserPermissionsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    permission_ids: list[int] = Field(default_factory=list, alias="permissionIds")
    denied_permission_ids: list[int] = Field(default_factory=list, alias="deniedPermissionIds")


class UserPermissionEntry(BaseModel):
    permission_id: int
    name: str
    granted: bool


class UserPermissionsResponse(BaseModel):
    employee_code: str
    explicit: list[UserPermissionEntry]
    effective: dict[str, bool]


# ── Reports ──

class CanExportResponse(BaseModel):
    employee_code: str
    can_export: bool


class ExportAllowlistEntryCreate(BaseModel):
    employee_code: str = Field(..., min_length=1)


class ExportAllowlistResponse(BaseModel):
    employee_codes: list[str]
    department_defaults: list[str]


# ── Cases ──

class CaseAccessSchema(BaseModel):
    case_id: str
    can_view: bool
    can_edit: bool
    can_delegate: bool
    attributed_owner: str
    base_owner: str | None = None
    via_delegation_id: str | None = None


class CaseStateUpdate(BaseModel):
    state: str = Field(..., min_length=1, max_length=30)


class CaseStateResponse(BaseModel):
    case_id: str
    state: str
    updated_by: str
    via_delegation_id: str | None = None


# ── Audit ──

class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    event_type: str
    actor: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict = {}
    previous_hash: str | None = None
    current_hash: str
    created_at: datetime | None = None


class AuditListResponse(PaginatedResponse):
    items: list[AuditEntry]


class IntegrityCheckResponse(BaseModel):
    valid: bool
    entries_checked: int
    first_invalid: str | None = None
    reason: str | None = None
