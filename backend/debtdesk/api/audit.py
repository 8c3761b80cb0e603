"""
Audit API — read the delegation / permission audit trail and verify its
hash chain. Administrators, or anyone holding ``view_audit``.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.api.deps import get_db, require_any
from debtdesk.auth.context import RequestContext
from debtdesk.auth.permissions import Permission
from debtdesk.auth.roles import Role
from debtdesk.services.audit_service import AuditService
from debtdesk.schemas.schemas import AuditListResponse, AuditEntry, IntegrityCheckResponse

router = APIRouter(prefix="/api/audit", tags=["audit"])

_can_read_audit = require_any(Permission.VIEW_AUDIT, roles=(Role.ADMINISTRATOR,))


@router.get("", response_model=AuditListResponse)
async def list_audit_entries(
    event_type: str | None = Query(None, description="e.g. delegation_created, case_updated"),
    actor: str | None = Query(None, description="e.g. employee:E1024, system:expiry_sweeper"),
    resource_type: str | None = Query(None, description="delegation | case | user"),
    resource_id: str | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(_can_read_audit),
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    """Audit entries, newest first. The total honours the same filters."""
    service = AuditService(db)
    filters = dict(
        event_type=event_type, actor=actor,
        resource_type=resource_type, resource_id=resource_id,
    )
    entries = await service.get_entries(**filters, limit=size, offset=(page - 1) * size)
    total = await service.get_entry_count(**filters)

    return AuditListResponse(
        total=total,
        page=page,
        size=size,
        pages=(total + size - 1) // size if total > 0 else 1,
        items=[AuditEntry.model_validate(e) for e in entries],
    )


@router.get("/integrity", response_model=IntegrityCheckResponse)
async def check_integrity(
    ctx: RequestContext = Depends(_can_read_audit),
    db: AsyncSession = Depends(get_db),
) -> IntegrityCheckResponse:
    """Walk the whole chain; reports the first entry whose hash does not match."""
    result = await AuditService(db).verify_chain_integrity()
    return IntegrityCheckResponse(**result)
