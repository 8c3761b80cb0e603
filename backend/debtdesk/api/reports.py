"""
Reports API — export capability check and the export allow list.

Report generation itself lives outside this service; this router only
answers "may this employee export reports?" and maintains the allow list
that feeds that answer.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.api.deps import get_db, get_request_context, require_role
from debtdesk.auth.context import RequestContext
from debtdesk.auth.roles import Role
from debtdesk.config import settings
from debtdesk.schemas.schemas import (
    CanExportResponse,
    ExportAllowlistEntryCreate,
    ExportAllowlistResponse,
)
from debtdesk.services.audit_service import AuditService
from debtdesk.services.policy_store import PolicyStore

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _allowlist_response(codes: list[str]) -> ExportAllowlistResponse:
    return ExportAllowlistResponse(
        employee_codes=codes,
        department_defaults=sorted(settings.export_departments),
    )


@router.get("/can-export", response_model=CanExportResponse)
async def can_export(
    ctx: RequestContext = Depends(get_request_context),
) -> CanExportResponse:
    return CanExportResponse(
        employee_code=ctx.employee_code,
        can_export=ctx.permissions.can_export_report,
    )


@router.get("/export-allowlist", response_model=ExportAllowlistResponse)
async def get_allowlist(
    ctx: RequestContext = Depends(require_role(Role.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
) -> ExportAllowlistResponse:
    return _allowlist_response(await PolicyStore(db).list_export_allowed())


@router.post("/export-allowlist", response_model=ExportAllowlistResponse, status_code=201)
async def add_to_allowlist(
    body: ExportAllowlistEntryCreate,
    ctx: RequestContext = Depends(require_role(Role.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
) -> ExportAllowlistResponse:
    """Allow an employee to export reports regardless of role or department."""
    codes = await PolicyStore(db).add_export_allowed(body.employee_code, added_by=ctx.employee_code)
    await AuditService(db).log_export_allowlist_changed(body.employee_code, added=True, actor=ctx.actor)
    return _allowlist_response(codes)


@router.delete("/export-allowlist/{employee_code}", response_model=ExportAllowlistResponse)
async def remove_from_allowlist(
    employee_code: str,
    ctx: RequestContext = Depends(require_role(Role.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
) -> ExportAllowlistResponse:
    codes = await PolicyStore(db).remove_export_allowed(employee_code)
    await AuditService(db).log_export_allowlist_changed(employee_code, added=False, actor=ctx.actor)
    return _allowlist_response(codes)
