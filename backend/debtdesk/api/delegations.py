"""
Delegations API — temporary hand-over of case handling authority.

Create (batch), list (caller-scoped), per-case view, revoke, and the
on-demand expiry sweep clients call before rendering delegation-sensitive
views.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.api.deps import get_db, get_clock, get_dispatcher, get_request_context, require_any
from debtdesk.auth.context import RequestContext
from debtdesk.auth.permissions import Permission
from debtdesk.auth.roles import Role
from debtdesk.clock import Clock
from debtdesk.errors import AuthorizationError
from debtdesk.models import CaseDelegation
from debtdesk.schemas.schemas import (
    DelegationCreate,
    DelegationCreateResponse,
    DelegationListResponse,
    DelegationSchema,
    DelegationSummary,
    ExpireOverdueResponse,
)
from debtdesk.services.access_resolver import resolve_case
from debtdesk.services.delegation_manager import DelegationFilters, DelegationManager
from debtdesk.services.expiry_sweeper import ExpirySweeper
from debtdesk.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/api/delegations", tags=["delegations"])


def _to_schema(d: CaseDelegation, *, with_names: bool = False) -> DelegationSchema:
    item = DelegationSchema(
        delegation_id=d.delegation_id,
        case_id=d.case_id,
        delegated_by_employee_code=d.delegator_employee_code,
        delegated_to_employee_code=d.delegatee_employee_code,
        delegation_date=d.created_at,
        expiry_date=d.expiry_at,
        status=d.status,
        notes=d.notes,
        revoked_at=d.revoked_at,
        revoked_by=d.revoked_by,
        expired_at=d.expired_at,
    )
    # Relationships are only touched when the query eager-loaded them.
    if with_names:
        item.customer_name = d.case.customer_name if d.case else None
        item.delegator_name = d.delegator.full_name if d.delegator else None
        item.delegatee_name = d.delegatee.full_name if d.delegatee else None
    return item


@router.post("", response_model=DelegationCreateResponse, status_code=201)
async def create_delegations(
    body: DelegationCreate,
    ctx: RequestContext = Depends(require_any(
        Permission.CREATE_DELEGATION, Permission.MANAGE_DELEGATIONS,
        roles=(Role.ADMINISTRATOR, Role.DIRECTOR, Role.DEPUTY_DIRECTOR, Role.MANAGER, Role.DEPUTY_MANAGER),
    )),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DelegationCreateResponse:
    """Delegate one or more cases to another employee until ``expiry_date``."""
    manager = DelegationManager(db, clock=clock, dispatcher=dispatcher)
    rows = await manager.create_delegations(
        body.case_ids,
        ctx,
        body.delegated_to_employee_code,
        body.expiry_date,
        body.notes,
    )
    return DelegationCreateResponse(
        message=f"Successfully delegated {len(rows)} cases until {body.expiry_date.isoformat()}",
        delegations=[_to_schema(d) for d in rows],
        summary=DelegationSummary(
            totalDelegated=len(rows),
            delegatorCodes=sorted({d.delegator_employee_code for d in rows}),
            delegateeCode=body.delegated_to_employee_code,
            expiryDate=body.expiry_date,
            notes=body.notes,
        ),
    )


@router.get("", response_model=DelegationListResponse)
async def list_delegations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = Query(None, description="active | expired | revoked"),
    delegator_code: str | None = Query(None, alias="delegatorCode"),
    delegatee_code: str | None = Query(None, alias="delegateeCode"),
    case_id: str | None = Query(None, alias="caseId"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> DelegationListResponse:
    """Return delegations the caller may see, newest first."""
    manager = DelegationManager(db)
    result = await manager.list_delegations(
        ctx,
        DelegationFilters(
            status=status,
            delegator_code=delegator_code,
            delegatee_code=delegatee_code,
            case_id=case_id,
        ),
        page=page,
        limit=limit,
    )
    return DelegationListResponse(
        total=result.total,
        page=result.page,
        size=result.limit,
        pages=result.pages,
        items=[_to_schema(d, with_names=True) for d in result.items],
    )


@router.get("/case/{case_id}", response_model=list[DelegationSchema])
async def list_case_delegations(
    case_id: str,
    active_only: bool = Query(True, alias="activeOnly"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> list[DelegationSchema]:
    access = await resolve_case(db, case_id, ctx, clock.now())
    if not access.can_view:
        raise AuthorizationError(f"You don't have access to case {case_id}")
    rows = await DelegationManager(db).list_for_case(case_id, active_only=active_only)
    return [_to_schema(d, with_names=True) for d in rows]


@router.patch("/{delegation_id}/revoke", response_model=DelegationSchema)
async def revoke_delegation(
    delegation_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DelegationSchema:
    """Revoke a delegation. Already-terminal delegations are returned unchanged."""
    manager = DelegationManager(db, clock=clock, dispatcher=dispatcher)
    delegation = await manager.revoke(delegation_id, ctx)
    return _to_schema(delegation)


@router.post("/expire-overdue", response_model=ExpireOverdueResponse)
async def expire_overdue(
    ctx: RequestContext = Depends(require_any(Permission.MANAGE_DELEGATIONS, roles=(Role.ADMINISTRATOR,))),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ExpireOverdueResponse:
    """Run one expiry pass now. Returns zero counts when nothing is due."""
    sweeper = ExpirySweeper(clock=clock, dispatcher=dispatcher)
    result = await sweeper.expire_overdue(db, trigger="on_demand")
    return ExpireOverdueResponse(
        affected_count=result.affected_count,
        notifications_sent=result.notifications_sent,
    )
