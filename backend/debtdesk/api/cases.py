"""
Cases API — effective access to one case, and the delegated-edit path.

Case CRUD belongs to the case-administration module. The state update here
is the one mutation this service performs on a case: it goes through the
access resolver like every case write, and is audited under the employee
who actually acted, with the delegation that allowed it when there is one.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.api.deps import get_db, get_clock, get_request_context
from debtdesk.auth.context import RequestContext
from debtdesk.clock import Clock
from debtdesk.errors import AuthorizationError
from debtdesk.schemas.schemas import CaseAccessSchema, CaseStateResponse, CaseStateUpdate
from debtdesk.services.access_resolver import load_case_access, resolve_case
from debtdesk.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cases", tags=["cases"])


@router.get("/{case_id}/access", response_model=CaseAccessSchema)
async def get_case_access(
    case_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> CaseAccessSchema:
    """What the caller may do with this case right now."""
    access = await resolve_case(db, case_id, ctx, clock.now())
    return CaseAccessSchema(**access.to_dict())


@router.put("/{case_id}/state", response_model=CaseStateResponse)
async def update_case_state(
    case_id: str,
    body: CaseStateUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> CaseStateResponse:
    case, access = await load_case_access(db, case_id, ctx, clock.now())
    if not access.can_edit:
        raise AuthorizationError(f"You don't have permission to update case {case_id}")

    old_state = case.state
    case.state = body.state
    await AuditService(db).log_case_state_changed(
        case_id=case_id,
        old_state=old_state,
        new_state=body.state,
        actor=f"{ctx.role.value}:{access.attributed_owner}",
        via_delegation_id=access.via_delegation_id,
    )
    await db.flush()

    logger.info(
        "Case %s state %s -> %s by %s%s",
        case_id, old_state, body.state, access.attributed_owner,
        f" via delegation {access.via_delegation_id}" if access.via_delegation_id else "",
    )
    return CaseStateResponse(
        case_id=case_id,
        state=body.state,
        updated_by=access.attributed_owner,
        via_delegation_id=access.via_delegation_id,
    )
