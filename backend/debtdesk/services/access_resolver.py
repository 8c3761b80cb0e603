"""
Access Resolver — "can this employee act on this case right now?"

Authority over a case is the OR of two independent sources:

1. Base eligibility, from role and organisation scope:
   - administrator: every case
   - director / deputy_director: cases whose owner sits in their branch
   - manager / deputy_manager: cases whose owner sits in their department
     and branch
   - anyone: cases they own
   Explicit grants widen this (``view_all_cases``, ``edit_all_cases``, and
   the ``*_department_cases`` pair for roles without a department scope).
2. Delegation override: an ``active`` delegation of the case to the actor
   whose window has not closed. The window is re-checked against ``now``
   here on every call, so a delegation the sweeper has not reached yet
   never grants anything past ``expiry_at``.

``can_delegate`` reports authority only. While the delegatee holds it through a
delegation, that same active row makes a new delegation of the case a
conflict until it ends.

``resolve`` is pure. ``resolve_case`` performs the two indexed reads it
needs (case + owner, the actor's active delegation) and nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.auth.context import Identity, RequestContext
from debtdesk.auth.permissions import Permission
from debtdesk.clock import as_utc
from debtdesk.errors import NotFoundError
from debtdesk.models import CaseDelegation, DebtCase, DelegationStatus
from debtdesk.services.permission_engine import EffectivePermissionSet


@dataclass(frozen=True)
class CaseAccess:
    case_id: str
    can_view: bool
    can_edit: bool
    can_delegate: bool
    attributed_owner: str
    base_owner: str | None
    via_delegation_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _base_access(
    case: DebtCase,
    identity: Identity,
    permissions: EffectivePermissionSet,
) -> tuple[bool, bool, bool]:
    """(view, edit, delegate) from role scope and grants alone."""
    if identity.is_admin:
        return True, True, True
    if case.assigned_employee_code is not None and case.assigned_employee_code == identity.employee_code:
        return True, True, True

    owner = case.officer
    owner_branch = owner.branch_code if owner else None
    owner_dept = owner.dept if owner else None
    in_branch = identity.same_branch(owner_branch)
    in_dept = identity.same_department(owner_dept, owner_branch)

    if identity.is_director and in_branch:
        return True, True, True
    if identity.is_manager and in_dept:
        return True, True, True

    can_edit = permissions.allows(Permission.EDIT_ALL_CASES) or (
        in_dept and permissions.allows(Permission.EDIT_DEPARTMENT_CASES)
    )
    can_view = can_edit or permissions.allows(Permission.VIEW_ALL_CASES) or (
        in_dept and permissions.allows(Permission.VIEW_DEPARTMENT_CASES)
    )
    return can_view, can_edit, False


def delegation_in_force(
    delegation: CaseDelegation | None,
    employee_code: str,
    now: datetime,
) -> bool:
    """True if ``delegation`` currently hands its case to ``employee_code``."""
    return (
        delegation is not None
        and delegation.status == DelegationStatus.ACTIVE.value
        and delegation.delegatee_employee_code == employee_code
        and as_utc(now) < as_utc(delegation.expiry_at)
    )


def resolve(
    case: DebtCase,
    identity: Identity,
    permissions: EffectivePermissionSet,
    delegation: CaseDelegation | None,
    now: datetime,
) -> CaseAccess:
    view, edit, delegate = _base_access(case, identity, permissions)

    via = None
    if delegation_in_force(delegation, identity.employee_code, now):
        via = delegation.delegation_id
        view = edit = delegate = True

    return CaseAccess(
        case_id=case.case_id,
        can_view=view,
        can_edit=edit,
        can_delegate=delegate,
        attributed_owner=identity.employee_code,
        base_owner=case.assigned_employee_code,
        via_delegation_id=via,
    )


async def find_active_delegation(
    session: AsyncSession, case_id: str, delegatee_code: str,
) -> CaseDelegation | None:
    result = await session.execute(
        select(CaseDelegation)
        .where(
            CaseDelegation.case_id == case_id,
            CaseDelegation.delegatee_employee_code == delegatee_code,
            CaseDelegation.status == DelegationStatus.ACTIVE.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_case_access(
    session: AsyncSession,
    case_id: str,
    ctx: RequestContext,
    now: datetime,
) -> tuple[DebtCase, CaseAccess]:
    """Load a case (with its owner) and the caller's access to it."""
    case = await session.get(DebtCase, case_id)
    if case is None:
        raise NotFoundError(f"Case {case_id} not found")
    delegation = await find_active_delegation(session, case_id, ctx.employee_code)
    return case, resolve(case, ctx.identity, ctx.permissions, delegation, now)


async def resolve_case(
    session: AsyncSession,
    case_id: str,
    ctx: RequestContext,
    now: datetime,
) -> CaseAccess:
    _, access = await load_case_access(session, case_id, ctx, now)
    return access
