"""
Delegation Manager

The only writer of new and revoked delegation rows:
- Batch creation, all-or-nothing across the requested cases
- Revocation by delegator, administrator or the delegator's manager (idempotent)
- Caller-scoped listing

Time-based expiry belongs to ``ExpirySweeper``; creation runs it over the
requested cases first. Both writers move a row out of
``active`` with a conditional update, so whichever commits first decides the
terminal status and the other sees zero rows affected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from debtdesk.auth.context import RequestContext
from debtdesk.clock import Clock, SystemClock, as_utc
from debtdesk.config import settings
from debtdesk.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from debtdesk.middleware.metrics import delegations_total
from debtdesk.models import CaseDelegation, DebtCase, DelegationStatus, User
from debtdesk.services.access_resolver import resolve
from debtdesk.services.audit_service import AuditService
from debtdesk.services.expiry_sweeper import ExpirySweeper
from debtdesk.services.notifications import DelegationEvent, EventType, NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500
MAX_PAGE_SIZE = 100


@dataclass
class DelegationFilters:
    status: str | None = None
    delegator_code: str | None = None
    delegatee_code: str | None = None
    case_id: str | None = None


@dataclass
class DelegationPage:
    items: list[CaseDelegation]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total > 0 else 1


class DelegationManager:
    """Creates, revokes and lists case delegations."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        self.audit = AuditService(session)

    # ── Creation ─────────────────────────────────────────────────────────

    async def create_delegations(
        self,
        case_ids: list[str],
        actor: RequestContext,
        delegatee_code: str,
        expiry_at: datetime,
        notes: str | None = None,
    ) -> list[CaseDelegation]:
        """
        Delegate every case in ``case_ids`` to ``delegatee_code`` until
        ``expiry_at``.

        Every case is checked before anything is written; the first failing
        case aborts the whole batch.

        Raises:
            ValidationError: bad input, unknown case or delegatee, self-delegation
            AuthorizationError: the actor holds no authority over one of the cases
            ConflictError: one of the cases is already actively delegated
        """
        now = self.clock.now()
        expiry_at = as_utc(expiry_at)
        self._validate_request(case_ids, expiry_at, notes, now)
        await self._get_active_delegatee(delegatee_code)

        cases = await self._load_cases(case_ids)
        # Rows past expiry that the sweeper has not reached yet must not block.
        await ExpirySweeper(clock=self.clock, dispatcher=self.dispatcher).expire_overdue(
            self.session, trigger="on_create", case_ids=case_ids,
        )
        active = await self._active_by_case(case_ids)

        planned: list[tuple[DebtCase, str]] = []
        for case_id in case_ids:
            case = cases[case_id]
            access = resolve(case, actor.identity, actor.permissions, active.get(case_id), now)
            if not access.can_delegate:
                raise AuthorizationError(
                    f"You don't have permission to delegate case {case_id}",
                    details={"case_id": case_id},
                )

            acts_for_self = access.via_delegation_id is not None or (
                case.assigned_employee_code == actor.employee_code
            )
            delegator = actor.employee_code if acts_for_self else case.assigned_employee_code
            if delegator is None:
                raise ValidationError(
                    f"Case {case_id} has no assigned officer to delegate from",
                    details={"case_id": case_id},
                )
            if delegator == delegatee_code:
                raise ValidationError(
                    "Cannot delegate a case to its own delegator",
                    details={"case_id": case_id},
                )
            if case_id in active:
                raise ConflictError(
                    f"Case {case_id} already has an active delegation",
                    details={
                        "case_id": case_id,
                        "delegation_id": active[case_id].delegation_id,
                    },
                )
            planned.append((case, delegator))

        rows = [
            CaseDelegation(
                delegation_id=str(uuid4()),
                case_id=case.case_id,
                delegator_employee_code=delegator,
                delegatee_employee_code=delegatee_code,
                created_at=now,
                expiry_at=expiry_at,
                status=DelegationStatus.ACTIVE.value,
                notes=notes,
            )
            for case, delegator in planned
        ]
        self.session.add_all(rows)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning("Concurrent delegation rejected by unique index: %s", exc.orig)
            raise ConflictError("One of the cases was delegated concurrently") from exc

        for row in rows:
            await self.audit.log_delegation_created(
                delegation_id=row.delegation_id,
                case_id=row.case_id,
                delegator=row.delegator_employee_code,
                delegatee=row.delegatee_employee_code,
                expiry_at=row.expiry_at,
                actor=actor.actor,
            )
        await self.session.commit()

        delegations_total.labels(transition="created").inc(len(rows))
        logger.info(
            "%s delegated %d cases to %s until %s",
            actor.employee_code, len(rows), delegatee_code, expiry_at.isoformat(),
        )
        return rows

    def _validate_request(
        self,
        case_ids: list[str],
        expiry_at: datetime,
        notes: str | None,
        now: datetime,
    ) -> None:
        if not case_ids:
            raise ValidationError("Case IDs array is required and cannot be empty")
        if len(case_ids) > settings.delegation_max_batch:
            raise ValidationError(
                f"At most {settings.delegation_max_batch} cases can be delegated at once"
            )
        duplicates = sorted({c for c in case_ids if case_ids.count(c) > 1})
        if duplicates:
            raise ValidationError("Duplicate case IDs in request", details={"case_ids": duplicates})
        if expiry_at <= now:
            raise ValidationError("Expiry date must be in the future")
        if expiry_at - now > timedelta(days=settings.delegation_max_days):
            raise ValidationError(
                f"Expiry date must be within {settings.delegation_max_days} days"
            )
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes must not exceed {MAX_NOTES_LENGTH} characters")

    async def _get_active_delegatee(self, employee_code: str) -> User:
        user = await self.session.get(User, employee_code)
        if user is None:
            raise ValidationError(f"Delegatee {employee_code} not found")
        if not user.is_active:
            raise ValidationError(f"Delegatee {employee_code} is not active")
        return user

    async def _load_cases(self, case_ids: list[str]) -> dict[str, DebtCase]:
        result = await self.session.execute(
            select(DebtCase).where(DebtCase.case_id.in_(case_ids))
        )
        cases = {c.case_id: c for c in result.scalars().unique()}
        missing = [c for c in case_ids if c not in cases]
        if missing:
            raise ValidationError("Some cases were not found", details={"case_ids": missing})
        return cases

    async def _active_by_case(self, case_ids: list[str]) -> dict[str, CaseDelegation]:
        result = await self.session.execute(
            select(CaseDelegation).where(
                CaseDelegation.case_id.in_(case_ids),
                CaseDelegation.status == DelegationStatus.ACTIVE.value,
            )
        )
        return {d.case_id: d for d in result.scalars()}

    # ── Revocation ───────────────────────────────────────────────────────

    async def revoke(self, delegation_id: str, actor: RequestContext) -> CaseDelegation:
        """
        Revoke one delegation.

        Revoking a row that is already expired or revoked succeeds without
        changing it. Losing a race to the sweeper or another revoke also
        succeeds; the row keeps whichever terminal status won.
        """
        delegation = await self.session.get(CaseDelegation, delegation_id)
        if delegation is None:
            raise NotFoundError(f"Delegation {delegation_id} not found")
        await self._check_can_revoke(delegation, actor)

        if delegation.is_terminal:
            logger.info("Delegation %s already %s; revoke is a no-op", delegation_id, delegation.status)
            return delegation

        now = self.clock.now()
        result = await self.session.execute(
            update(CaseDelegation)
            .where(
                CaseDelegation.delegation_id == delegation_id,
                CaseDelegation.status == DelegationStatus.ACTIVE.value,
            )
            .values(
                status=DelegationStatus.REVOKED.value,
                revoked_at=now,
                revoked_by=actor.employee_code,
            )
            .execution_options(synchronize_session=False)
        )
        transitioned = result.rowcount == 1

        if transitioned:
            await self.audit.log_delegation_revoked(
                delegation_id=delegation_id,
                case_id=delegation.case_id,
                delegatee=delegation.delegatee_employee_code,
                actor=actor.actor,
            )
        await self.session.commit()
        await self.session.refresh(delegation)

        if not transitioned:
            logger.info("Delegation %s moved to %s concurrently", delegation_id, delegation.status)
            return delegation

        delegations_total.labels(transition="revoked").inc()
        logger.info("Delegation %s revoked by %s", delegation_id, actor.employee_code)

        if self.dispatcher is not None:
            await self.dispatcher.publish(DelegationEvent(
                type=EventType.DELEGATION_REVOKED,
                delegatee=delegation.delegatee_employee_code,
                case_ids=(delegation.case_id,),
                occurred_at=now,
                actor=actor.employee_code,
            ))
        return delegation

    async def _check_can_revoke(self, delegation: CaseDelegation, actor: RequestContext) -> None:
        identity = actor.identity
        if identity.is_admin or delegation.delegator_employee_code == identity.employee_code:
            return
        if identity.is_manager:
            delegator = await self.session.get(User, delegation.delegator_employee_code)
            if delegator is not None and identity.same_department(delegator.dept, delegator.branch_code):
                return
        raise AuthorizationError("Only the delegator, their manager or an administrator can revoke")

    # ── Listing ──────────────────────────────────────────────────────────

    async def list_delegations(
        self,
        actor: RequestContext,
        filters: DelegationFilters | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> DelegationPage:
        """Delegations visible to ``actor``, newest first."""
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        filters = filters or DelegationFilters()

        delegator = aliased(User)
        conditions = []
        scope = self._scope_condition(actor, delegator)
        if scope is not None:
            conditions.append(scope)
        if filters.status:
            conditions.append(CaseDelegation.status == filters.status)
        if filters.delegator_code:
            conditions.append(CaseDelegation.delegator_employee_code == filters.delegator_code)
        if filters.delegatee_code:
            conditions.append(CaseDelegation.delegatee_employee_code == filters.delegatee_code)
        if filters.case_id:
            conditions.append(CaseDelegation.case_id == filters.case_id)

        base = (
            select(CaseDelegation)
            .join(delegator, delegator.employee_code == CaseDelegation.delegator_employee_code)
            .where(*conditions)
        )
        total = (await self.session.execute(
            select(func.count()).select_from(base.subquery())
        )).scalar() or 0

        result = await self.session.execute(
            base.options(*_LIST_LOADS)
            .order_by(CaseDelegation.created_at.desc(), CaseDelegation.delegation_id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return DelegationPage(items=list(result.scalars()), total=total, page=page, limit=limit)

    @staticmethod
    def _scope_condition(actor: RequestContext, delegator):
        identity = actor.identity
        if identity.is_admin:
            return None
        own = or_(
            CaseDelegation.delegator_employee_code == identity.employee_code,
            CaseDelegation.delegatee_employee_code == identity.employee_code,
        )
        if identity.is_director and identity.branch_code:
            return or_(own, delegator.branch_code == identity.branch_code)
        if identity.is_manager and identity.branch_code and identity.department:
            return or_(own, and_(
                delegator.branch_code == identity.branch_code,
                delegator.dept == identity.department,
            ))
        return own

    async def list_for_case(self, case_id: str, active_only: bool = True) -> list[CaseDelegation]:
        query = select(CaseDelegation).where(CaseDelegation.case_id == case_id)
        if active_only:
            query = query.where(CaseDelegation.status == DelegationStatus.ACTIVE.value)
        result = await self.session.execute(
            query.options(*_LIST_LOADS).order_by(CaseDelegation.created_at.desc())
        )
        return list(result.scalars())


_LIST_LOADS = (
    selectinload(CaseDelegation.case),
    selectinload(CaseDelegation.delegator),
    selectinload(CaseDelegation.delegatee),
)
