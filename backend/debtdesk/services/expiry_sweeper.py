"""
Expiry Sweeper

Keeps "no active delegation is past its expiry_at" true. Runs two ways:
- periodically, as an asyncio task started from the app lifespan (or from
  ``backend/sweeper.py`` as a standalone process)
- on demand, via ``POST /api/delegations/expire-overdue``

Each pass is one conditional UPDATE. Only rows still ``active`` at commit time
move, so an overlapping periodic tick, on-demand call or revoke cannot
transition the same row twice; the loser simply gets fewer rows back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from debtdesk.clock import Clock, SystemClock
from debtdesk.config import settings
from debtdesk.errors import TransientStoreError
from debtdesk.middleware.metrics import delegations_total, delegation_sweep_duration_seconds
from debtdesk.models import CaseDelegation, DelegationStatus
from debtdesk.services.audit_service import AuditService
from debtdesk.services.notifications import DelegationEvent, EventType, NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    affected_count: int = 0
    notifications_sent: int = 0
    by_delegatee: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "affectedCount": self.affected_count,
            "notificationsSent": self.notifications_sent,
        }


class ExpirySweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        interval_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else settings.delegation_sweep_interval_seconds
        )
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    async def expire_overdue(
        self,
        session: AsyncSession,
        trigger: str = "on_demand",
        case_ids: list[str] | None = None,
    ) -> SweepResult:
        """
        Transition every overdue active delegation to ``expired``.

        Commits before publishing; one DELEGATION_EXPIRED event per affected
        delegatee. Nothing due is a normal, empty result. ``case_ids``
        narrows the pass to those cases.

        Raises:
            TransientStoreError: the store dropped the connection mid-pass
        """
        start = time.time()
        now = self.clock.now()
        conditions = [
            CaseDelegation.status == DelegationStatus.ACTIVE.value,
            CaseDelegation.expiry_at <= now,
        ]
        if case_ids is not None:
            conditions.append(CaseDelegation.case_id.in_(case_ids))
        try:
            result = await session.execute(
                update(CaseDelegation)
                .where(*conditions)
                .values(status=DelegationStatus.EXPIRED.value, expired_at=now)
                .returning(
                    CaseDelegation.delegation_id,
                    CaseDelegation.case_id,
                    CaseDelegation.delegatee_employee_code,
                )
                .execution_options(synchronize_session=False)
            )
            expired = result.all()

            if expired:
                await AuditService(session).log_delegations_expired(
                    [row.delegation_id for row in expired], trigger,
                )
            await session.commit()
        except (OperationalError, DBAPIError) as exc:
            await session.rollback()
            raise TransientStoreError(f"Expiry sweep interrupted: {exc}") from exc
        finally:
            delegation_sweep_duration_seconds.labels(trigger=trigger).observe(time.time() - start)

        by_delegatee: defaultdict[str, list[str]] = defaultdict(list)
        for row in expired:
            by_delegatee[row.delegatee_employee_code].append(row.case_id)

        sweep = SweepResult(affected_count=len(expired), by_delegatee=dict(by_delegatee))
        if not expired:
            logger.debug("Expiry sweep (%s): nothing due", trigger)
            return sweep

        delegations_total.labels(transition="expired").inc(len(expired))
        logger.info(
            "Expiry sweep (%s): %d delegations expired across %d delegatees",
            trigger, sweep.affected_count, len(by_delegatee),
        )

        if self.dispatcher is not None:
            for delegatee, case_ids in by_delegatee.items():
                await self.dispatcher.publish(DelegationEvent(
                    type=EventType.DELEGATION_EXPIRED,
                    delegatee=delegatee,
                    case_ids=tuple(case_ids),
                    occurred_at=now,
                ))
                sweep.notifications_sent += 1
        return sweep

    # ── Periodic loop ────────────────────────────────────────────────────

    async def tick(self) -> SweepResult | None:
        """One periodic pass in its own session. Transient store errors wait for the next tick."""
        async with self.session_factory() as session:
            try:
                return await self.expire_overdue(session, trigger="periodic")
            except TransientStoreError as exc:
                logger.warning("%s; retrying next tick", exc.message)
                return None

    async def run_forever(self) -> None:
        logger.info("Expiry sweeper running every %ss", self.interval_seconds)
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as exc:
                logger.error("Expiry sweep failed: %s", exc, exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever(), name="delegation-expiry-sweeper")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Expiry sweeper stopped")
