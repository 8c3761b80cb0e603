"""Tests for the expiry sweeper."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from debtdesk.errors import TransientStoreError
from debtdesk.models import AuditLog, CaseDelegation
from debtdesk.services.delegation_manager import DelegationManager
from debtdesk.services.expiry_sweeper import ExpirySweeper
from debtdesk.services.notifications import EventType

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sweeper(session_factory, clock, dispatcher):
    return ExpirySweeper(session_factory=session_factory, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def events(dispatcher):
    received = []

    async def _record(event):
        received.append(event)

    dispatcher.subscribe(EventType.DELEGATION_EXPIRED, _record)
    return received


async def _delegate(db_session, clock, ctx_for, owner, case_ids, delegatee, hours=1):
    manager = DelegationManager(db_session, clock=clock)
    return await manager.create_delegations(
        case_ids, await ctx_for(owner), delegatee, T0 + timedelta(hours=hours),
    )


async def _statuses(db_session) -> dict[str, str]:
    db_session.expire_all()
    rows = (await db_session.execute(select(CaseDelegation))).scalars()
    return {d.case_id: d.status for d in rows}


async def test_nothing_due(sweeper, db_session, events):
    result = await sweeper.expire_overdue(db_session)
    assert result.affected_count == 0
    assert result.notifications_sent == 0
    assert events == []


async def test_expires_overdue_and_groups_by_delegatee(sweeper, db_session, clock, ctx_for, events):
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1", "C-2"], "E002")
    await _delegate(db_session, clock, ctx_for, "E003", ["C-4"], "E001")
    await _delegate(db_session, clock, ctx_for, "E001", ["C-3"], "E002", hours=48)

    clock.advance(hours=2)
    result = await sweeper.expire_overdue(db_session)

    assert result.affected_count == 3
    assert result.notifications_sent == 2
    assert sorted(result.by_delegatee["E002"]) == ["C-1", "C-2"]
    assert result.by_delegatee["E001"] == ["C-4"]
    assert await _statuses(db_session) == {
        "C-1": "expired", "C-2": "expired", "C-4": "expired", "C-3": "active",
    }

    by_delegatee = {e.delegatee: e for e in events}
    assert by_delegatee["E002"].case_count == 2
    message = by_delegatee["E001"].to_message()
    assert message["type"] == "DELEGATION_EXPIRED"
    assert message["data"]["expiredCaseCount"] == 1
    assert message["data"]["caseId"] == "C-4"


async def test_expiry_at_exact_instant_is_due(sweeper, db_session, clock, ctx_for):
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    clock.advance(hours=1)
    assert (await sweeper.expire_overdue(db_session)).affected_count == 1


async def test_pass_limited_to_case_ids(sweeper, db_session, clock, ctx_for, events):
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1", "C-2"], "E002")
    clock.advance(hours=2)

    result = await sweeper.expire_overdue(db_session, trigger="on_create", case_ids=["C-2", "C-5"])

    assert result.by_delegatee == {"E002": ["C-2"]}
    assert await _statuses(db_session) == {"C-1": "active", "C-2": "expired"}
    assert [e.case_ids for e in events] == [("C-2",)]


async def test_second_pass_is_empty(sweeper, db_session, clock, ctx_for, events):
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    clock.advance(hours=2)

    first = await sweeper.expire_overdue(db_session)
    second = await sweeper.expire_overdue(db_session)

    assert first.affected_count == 1
    assert second.affected_count == 0
    assert len(events) == 1


async def test_revoked_rows_are_left_alone(sweeper, db_session, clock, ctx_for):
    [row] = await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    await DelegationManager(db_session, clock=clock).revoke(row.delegation_id, await ctx_for("E001"))
    clock.advance(hours=2)

    assert (await sweeper.expire_overdue(db_session)).affected_count == 0
    assert await _statuses(db_session) == {"C-1": "revoked"}


async def test_failing_handler_does_not_change_result(sweeper, db_session, clock, ctx_for, dispatcher):
    async def _boom(event):
        raise RuntimeError("push channel down")

    dispatcher.subscribe(EventType.DELEGATION_EXPIRED, _boom)
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    clock.advance(hours=2)

    result = await sweeper.expire_overdue(db_session)
    assert result.affected_count == 1
    assert await _statuses(db_session) == {"C-1": "expired"}


async def test_sweep_is_audited(sweeper, db_session, clock, ctx_for):
    [row] = await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    clock.advance(hours=2)
    await sweeper.expire_overdue(db_session, trigger="periodic")

    entry = (await db_session.execute(
        select(AuditLog).where(AuditLog.event_type == "delegations_expired")
    )).scalar_one()
    assert entry.actor == "system:expiry_sweeper"
    assert entry.details["delegation_ids"] == [row.delegation_id]
    assert entry.details["trigger"] == "periodic"


async def test_tick_uses_its_own_session(sweeper, db_session, clock, ctx_for):
    await _delegate(db_session, clock, ctx_for, "E001", ["C-1"], "E002")
    clock.advance(hours=2)

    result = await sweeper.tick()
    assert result.affected_count == 1
    assert await _statuses(db_session) == {"C-1": "expired"}


async def test_tick_waits_out_transient_errors(sweeper, monkeypatch):
    async def _unreachable(session, trigger="on_demand"):
        raise TransientStoreError("Expiry sweep interrupted: connection reset")

    monkeypatch.setattr(sweeper, "expire_overdue", _unreachable)
    assert await sweeper.tick() is None


async def test_store_errors_become_transient(sweeper, db_session, monkeypatch):
    async def _dropped(*args, **kwargs):
        raise OperationalError("UPDATE case_delegations", {}, Exception("server closed the connection"))

    monkeypatch.setattr(db_session, "execute", _dropped)
    with pytest.raises(TransientStoreError):
        await sweeper.expire_overdue(db_session)


async def test_start_and_stop(session_factory, clock):
    sweeper = ExpirySweeper(session_factory=session_factory, clock=clock, interval_seconds=3600)
    sweeper.start()
    await sweeper.stop()
    assert sweeper._task is None
