"""Tests for per-case access resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from debtdesk.auth.context import Identity
from debtdesk.auth.roles import Role
from debtdesk.errors import NotFoundError
from debtdesk.models import CaseDelegation, DebtCase, User
from debtdesk.services.access_resolver import resolve, resolve_case
from debtdesk.services.delegation_manager import DelegationManager
from debtdesk.services.permission_engine import PolicyDefaults, compute_effective

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

OWNER = User(employee_code="A", full_name="Owner", username="a", role="employee", dept="KHCN", branch_code="001")


def _case(owner: User | None = OWNER) -> DebtCase:
    return DebtCase(
        case_id="C-1", customer_code="CUS-1", customer_name="Customer",
        assigned_employee_code=owner.employee_code if owner else None, officer=owner,
    )


def _who(code: str, role: Role = Role.EMPLOYEE, dept: str = "KHCN", branch: str = "001", grants=None):
    identity = Identity(employee_code=code, role=role, department=dept, branch_code=branch)
    return identity, compute_effective(identity, grants or {}, defaults=PolicyDefaults())


def _delegation(delegatee: str = "B", status: str = "active", hours: int = 1) -> CaseDelegation:
    return CaseDelegation(
        delegation_id="D-1", case_id="C-1",
        delegator_employee_code="A", delegatee_employee_code=delegatee,
        created_at=T0, expiry_at=T0 + timedelta(hours=hours), status=status,
    )


class TestBaseEligibility:
    def test_owner_has_full_access(self):
        access = resolve(_case(), *_who("A"), None, T0)
        assert (access.can_view, access.can_edit, access.can_delegate) == (True, True, True)
        assert access.base_owner == "A"
        assert access.via_delegation_id is None

    def test_other_employee_has_none(self):
        access = resolve(_case(), *_who("B"), None, T0)
        assert not (access.can_view or access.can_edit or access.can_delegate)

    def test_administrator_sees_unassigned_cases(self):
        access = resolve(_case(owner=None), *_who("Z", Role.ADMINISTRATOR, dept="IT"), None, T0)
        assert access.can_edit and access.can_delegate
        assert access.base_owner is None

    def test_manager_scoped_to_department_and_branch(self):
        same = resolve(_case(), *_who("M", Role.MANAGER), None, T0)
        other_dept = resolve(_case(), *_who("M", Role.MANAGER, dept="KHDN"), None, T0)
        other_branch = resolve(_case(), *_who("M", Role.DEPUTY_MANAGER, branch="002"), None, T0)
        assert same.can_edit and same.can_delegate
        assert not other_dept.can_view
        assert not other_branch.can_view

    def test_director_scoped_to_branch(self):
        access = resolve(_case(), *_who("D", Role.DEPUTY_DIRECTOR, dept="BGĐ"), None, T0)
        assert access.can_edit and access.can_delegate

    def test_director_of_other_branch_reads_only(self):
        # Directors carry view_all_cases by default but no cross-branch edit.
        access = resolve(_case(), *_who("D", Role.DIRECTOR, dept="BGĐ", branch="002"), None, T0)
        assert access.can_view
        assert not access.can_edit
        assert not access.can_delegate

    def test_department_grant_widens_employee(self):
        access = resolve(_case(), *_who("B", grants={"edit_department_cases": True}), None, T0)
        assert access.can_view and access.can_edit
        assert not access.can_delegate

    def test_view_all_grant(self):
        access = resolve(_case(), *_who("B", dept="KHDN", grants={"view_all_cases": True}), None, T0)
        assert access.can_view and not access.can_edit


class TestDelegationOverride:
    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=30), timedelta(minutes=59, seconds=59)])
    def test_delegatee_can_edit_inside_window(self, offset):
        access = resolve(_case(), *_who("B"), _delegation(), T0 + offset)
        assert access.can_edit
        assert access.attributed_owner == "B"
        assert access.base_owner == "A"
        assert access.via_delegation_id == "D-1"

    def test_delegatee_holds_delegate_authority(self):
        assert not resolve(_case(), *_who("B"), None, T0).can_delegate
        assert resolve(_case(), *_who("B"), _delegation(), T0).can_delegate

    @pytest.mark.parametrize("offset", [timedelta(hours=1), timedelta(hours=1, seconds=1), timedelta(days=3)])
    def test_delegatee_loses_access_at_expiry_without_sweep(self, offset):
        access = resolve(_case(), *_who("B"), _delegation(), T0 + offset)
        assert not access.can_view and not access.can_edit
        assert access.via_delegation_id is None

    def test_owner_keeps_access_throughout(self):
        for offset in (timedelta(0), timedelta(minutes=30), timedelta(hours=2)):
            assert resolve(_case(), *_who("A"), _delegation(), T0 + offset).can_edit

    @pytest.mark.parametrize("status", ["revoked", "expired"])
    def test_terminal_delegation_grants_nothing(self, status):
        access = resolve(_case(), *_who("B"), _delegation(status=status), T0)
        assert not access.can_edit

    def test_delegation_to_someone_else_is_ignored(self):
        access = resolve(_case(), *_who("C"), _delegation(delegatee="B"), T0)
        assert not access.can_view

    def test_naive_expiry_is_treated_as_utc(self):
        delegation = _delegation()
        delegation.expiry_at = delegation.expiry_at.replace(tzinfo=None)
        assert resolve(_case(), *_who("B"), delegation, T0).can_edit
        assert not resolve(_case(), *_who("B"), delegation, T0 + timedelta(hours=1)).can_edit


class TestResolveCase:
    async def test_unknown_case(self, db_session, ctx_for):
        with pytest.raises(NotFoundError):
            await resolve_case(db_session, "C-404", await ctx_for("E001"), T0)

    async def test_loads_active_delegation(self, db_session, ctx_for, clock):
        manager = DelegationManager(db_session, clock=clock)
        await manager.create_delegations(["C-1"], await ctx_for("E001"), "E002", T0 + timedelta(hours=1))

        delegatee = await ctx_for("E002")
        inside = await resolve_case(db_session, "C-1", delegatee, T0 + timedelta(minutes=5))
        after = await resolve_case(db_session, "C-1", delegatee, T0 + timedelta(hours=1))
        assert inside.can_edit and inside.via_delegation_id is not None
        assert not after.can_edit

    async def test_revocation_ends_access_mid_window(self, db_session, ctx_for, clock):
        manager = DelegationManager(db_session, clock=clock)
        [row] = await manager.create_delegations(
            ["C-1"], await ctx_for("E001"), "E002", T0 + timedelta(hours=8),
        )
        clock.advance(hours=1)
        await manager.revoke(row.delegation_id, await ctx_for("A001"))

        access = await resolve_case(db_session, "C-1", await ctx_for("E002"), clock.now())
        assert not access.can_edit
