"""
Permission Engine — composes policy into an effective, per-user capability set.

Precedence, highest first:

  a. explicit ``user_permissions`` rows (allow or deny), authoritative
  b. role defaults (``ROLE_PERMISSIONS``) and department defaults
     (export-capable departments imply ``export_reports``)
  c. the report export allow list, OR-ed into ``export_reports`` only

Administrators short-circuit: every permission is on and deny rows are
ignored. ``compute_effective`` is pure; ``load_effective_permissions`` reads
the policy store and is called on every authenticated request. The result is
never cached across requests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from sqlalchemy.ext.asyncio import AsyncSession

from debtdesk.auth.context import Identity
from debtdesk.auth.permissions import Permission, IMPLIED_PERMISSIONS
from debtdesk.auth.roles import ROLE_PERMISSIONS
from debtdesk.config import settings
from debtdesk.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyDefaults:
    """Static policy inputs that come from configuration rather than the store."""

    export_departments: frozenset[str] = frozenset()
    export_allowed_employees: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls) -> PolicyDefaults:
        return cls(
            export_departments=settings.export_departments,
            export_allowed_employees=settings.export_allowed_employees,
        )


@dataclass(frozen=True)
class EffectivePermissionSet:
    """Immutable ``{permission_name: bool}`` for one employee at one instant."""

    employee_code: str
    values: Mapping[str, bool] = field(default_factory=dict)

    def allows(self, perm: Permission | str) -> bool:
        name = perm.value if isinstance(perm, Permission) else perm
        return self.values.get(name, False)

    @property
    def granted(self) -> frozenset[str]:
        return frozenset(name for name, on in self.values.items() if on)

    @property
    def can_export_report(self) -> bool:
        return self.allows(Permission.EXPORT_REPORTS)

    def to_dict(self) -> dict[str, bool]:
        return dict(sorted(self.values.items()))


def expand_implied(names: Iterable[str]) -> set[str]:
    """Close a set of permission names under ``IMPLIED_PERMISSIONS``."""
    result = set(names)
    pending = list(result)
    while pending:
        name = pending.pop()
        try:
            perm = Permission(name)
        except ValueError:
            continue
        for implied in IMPLIED_PERMISSIONS.get(perm, ()):
            if implied.value not in result:
                result.add(implied.value)
                pending.append(implied.value)
    return result


def compute_effective(
    identity: Identity,
    grants: Mapping[str, bool],
    export_allowlisted: bool = False,
    defaults: PolicyDefaults | None = None,
) -> EffectivePermissionSet:
    """
    Compose the effective permission set for ``identity``.

    Args:
        identity: the authenticated employee
        grants: explicit rows, ``{permission_name: granted}``
        export_allowlisted: whether the employee is on the export allow list
        defaults: department / env-level policy (defaults to settings)
    """
    defaults = defaults or PolicyDefaults.from_settings()
    catalog = [p.value for p in Permission]

    if identity.is_admin:
        return EffectivePermissionSet(
            employee_code=identity.employee_code,
            values=MappingProxyType({name: True for name in catalog}),
        )

    # b. role + department defaults
    on: set[str] = {p.value for p in ROLE_PERMISSIONS.get(identity.role, set())}
    if identity.department in defaults.export_departments:
        on.add(Permission.EXPORT_REPORTS.value)

    # c. allow list, additive on export only
    if export_allowlisted or identity.employee_code in defaults.export_allowed_employees:
        on.add(Permission.EXPORT_REPORTS.value)

    # a. explicit rows win over everything above
    denied = {name for name, granted in grants.items() if not granted}
    on |= {name for name, granted in grants.items() if granted}
    on = expand_implied(on) - denied

    values = {name: name in on for name in catalog}
    return EffectivePermissionSet(
        employee_code=identity.employee_code,
        values=MappingProxyType(values),
    )


async def load_effective_permissions(
    session: AsyncSession,
    identity: Identity,
    defaults: PolicyDefaults | None = None,
) -> EffectivePermissionSet:
    """Read the policy store for ``identity`` and compose its effective set."""
    store = PolicyStore(session)
    if identity.is_admin:
        grants: dict[str, bool] = {}
        allowlisted = False
    else:
        grants = await store.get_grants(identity.employee_code)
        allowlisted = await store.is_export_allowed(identity.employee_code)

    effective = compute_effective(identity, grants, allowlisted, defaults)
    logger.debug(
        "Effective permissions for %s: %d granted",
        identity.employee_code, len(effective.granted),
    )
    return effective
