"""
Identity and RequestContext — "who is asking, and what can they do right now".

``Identity`` is what the external identity module vouches for (decoded from
the bearer token and checked against the ``users`` mirror). ``RequestContext``
adds the effective permission set, recomputed server-side for every request;
whatever the client believes its permissions are is never consulted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from debtdesk.auth.permissions import Permission
from debtdesk.auth.roles import Role, MANAGER_ROLES, DIRECTOR_ROLES
from debtdesk.errors import AuthorizationError

if TYPE_CHECKING:
    from debtdesk.services.permission_engine import EffectivePermissionSet


@dataclass(frozen=True)
class Identity:
    employee_code: str
    role: Role
    department: str | None = None
    branch_code: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMINISTRATOR

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    @property
    def is_director(self) -> bool:
        return self.role in DIRECTOR_ROLES

    def same_branch(self, branch_code: str | None) -> bool:
        return self.branch_code is not None and self.branch_code == branch_code

    def same_department(self, department: str | None, branch_code: str | None) -> bool:
        return (
            self.same_branch(branch_code)
            and self.department is not None
            and self.department == department
        )


@dataclass
class RequestContext:
    identity: Identity
    permissions: EffectivePermissionSet

    @property
    def employee_code(self) -> str:
        return self.identity.employee_code

    @property
    def role(self) -> Role:
        return self.identity.role

    def has_permission(self, perm: Permission) -> bool:
        return self.permissions.allows(perm)

    def require_any(self, *perms: Permission, roles: tuple[Role, ...] = ()) -> None:
        """Raise 403 unless the caller holds one of ``perms`` or one of ``roles``."""
        if self.role in roles:
            return
        if not any(self.has_permission(p) for p in perms):
            needed = ", ".join(p.value for p in perms)
            raise AuthorizationError(f"Insufficient permissions: requires one of [{needed}]")

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return f"{self.role.value}:{self.employee_code}"
