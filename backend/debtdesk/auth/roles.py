"""
Role definitions — default permission bundles per role.

Roles follow the bank's line hierarchy:

    EMPLOYEE < DEPUTY_MANAGER < MANAGER < DEPUTY_DIRECTOR < DIRECTOR < ADMINISTRATOR

Managers are scoped to their department within a branch, directors to their
branch. These bundles are the *defaults* only; explicit per-user grants
override them (see ``debtdesk.services.permission_engine``).
"""

from enum import Enum
from debtdesk.auth.permissions import Permission


class Role(str, Enum):
    EMPLOYEE = "employee"
    DEPUTY_MANAGER = "deputy_manager"
    MANAGER = "manager"
    DEPUTY_DIRECTOR = "deputy_director"
    DIRECTOR = "director"
    ADMINISTRATOR = "administrator"


MANAGER_ROLES = frozenset({Role.MANAGER, Role.DEPUTY_MANAGER})
DIRECTOR_ROLES = frozenset({Role.DIRECTOR, Role.DEPUTY_DIRECTOR})


# ── Employee: own cases, may hand them over ──
_EMPLOYEE_PERMS: set[Permission] = {
    Permission.VIEW_OWN_CASES,
    Permission.EDIT_OWN_CASES,
    Permission.CREATE_DELEGATION,
}

# ── Deputy manager / manager: department-scoped ──
_MANAGER_PERMS: set[Permission] = {
    *_EMPLOYEE_PERMS,
    Permission.VIEW_DEPARTMENT_CASES,
    Permission.EDIT_DEPARTMENT_CASES,
    Permission.VIEW_DELEGATIONS,
}

# ── Deputy director: branch-scoped ──
_DEPUTY_DIRECTOR_PERMS: set[Permission] = {
    *_MANAGER_PERMS,
    Permission.EXPORT_DEPARTMENT_CASES,
}

# ── Director: branch-scoped edits, reads everything ──
_DIRECTOR_PERMS: set[Permission] = {
    *_DEPUTY_DIRECTOR_PERMS,
    Permission.VIEW_ALL_CASES,
}

# ── Administrator: everything ──
_ADMIN_PERMS: set[Permission] = {p for p in Permission}


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.EMPLOYEE: _EMPLOYEE_PERMS,
    Role.DEPUTY_MANAGER: _MANAGER_PERMS,
    Role.MANAGER: _MANAGER_PERMS,
    Role.DEPUTY_DIRECTOR: _DEPUTY_DIRECTOR_PERMS,
    Role.DIRECTOR: _DIRECTOR_PERMS,
    Role.ADMINISTRATOR: _ADMIN_PERMS,
}
