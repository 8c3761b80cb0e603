"""
Permission constants — the exhaustive catalog of named capabilities.

Names are the strings stored in the ``permissions`` table and carried in
``user_permissions`` grant rows. Role defaults live in ``roles.py``; the
composition of defaults, grants and the export allow list happens in
``debtdesk.services.permission_engine``.
"""

from enum import Enum


class Permission(str, Enum):
    # ── Cases ──
    VIEW_OWN_CASES = "view_own_cases"
    VIEW_DEPARTMENT_CASES = "view_department_cases"
    VIEW_ALL_CASES = "view_all_cases"
    EDIT_OWN_CASES = "edit_own_cases"
    EDIT_DEPARTMENT_CASES = "edit_department_cases"
    EDIT_ALL_CASES = "edit_all_cases"

    # ── Case data export ──
    EXPORT_CASE_DATA = "export_case_data"
    EXPORT_DEPARTMENT_DATA = "export_department_data"
    EXPORT_ALL_DATA = "export_all_data"
    EXPORT_OWN_CASES = "export_own_cases"
    EXPORT_DEPARTMENT_CASES = "export_department_cases"
    EXPORT_ALL_CASES = "export_all_cases"

    # ── Reports ──
    EXPORT_REPORTS = "export_reports"

    # ── Delegations ──
    CREATE_DELEGATION = "create_delegation"
    VIEW_DELEGATIONS = "view_delegations"
    MANAGE_DELEGATIONS = "manage_delegations"        # trigger sweeps; implies view/create

    # ── Permission administration ──
    VIEW_PERMISSIONS = "view_permissions"
    ASSIGN_PERMISSIONS = "assign_permissions"
    REVOKE_PERMISSIONS = "revoke_permissions"
    MANAGE_PERMISSIONS = "manage_permissions"

    # ── Audit ──
    VIEW_AUDIT = "view_audit"


PERMISSION_DESCRIPTIONS: dict[Permission, str] = {
    Permission.VIEW_OWN_CASES: "View cases assigned to oneself",
    Permission.VIEW_DEPARTMENT_CASES: "View cases of one's department and branch",
    Permission.VIEW_ALL_CASES: "View every case",
    Permission.EDIT_OWN_CASES: "Update cases assigned to oneself",
    Permission.EDIT_DEPARTMENT_CASES: "Update cases of one's department and branch",
    Permission.EDIT_ALL_CASES: "Update every case",
    Permission.EXPORT_CASE_DATA: "Export data of own cases",
    Permission.EXPORT_DEPARTMENT_DATA: "Export data of department cases",
    Permission.EXPORT_ALL_DATA: "Export data of all cases",
    Permission.EXPORT_OWN_CASES: "Export own case list",
    Permission.EXPORT_DEPARTMENT_CASES: "Export department case list",
    Permission.EXPORT_ALL_CASES: "Export full case list",
    Permission.EXPORT_REPORTS: "Export reports",
    Permission.CREATE_DELEGATION: "Delegate cases to another employee",
    Permission.VIEW_DELEGATIONS: "List delegations in scope",
    Permission.MANAGE_DELEGATIONS: "Run expiry sweeps; includes viewing and creating delegations",
    Permission.VIEW_PERMISSIONS: "View the permission catalog and user grants",
    Permission.ASSIGN_PERMISSIONS: "Grant permissions to users",
    Permission.REVOKE_PERMISSIONS: "Remove permissions from users",
    Permission.MANAGE_PERMISSIONS: "Full permission administration",
    Permission.VIEW_AUDIT: "Read the audit trail",
}


# Granting the key implies every permission in the value.
IMPLIED_PERMISSIONS: dict[Permission, frozenset[Permission]] = {
    Permission.EXPORT_DEPARTMENT_DATA: frozenset({Permission.VIEW_DEPARTMENT_CASES}),
    Permission.EXPORT_ALL_DATA: frozenset({Permission.VIEW_ALL_CASES}),
    Permission.EXPORT_CASE_DATA: frozenset({Permission.VIEW_OWN_CASES}),
    Permission.EXPORT_DEPARTMENT_CASES: frozenset({
        Permission.EXPORT_DEPARTMENT_DATA, Permission.VIEW_DEPARTMENT_CASES,
    }),
    Permission.EXPORT_ALL_CASES: frozenset({Permission.EXPORT_ALL_DATA, Permission.VIEW_ALL_CASES}),
    Permission.EXPORT_OWN_CASES: frozenset({Permission.EXPORT_CASE_DATA, Permission.VIEW_OWN_CASES}),
    Permission.MANAGE_DELEGATIONS: frozenset({Permission.VIEW_DELEGATIONS, Permission.CREATE_DELEGATION}),
    Permission.MANAGE_PERMISSIONS: frozenset({
        Permission.VIEW_PERMISSIONS, Permission.ASSIGN_PERMISSIONS, Permission.REVOKE_PERMISSIONS,
    }),
    Permission.EDIT_ALL_CASES: frozenset({Permission.VIEW_ALL_CASES}),
    Permission.EDIT_DEPARTMENT_CASES: frozenset({Permission.VIEW_DEPARTMENT_CASES}),
    Permission.EDIT_OWN_CASES: frozenset({Permission.VIEW_OWN_CASES}),
}
