"""Delegation, permission and audit tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-12 09:00:00.000000

Creates the users mirror, debt_cases (ownership fields only), case_delegations
with the one-active-delegation-per-case partial unique index, the permission
catalog with explicit grants, the report export allow list and the
hash-chained audit_log. Seeds the permission catalog and the bootstrap
administrator 99999999.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from debtdesk.auth.permissions import Permission, PERMISSION_DESCRIPTIONS

# revision identifiers, used by Alembic.
revision: str = "e1f2a3b4c5d6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("employee_code", sa.String(50), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("branch_code", sa.String(20), nullable=False),
        sa.Column("dept", sa.String(50), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="employee"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("username"),
    )
    op.create_index("ix_users_branch_code", "users", ["branch_code"])
    op.create_index("ix_users_dept", "users", ["dept"])

    op.create_table(
        "debt_cases",
        sa.Column("case_id", sa.String(36), primary_key=True),
        sa.Column("customer_code", sa.String(50), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("state", sa.String(30), nullable=False, server_default="beingFollowedUp"),
        sa.Column(
            "assigned_employee_code", sa.String(50),
            sa.ForeignKey("users.employee_code", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_debt_cases_customer_code", "debt_cases", ["customer_code"])
    op.create_index("ix_debt_cases_assigned_employee_code", "debt_cases", ["assigned_employee_code"])

    op.create_table(
        "case_delegations",
        sa.Column("delegation_id", sa.String(36), primary_key=True),
        sa.Column(
            "case_id", sa.String(36),
            sa.ForeignKey("debt_cases.case_id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "delegator_employee_code", sa.String(50),
            sa.ForeignKey("users.employee_code", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "delegatee_employee_code", sa.String(50),
            sa.ForeignKey("users.employee_code", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(50), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("expiry_at > created_at", name="ck_case_delegations_window"),
        sa.CheckConstraint(
            "delegator_employee_code <> delegatee_employee_code",
            name="ck_case_delegations_not_self",
        ),
        sa.CheckConstraint(
            "status IN ('active', 'expired', 'revoked')",
            name="ck_case_delegations_status",
        ),
    )
    op.create_index(
        "uq_case_delegations_active_case", "case_delegations", ["case_id"],
        unique=True, postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_case_delegations_status_expiry", "case_delegations", ["status", "expiry_at"])
    op.create_index(
        "ix_case_delegations_case_delegatee", "case_delegations",
        ["case_id", "delegatee_employee_code"],
    )
    op.create_index(
        "ix_case_delegations_delegator_employee_code", "case_delegations", ["delegator_employee_code"],
    )
    op.create_index(
        "ix_case_delegations_delegatee_employee_code", "case_delegations", ["delegatee_employee_code"],
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "employee_code", sa.String(50),
            sa.ForeignKey("users.employee_code", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "permission_id", sa.Integer(),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("granted", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("employee_code", "permission_id", name="uq_user_permissions_employee_permission"),
    )
    op.create_index("ix_user_permissions_employee_code", "user_permissions", ["employee_code"])

    op.create_table(
        "report_export_allowlist",
        sa.Column(
            "employee_code", sa.String(50),
            sa.ForeignKey("users.employee_code", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("added_by", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("action", sa.String(500), nullable=False),
        sa.Column("resource_type", sa.String(30), nullable=True),
        sa.Column("resource_id", sa.String(50), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("current_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_log_event_id", "audit_log", ["event_id"], unique=True)
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_log_actor", "audit_log", ["actor"])
    op.create_index("ix_audit_log_resource", "audit_log", ["resource_type", "resource_id"])

    # Seed the permission catalog
    permissions_table = sa.table(
        "permissions",
        sa.column("name", sa.String),
        sa.column("description", sa.String),
    )
    op.bulk_insert(permissions_table, [
        {"name": p.value, "description": PERMISSION_DESCRIPTIONS.get(p)}
        for p in Permission
    ])

    # Bootstrap administrator; real employees arrive from the identity module.
    users_table = sa.table(
        "users",
        sa.column("employee_code", sa.String),
        sa.column("username", sa.String),
        sa.column("full_name", sa.String),
        sa.column("branch_code", sa.String),
        sa.column("dept", sa.String),
        sa.column("role", sa.String),
    )
    op.bulk_insert(users_table, [{
        "employee_code": "99999999",
        "username": "admin",
        "full_name": "System Administrator",
        "branch_code": "000",
        "dept": "IT",
        "role": "administrator",
    }])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("report_export_allowlist")
    op.drop_table("user_permissions")
    op.drop_table("permissions")
    op.drop_index("uq_case_delegations_active_case", table_name="case_delegations")
    op.drop_table("case_delegations")
    op.drop_table("debt_cases")
    op.drop_table("users")
