from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from debtdesk.database import Base


class PermissionRecord(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserPermission(Base):
    """
    Explicit per-employee override.

    ``granted=True`` forces the permission on, ``granted=False`` forces it off;
    either way the row beats role and department defaults.
    """

    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("employee_code", "permission_id", name="uq_user_permissions_employee_permission"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    employee_code: Mapped[str] = mapped_column(
        ForeignKey("users.employee_code", ondelete="CASCADE"), index=True,
    )
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"))
    granted: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    permission: Mapped[PermissionRecord] = relationship(lazy="joined")


class ExportAllowEntry(Base):
    """Employees allowed to export reports regardless of role or department."""

    __tablename__ = "report_export_allowlist"

    employee_code: Mapped[str] = mapped_column(
        ForeignKey("users.employee_code", ondelete="CASCADE"), primary_key=True,
    )
    added_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
