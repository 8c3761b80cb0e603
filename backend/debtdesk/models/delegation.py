from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, DateTime, ForeignKey, Index, CheckConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from debtdesk.database import Base
from debtdesk.models.case import DebtCase
from debtdesk.models.user import User


class DelegationStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_STATUSES = frozenset({DelegationStatus.EXPIRED, DelegationStatus.REVOKED})


class CaseDelegation(Base):
    """
    Time-boxed transfer of handling authority over one case.

    Rows are append-only for audit: ``status`` moves once from ``active`` to
    ``expired`` or ``revoked`` and never changes again.
    """

    __tablename__ = "case_delegations"
    __table_args__ = (
        CheckConstraint("expiry_at > created_at", name="ck_case_delegations_window"),
        CheckConstraint(
            "delegator_employee_code <> delegatee_employee_code",
            name="ck_case_delegations_not_self",
        ),
        CheckConstraint(
            "status IN ('active', 'expired', 'revoked')",
            name="ck_case_delegations_status",
        ),
        # At most one active delegation per case.
        Index(
            "uq_case_delegations_active_case",
            "case_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_case_delegations_status_expiry", "status", "expiry_at"),
        Index("ix_case_delegations_case_delegatee", "case_id", "delegatee_employee_code"),
    )

    delegation_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(ForeignKey("debt_cases.case_id", ondelete="CASCADE"))
    delegator_employee_code: Mapped[str] = mapped_column(
        ForeignKey("users.employee_code", ondelete="RESTRICT"), index=True,
    )
    delegatee_employee_code: Mapped[str] = mapped_column(
        ForeignKey("users.employee_code", ondelete="RESTRICT"), index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expiry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default=DelegationStatus.ACTIVE.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    case: Mapped[DebtCase] = relationship()
    delegator: Mapped[User] = relationship(foreign_keys=[delegator_employee_code])
    delegatee: Mapped[User] = relationship(foreign_keys=[delegatee_employee_code])

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}
