from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from debtdesk.database import Base
from debtdesk.models.user import User


class DebtCase(Base):
    """
    Debt case, owned by the case-administration module.

    Only the fields needed for ownership and access decisions are mapped.
    ``assigned_employee_code`` is the base owner and is never changed by a
    delegation.
    """

    __tablename__ = "debt_cases"

    case_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_code: Mapped[str] = mapped_column(String(50), index=True)
    customer_name: Mapped[str] = mapped_column(String(200))
    state: Mapped[str] = mapped_column(String(30), default="beingFollowedUp")
    assigned_employee_code: Mapped[str | None] = mapped_column(
        ForeignKey("users.employee_code", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    officer: Mapped[User | None] = relationship(lazy="joined")
