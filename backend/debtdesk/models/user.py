from datetime import datetime

from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from debtdesk.database import Base


class User(Base):
    """Local mirror of the identity module's employee record."""

    __tablename__ = "users"

    employee_code: Mapped[str] = mapped_column(String(50), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True)
    full_name: Mapped[str] = mapped_column(String(200))
    branch_code: Mapped[str] = mapped_column(String(20), index=True)
    dept: Mapped[str] = mapped_column(String(50), index=True)
    role: Mapped[str] = mapped_column(String(50), default="employee")
    status: Mapped[str] = mapped_column(String(20), default="active")  # "active" | "disabled"
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_active(self) -> bool:
        return self.status == "active"
