"""
Great Pearl Coffee Finance - Employee Model

Reference data for staff. Used for display and role/permission gating;
the approval workflow reads it but never mutates it.
"""

from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, enum_values


class EmployeeStatus(str, Enum):
    """Employment status."""
    ACTIVE = "Active"
    DISABLED = "Disabled"


class Employee(BaseModel):
    """Staff member with a role string and a free-form permission list."""

    __tablename__ = "employees"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(100), nullable=False, default="User")
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    permissions: Mapped[List[str]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    status: Mapped[EmployeeStatus] = mapped_column(
        SQLEnum(EmployeeStatus, values_callable=enum_values),
        default=EmployeeStatus.ACTIVE,
        nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Employee(email={self.email}, role={self.role})>"
