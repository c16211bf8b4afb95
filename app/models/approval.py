"""
Great Pearl Coffee Finance - Approval Request Model

Requests for expenditure (expenses, requisitions, salary) that go through
admin sign-off and then finance sign-off.

The stored status text and approval flags are kept for compatibility with
existing rows; the workflow stage is derived from them by
app.services.approval_workflow.derive_state.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class ApprovalStatus(str, Enum):
    """Stored status text values."""
    PENDING = "Pending"
    PENDING_FINANCE = "Pending Finance"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class RequestPriority(str, Enum):
    """Request / notification priority."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# Request types grouped the way the finance desk counts its queues
EXPENSE_REQUEST_TYPES = (
    "Expense Request",
    "Company Expense",
    "Field Financing Request",
    "Personal Expense",
)
REQUISITION_REQUEST_TYPES = (
    "Requisition",
    "Cash Requisition",
)
HR_REQUEST_TYPES = (
    "Salary Request",
    "Wage Request",
    "Employee Salary Request",
    "Salary Advance",
)


class ApprovalRequest(BaseModel):
    """A requested expenditure awaiting admin then finance approval."""

    __tablename__ = "approval_requests"

    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestPriority.MEDIUM.value
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ApprovalStatus.PENDING.value, index=True
    )

    # Admin stage
    admin_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    admin_approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Finance stage
    finance_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    finance_approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    finance_approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Rejection
    rejected_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_hr_payment(self) -> bool:
        return self.type in HR_REQUEST_TYPES

    def __repr__(self) -> str:
        return f"<ApprovalRequest(type={self.type}, amount={self.amount}, status={self.status})>"
