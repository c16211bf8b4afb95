"""
Great Pearl Coffee Finance - Finance Models

Expenses booked by the finance desk, supplier advances and coffee lot
payment records.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class ExpenseStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"


class PaymentRecordStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    MOBILE_MONEY = "Mobile Money"
    BANK_TRANSFER = "Bank Transfer"


class FinanceExpense(BaseModel):
    """An expense line on the finance books."""

    __tablename__ = "finance_expenses"

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    expense_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExpenseStatus.PENDING.value, index=True
    )
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approval_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("approval_requests.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<FinanceExpense(category={self.category}, amount={self.amount})>"


class FinanceAdvance(BaseModel):
    """Cash advanced to a coffee supplier, recovered from later lot payments."""

    __tablename__ = "finance_advances"

    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    recovered_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0"), nullable=False
    )
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def outstanding(self) -> Decimal:
        return self.amount - (self.recovered_amount or Decimal("0"))


class PaymentRecord(BaseModel):
    """Payment owed to a supplier for an assessed coffee lot."""

    __tablename__ = "payment_records"

    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    batch_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quality_assessment_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Calculated lot value before advance deductions
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    advance_deducted: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0"), nullable=False
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0"), nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentRecordStatus.PENDING.value, index=True
    )
    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    paid_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
