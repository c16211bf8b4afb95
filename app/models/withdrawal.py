"""
Great Pearl Coffee Finance - Withdrawal Models

Staff cash withdrawal requests ("money requests"), the individual admin
approvals they collect, and the one-time SMS codes approvers use to prove
who they are before approving.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, enum_values


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PENDING_FINANCE = "pending_finance"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentChannel(str, Enum):
    CASH = "CASH"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK = "BANK"


class StepUpMethod(str, Enum):
    """How an approver proved their identity."""
    SMS = "sms"
    SECURITY_QUESTIONS = "security_questions"


class WithdrawalRequest(BaseModel):
    """A staff request to withdraw cash."""

    __tablename__ = "money_requests"

    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    employee_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), nullable=False, default="withdrawal")
    status: Mapped[WithdrawalStatus] = mapped_column(
        SQLEnum(WithdrawalStatus, values_callable=enum_values),
        default=WithdrawalStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Disbursement details
    payment_channel: Mapped[PaymentChannel] = mapped_column(
        SQLEnum(PaymentChannel, values_callable=enum_values),
        default=PaymentChannel.CASH,
        nullable=False,
    )
    phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    disbursement_bank_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    disbursement_account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    disbursement_account_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Admin stage
    required_approvals: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    admin_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Finance stage
    finance_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("finance_cash_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Rejection
    rejected_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    approvals: Mapped[List["WithdrawalApproval"]] = relationship(
        back_populates="withdrawal_request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="WithdrawalApproval.approved_at",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def requires_multiple_approvals(self) -> bool:
        return self.required_approvals > 1

    @property
    def approval_count(self) -> int:
        return len(self.approvals)

    @property
    def approver_emails(self) -> List[str]:
        return [a.approver_email for a in self.approvals]

    def __repr__(self) -> str:
        return f"<WithdrawalRequest(amount={self.amount}, status={self.status.value})>"


class WithdrawalApproval(BaseModel):
    """One admin's sign-off on a withdrawal request."""

    __tablename__ = "withdrawal_approvals"
    __table_args__ = (
        UniqueConstraint("withdrawal_request_id", "approver_email", name="uq_withdrawal_approvals_request_approver"),
    )

    withdrawal_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("money_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_email: Mapped[str] = mapped_column(String(255), nullable=False)
    approver_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    verification_method: Mapped[StepUpMethod] = mapped_column(
        SQLEnum(StepUpMethod, values_callable=enum_values),
        nullable=False,
    )
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    withdrawal_request: Mapped["WithdrawalRequest"] = relationship(back_populates="approvals")


class WithdrawalVerificationCode(BaseModel):
    """
    One-time 6-digit code sent to an approver by SMS.

    Only the SHA-256 digest of the code is stored.
    """

    __tablename__ = "withdrawal_verification_codes"

    withdrawal_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("money_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # verified_at: code entered correctly; consumed_at: used for an approval
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)
