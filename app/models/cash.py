"""
Great Pearl Coffee Finance - Cash Ledger Models

- CashBalance: the singleton running balance, versioned for optimistic locking
- CashTransaction: append-only ledger; rows are never updated after insert
- CashDeposit: a deposit awaiting confirmation before it reaches the ledger
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, enum_values


class CashTransactionType(str, Enum):
    """Ledger entry types."""
    DEPOSIT = "deposit"
    RECOVERY = "recovery"
    EXPENSE = "expense"
    SALARY = "salary"
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"

    @property
    def is_inflow(self) -> bool:
        return self in (CashTransactionType.DEPOSIT, CashTransactionType.RECOVERY)

    @property
    def sign(self) -> int:
        return 1 if self.is_inflow else -1


class CashTransactionStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"


class CashDepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class CashBalance(BaseModel):
    """
    Singleton running cash balance.

    The unique ``singleton`` column guarantees a single logical row; the
    version column makes concurrent read-modify-write cycles fail instead
    of silently overwriting each other.
    """

    __tablename__ = "finance_cash_balance"

    singleton: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, unique=True)
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0"), nullable=False
    )
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CashBalance(current_balance={self.current_balance}, version={self.version})>"


class CashTransaction(BaseModel):
    """Immutable ledger entry. ``amount`` is a positive magnitude; the type gives the sign."""

    __tablename__ = "finance_cash_transactions"

    transaction_type: Mapped[CashTransactionType] = mapped_column(
        SQLEnum(CashTransactionType, values_callable=enum_values),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CashTransactionStatus] = mapped_column(
        SQLEnum(CashTransactionStatus, values_callable=enum_values),
        default=CashTransactionStatus.CONFIRMED,
        nullable=False,
    )
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CashTransaction(type={self.transaction_type.value}, amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )


class CashDeposit(BaseModel):
    """Cash handed in to the finance desk, pending confirmation."""

    __tablename__ = "finance_cash_deposits"

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    submitted_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CashDepositStatus] = mapped_column(
        SQLEnum(CashDepositStatus, values_callable=enum_values),
        default=CashDepositStatus.PENDING,
        nullable=False,
        index=True,
    )
    confirmed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("finance_cash_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Optimistic lock so two confirmers cannot both post the same deposit
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
