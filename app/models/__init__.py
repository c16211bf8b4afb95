"""
Great Pearl Coffee Finance - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin
from app.models.employee import Employee, EmployeeStatus
from app.models.approval import (
    ApprovalRequest,
    ApprovalStatus,
    RequestPriority,
    EXPENSE_REQUEST_TYPES,
    REQUISITION_REQUEST_TYPES,
    HR_REQUEST_TYPES,
)
from app.models.cash import (
    CashBalance,
    CashTransaction,
    CashTransactionType,
    CashTransactionStatus,
    CashDeposit,
    CashDepositStatus,
)
from app.models.finance import (
    FinanceExpense,
    FinanceAdvance,
    PaymentRecord,
    ExpenseStatus,
    PaymentRecordStatus,
    PaymentMethod,
)
from app.models.notification import (
    FinanceNotification,
    NotificationType,
    NotificationPriority,
    DeliveryStatus,
)
from app.models.verification import (
    Verification,
    VerificationAuditLog,
    VerificationType,
    VerificationStatus,
    VerificationAuditAction,
)
from app.models.security import UserSecurityQuestions
from app.models.withdrawal import (
    WithdrawalRequest,
    WithdrawalApproval,
    WithdrawalVerificationCode,
    WithdrawalStatus,
    PaymentChannel,
    StepUpMethod,
)
from app.models.settings import FinanceSetting

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    # Staff
    "Employee",
    "EmployeeStatus",
    # Approvals
    "ApprovalRequest",
    "ApprovalStatus",
    "RequestPriority",
    "EXPENSE_REQUEST_TYPES",
    "REQUISITION_REQUEST_TYPES",
    "HR_REQUEST_TYPES",
    # Cash ledger
    "CashBalance",
    "CashTransaction",
    "CashTransactionType",
    "CashTransactionStatus",
    "CashDeposit",
    "CashDepositStatus",
    # Finance
    "FinanceExpense",
    "FinanceAdvance",
    "PaymentRecord",
    "ExpenseStatus",
    "PaymentRecordStatus",
    "PaymentMethod",
    # Notifications
    "FinanceNotification",
    "NotificationType",
    "NotificationPriority",
    "DeliveryStatus",
    # Verification portal
    "Verification",
    "VerificationAuditLog",
    "VerificationType",
    "VerificationStatus",
    "VerificationAuditAction",
    # Security questions
    "UserSecurityQuestions",
    # Withdrawals
    "WithdrawalRequest",
    "WithdrawalApproval",
    "WithdrawalVerificationCode",
    "WithdrawalStatus",
    "PaymentChannel",
    "StepUpMethod",
    # Settings
    "FinanceSetting",
]
