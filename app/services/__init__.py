"""
Great Pearl Coffee Finance - Services Package

Business logic services.
"""

from app.services.employee_service import EmployeeService
from app.services.notification_service import NotificationService, NotifyResult
from app.services.cash_ledger_service import CashLedgerService
from app.services.approval_workflow import ApprovalWorkflowService, ApprovalState, ApprovalAction
from app.services.payment_service import PaymentService
from app.services.reports_service import ReportsService
from app.services.verification_service import VerificationService
from app.services.security_questions_service import SecurityQuestionsService
from app.services.sms_service import SmsService, SmsResult
from app.services.withdrawal_service import WithdrawalService
from app.services.realtime import RealtimeBroker, ChangeEvent, ChangeAction, publish_changes
from app.services.realtime_relay import RedisRealtimeRelay

__all__ = [
    "EmployeeService",
    "NotificationService",
    "NotifyResult",
    "CashLedgerService",
    "ApprovalWorkflowService",
    "ApprovalState",
    "ApprovalAction",
    "PaymentService",
    "ReportsService",
    "VerificationService",
    "SecurityQuestionsService",
    "SmsService",
    "SmsResult",
    "WithdrawalService",
    "RealtimeBroker",
    "ChangeEvent",
    "ChangeAction",
    "publish_changes",
    "RedisRealtimeRelay",
]
