"""
Great Pearl Coffee Finance - Withdrawal Service

Staff cash withdrawals go through admin approval (one admin, or three
distinct admins above the multi-approval threshold) and then finance
disbursement, which posts a withdrawal to the cash ledger.

Every admin approval needs a step-up proof: either a verified SMS code
bound to this request and approver, or correct security answers. The
requester can never approve their own withdrawal.
"""

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import commit_or_conflict, flush_or_conflict
from app.models.cash import CashTransactionType
from app.models.employee import Employee
from app.models.notification import NotificationPriority, NotificationType
from app.models.withdrawal import (
    PaymentChannel,
    StepUpMethod,
    WithdrawalApproval,
    WithdrawalRequest,
    WithdrawalStatus,
    WithdrawalVerificationCode,
)
from app.services.cash_ledger_service import CashLedgerService
from app.services.notification_service import NotificationService
from app.services.realtime import ChangeAction, ChangeEvent, publish_changes
from app.services.security_questions_service import SecurityQuestionsService
from app.services.sms_service import SmsService, format_phone, withdrawal_code_message
from app.utils.datetime_utils import ensure_aware, utcnow
from app.utils.error_handling import (
    AlreadyProcessedException,
    InsufficientPermissionsException,
    InvalidTransitionException,
    NotFoundException,
    SelfApprovalException,
    ValidationException,
    VerificationFailedException,
    validate_amount,
)
from app.utils.permissions import Role, has_finance_capability, is_admin
from app.utils.security import digests_match, generate_numeric_code, sha256_hex

logger = logging.getLogger(__name__)


def required_approvals_for(amount: Decimal) -> int:
    """Approvals needed before a withdrawal can reach finance."""
    if amount > Decimal(str(settings.withdrawal_multi_approval_threshold)):
        return settings.withdrawal_multi_approval_count
    return 1


class WithdrawalService:
    """Service for withdrawal requests and their step-up verification."""

    def __init__(self, db: AsyncSession, sms: Optional[SmsService] = None):
        self.db = db
        self.sms = sms or SmsService()
        self.notifications = NotificationService(db)
        self.ledger = CashLedgerService(db)
        self.security_questions = SecurityQuestionsService(db)

    # ===========================================
    # REQUESTS
    # ===========================================

    async def create(
        self,
        requester: Employee,
        amount: Any,
        reason: str,
        payment_channel: PaymentChannel = PaymentChannel.CASH,
        phone_number: Optional[str] = None,
        bank_name: Optional[str] = None,
        account_number: Optional[str] = None,
        account_name: Optional[str] = None,
        request_type: str = "withdrawal",
    ) -> Tuple[WithdrawalRequest, List[str]]:
        """File a withdrawal request."""
        amount = validate_amount(amount)
        if not reason or not reason.strip():
            raise ValidationException("Reason is required", field="reason")
        if payment_channel == PaymentChannel.MOBILE_MONEY and not phone_number:
            raise ValidationException("Phone number is required for mobile money", field="phone_number")
        if payment_channel == PaymentChannel.BANK and not (bank_name and account_number and account_name):
            raise ValidationException(
                "Bank name, account number and account name are required for bank transfers",
                field="bank_name",
            )

        request = WithdrawalRequest(
            requested_by=requester.email,
            employee_name=requester.name,
            amount=amount,
            reason=reason.strip(),
            request_type=request_type,
            status=WithdrawalStatus.PENDING,
            payment_channel=payment_channel,
            phone_number=phone_number,
            disbursement_bank_name=bank_name,
            disbursement_account_number=account_number,
            disbursement_account_name=account_name,
            required_approvals=required_approvals_for(amount),
            admin_approved=False,
            finance_approved=False,
            approvals=[],
        )
        self.db.add(request)
        await self.db.flush()

        approvals_note = (
            f" ({request.required_approvals} admin approvals required)"
            if request.requires_multiple_approvals else ""
        )
        result = await self.notifications.notify(
            title="New Withdrawal Request",
            message=f"{requester.name} requested a withdrawal of UGX {amount:,.0f}{approvals_note}.",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.HIGH if request.requires_multiple_approvals else NotificationPriority.MEDIUM,
            target_role=Role.ADMINISTRATOR.value,
            sender_email=requester.email,
            metadata={"withdrawal_request_id": str(request.id)},
        )

        await self.db.commit()

        logger.info(
            f"Withdrawal {request.id} of {amount} via {payment_channel.value} filed by {requester.email}, "
            f"needs {request.required_approvals} approval(s)"
        )
        await publish_changes(ChangeEvent.from_instance(ChangeAction.INSERT, request))
        return request, [w for w in [result.warning] if w]

    async def get(self, request_id: uuid.UUID) -> WithdrawalRequest:
        request = await self.db.get(WithdrawalRequest, request_id)
        if request is None:
            raise NotFoundException("Withdrawal request", request_id)
        return request

    async def list_requests(
        self,
        status: Optional[WithdrawalStatus] = None,
        requested_by: Optional[str] = None,
        limit: int = 200,
    ) -> List[WithdrawalRequest]:
        query = select(WithdrawalRequest).order_by(WithdrawalRequest.created_at.desc()).limit(limit)
        if status is not None:
            query = query.where(WithdrawalRequest.status == status)
        if requested_by:
            query = query.where(WithdrawalRequest.requested_by == requested_by)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ===========================================
    # SMS VERIFICATION CODES
    # ===========================================

    async def create_verification_code(
        self,
        withdrawal_request_id: uuid.UUID,
        approver: Employee,
        approver_phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Issue a one-time code to an approver and send it by SMS.

        Earlier unused codes for the same request and approver stop working.

        Returns:
            {code_id, code, phone, expires_at}
        """
        if not is_admin(approver):
            raise InsufficientPermissionsException("Admin approval", user_role=approver.role)

        request = await self.get(withdrawal_request_id)
        if request.status != WithdrawalStatus.PENDING:
            raise InvalidTransitionException("Withdrawal request", request.status.value, "verify")

        phone = approver_phone or approver.phone
        if not phone:
            raise ValidationException("No phone number on record for approver", field="approver_phone")
        phone = format_phone(phone)

        await self.db.execute(
            update(WithdrawalVerificationCode)
            .where(WithdrawalVerificationCode.withdrawal_request_id == request.id)
            .where(WithdrawalVerificationCode.approver_email == approver.email)
            .where(WithdrawalVerificationCode.is_used.is_(False))
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )

        code = generate_numeric_code(6)
        verification = WithdrawalVerificationCode(
            withdrawal_request_id=request.id,
            approver_email=approver.email,
            phone=phone,
            code_hash=sha256_hex(code),
            expires_at=utcnow() + timedelta(minutes=settings.withdrawal_code_ttl_minutes),
            attempts=0,
            max_attempts=settings.withdrawal_code_max_attempts,
            is_used=False,
        )
        self.db.add(verification)
        await self.db.flush()

        try:
            await self.sms.send(phone, withdrawal_code_message(approver.name, code))
        except Exception:
            await self.db.rollback()
            raise

        await self.db.commit()

        logger.info(f"Withdrawal code {verification.id} issued to {approver.email} for request {request.id}")
        return {
            "code_id": verification.id,
            "code": code,
            "phone": phone,
            "expires_at": verification.expires_at,
        }

    async def verify_code(self, code_id: uuid.UUID, code: str, approver_email: str) -> Dict[str, Any]:
        """
        Check a code entered by its approver.

        Returns:
            {success, error?, attempts_remaining?}
        """
        verification = await self.db.get(WithdrawalVerificationCode, code_id)
        if verification is None or verification.approver_email != approver_email:
            return {"success": False, "error": "Verification code not found"}

        if verification.is_used or verification.consumed_at is not None:
            return {"success": False, "error": "Code already used"}
        if verification.verified_at is not None:
            return {"success": True}
        if ensure_aware(verification.expires_at) < utcnow():
            return {"success": False, "error": "Code has expired"}
        if verification.attempts >= verification.max_attempts:
            return {"success": False, "error": "Too many failed attempts", "attempts_remaining": 0}

        if not digests_match(sha256_hex((code or "").strip()), verification.code_hash):
            verification.attempts += 1
            await self.db.commit()
            logger.warning(
                f"Wrong withdrawal code {verification.id} from {approver_email} "
                f"({verification.attempts_remaining} attempts left)"
            )
            return {
                "success": False,
                "error": "Invalid code",
                "attempts_remaining": verification.attempts_remaining,
            }

        verification.verified_at = utcnow()
        await self.db.commit()
        logger.info(f"Withdrawal code {verification.id} verified by {approver_email}")
        return {"success": True}

    async def expire_stale_codes(self) -> int:
        """Retire unused codes past their expiry. Returns how many were retired."""
        result = await self.db.execute(
            update(WithdrawalVerificationCode)
            .where(WithdrawalVerificationCode.is_used.is_(False))
            .where(WithdrawalVerificationCode.verified_at.is_(None))
            .where(WithdrawalVerificationCode.expires_at < utcnow())
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def _consume_code(self, request: WithdrawalRequest, approver: Employee, code_id: Optional[uuid.UUID]):
        if code_id is None:
            raise VerificationFailedException("A verification code is required", details={"method": StepUpMethod.SMS.value})

        verification = await self.db.get(WithdrawalVerificationCode, code_id)
        if (
            verification is None
            or verification.withdrawal_request_id != request.id
            or verification.approver_email != approver.email
        ):
            raise VerificationFailedException("Verification code does not belong to this approval")
        if verification.verified_at is None:
            raise VerificationFailedException("Verification code has not been verified")
        if verification.consumed_at is not None or verification.is_used:
            raise VerificationFailedException("Verification code has already been used")

        verification.consumed_at = utcnow()
        verification.is_used = True

    # ===========================================
    # ADMIN STAGE
    # ===========================================

    async def admin_approve(
        self,
        request_id: uuid.UUID,
        actor: Employee,
        method: StepUpMethod,
        code_id: Optional[uuid.UUID] = None,
        answers: Optional[List[str]] = None,
    ) -> Tuple[WithdrawalRequest, List[str]]:
        """
        Record one admin's approval.

        The request moves to finance once it holds the required number of
        approvals from distinct admins.
        """
        if not is_admin(actor):
            raise InsufficientPermissionsException("Admin approval", user_role=actor.role)

        request = await self.get(request_id)
        if request.status != WithdrawalStatus.PENDING:
            raise InvalidTransitionException("Withdrawal request", request.status.value, "approve")
        if request.requested_by == actor.email:
            raise SelfApprovalException("You cannot approve your own withdrawal request")
        if actor.email in request.approver_emails:
            raise AlreadyProcessedException("You have already approved this request", "Withdrawal request")

        if method == StepUpMethod.SMS:
            await self._consume_code(request, actor, code_id)
        elif not await self.security_questions.verify(actor.email, answers or []):
            raise VerificationFailedException(
                "Security answers are incorrect",
                details={"method": StepUpMethod.SECURITY_QUESTIONS.value},
            )

        now = utcnow()
        request.approvals.append(WithdrawalApproval(
            approver_email=actor.email,
            approver_name=actor.name,
            verification_method=method,
            approved_at=now,
        ))

        complete = request.approval_count >= request.required_approvals
        if complete:
            request.admin_approved = True
            request.admin_approved_at = now
            request.status = WithdrawalStatus.PENDING_FINANCE
        await flush_or_conflict(
            self.db, "Withdrawal request", duplicate_message="You have already approved this request",
        )

        warnings = []
        if complete:
            result = await self.notifications.notify(
                title="Withdrawal Awaiting Disbursement",
                message=f"Withdrawal of UGX {request.amount:,.0f} for {request.employee_name or request.requested_by} is approved by admin and awaiting finance.",
                notification_type=NotificationType.APPROVAL_REQUEST,
                priority=NotificationPriority.MEDIUM,
                target_role=Role.FINANCE.value,
                sender_email=actor.email,
                metadata={"withdrawal_request_id": str(request.id)},
            )
            warnings.append(result.warning)

        result = await self.notifications.notify(
            title="Withdrawal Approved by Admin",
            message=(
                f"Your withdrawal of UGX {request.amount:,.0f} was approved by {actor.name} "
                f"({request.approval_count}/{request.required_approvals})."
            ),
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.MEDIUM,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"withdrawal_request_id": str(request.id)},
        )
        warnings.append(result.warning)

        await commit_or_conflict(self.db, "Withdrawal request")

        logger.info(
            f"Withdrawal {request.id} approved by {actor.email} via {method.value} "
            f"({request.approval_count}/{request.required_approvals})"
        )
        await publish_changes(ChangeEvent.from_instance(ChangeAction.UPDATE, request))
        return request, [w for w in warnings if w]

    async def admin_reject(self, request_id: uuid.UUID, actor: Employee, reason: str) -> Tuple[WithdrawalRequest, List[str]]:
        if not is_admin(actor):
            raise InsufficientPermissionsException("Admin approval", user_role=actor.role)
        if not reason or not reason.strip():
            raise ValidationException("A rejection reason is required", field="reason")

        request = await self.get(request_id)
        if request.status != WithdrawalStatus.PENDING:
            raise InvalidTransitionException("Withdrawal request", request.status.value, "reject")

        return await self._reject(request, actor, reason.strip())

    # ===========================================
    # FINANCE STAGE
    # ===========================================

    async def finance_disburse(
        self,
        request_id: uuid.UUID,
        actor: Employee,
        payment_channel: Optional[PaymentChannel] = None,
    ) -> Tuple[WithdrawalRequest, List[str]]:
        """
        Pay out an admin-approved withdrawal.

        The ledger posting and the status change commit together.
        """
        if not has_finance_capability(actor):
            raise InsufficientPermissionsException("Finance approval", user_role=actor.role)

        request = await self.get(request_id)
        if request.status != WithdrawalStatus.PENDING_FINANCE or not request.admin_approved:
            raise InvalidTransitionException("Withdrawal request", request.status.value, "disburse")

        try:
            transaction = await self.ledger.apply_disbursement(
                amount=request.amount,
                transaction_type=CashTransactionType.WITHDRAWAL,
                reference=str(request.id),
                actor_email=actor.email,
                notes=f"Withdrawal for {request.employee_name or request.requested_by}: {request.reason}",
            )
        except Exception:
            await self.db.rollback()
            raise

        now = utcnow()
        request.status = WithdrawalStatus.APPROVED
        request.finance_approved = True
        request.approved_by = actor.name
        request.approved_at = now
        request.transaction_id = transaction.id
        if payment_channel is not None:
            request.payment_channel = payment_channel
        await flush_or_conflict(self.db, "Withdrawal request")

        result = await self.notifications.notify(
            title="Withdrawal Disbursed",
            message=f"Your withdrawal of UGX {request.amount:,.0f} has been disbursed via {request.payment_channel.value.replace('_', ' ').lower()}.",
            notification_type=NotificationType.PAYMENT_READY,
            priority=NotificationPriority.MEDIUM,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"withdrawal_request_id": str(request.id), "transaction_id": str(transaction.id)},
        )

        await commit_or_conflict(self.db, "Withdrawal request")

        logger.info(f"Withdrawal {request.id} disbursed by {actor.email}, balance {transaction.balance_after}")
        await publish_changes(
            ChangeEvent.from_instance(ChangeAction.UPDATE, request),
            ChangeEvent.from_instance(ChangeAction.INSERT, transaction),
        )
        return request, [w for w in [result.warning] if w]

    async def finance_reject(
        self,
        request_id: uuid.UUID,
        actor: Employee,
        reason: Optional[str] = None,
    ) -> Tuple[WithdrawalRequest, List[str]]:
        if not has_finance_capability(actor):
            raise InsufficientPermissionsException("Finance approval", user_role=actor.role)

        request = await self.get(request_id)
        if request.status not in (WithdrawalStatus.PENDING, WithdrawalStatus.PENDING_FINANCE):
            raise InvalidTransitionException("Withdrawal request", request.status.value, "reject")

        return await self._reject(request, actor, reason)

    async def _reject(
        self,
        request: WithdrawalRequest,
        actor: Employee,
        reason: Optional[str],
    ) -> Tuple[WithdrawalRequest, List[str]]:
        request.status = WithdrawalStatus.REJECTED
        request.rejected_by = actor.name
        request.rejection_reason = reason
        await flush_or_conflict(self.db, "Withdrawal request")

        message = f"Your withdrawal of UGX {request.amount:,.0f} was rejected by {actor.name}."
        if reason:
            message += f" Reason: {reason}"
        result = await self.notifications.notify(
            title="Withdrawal Rejected",
            message=message,
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.HIGH,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"withdrawal_request_id": str(request.id), "reason": reason},
        )

        await commit_or_conflict(self.db, "Withdrawal request")

        logger.info(f"Withdrawal {request.id} rejected by {actor.email}: {reason}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.UPDATE, request))
        return request, [w for w in [result.warning] if w]


def get_withdrawal_service(db: AsyncSession) -> WithdrawalService:
    """Factory function for dependency injection."""
    return WithdrawalService(db)
