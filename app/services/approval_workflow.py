"""
Two-Stage Approval Workflow Service
Admin sign-off followed by finance sign-off for expenditure requests

States (derived from the stored row, never stored themselves):
- PendingAdmin -> PendingFinance (admin_approve)
- PendingFinance -> Approved (finance_approve, posts to the cash ledger)
- PendingAdmin | PendingFinance -> Rejected (reject)

Approved and Rejected are terminal.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, or_, select

from app.database import commit_or_conflict, flush_or_conflict
from app.models.approval import (
    ApprovalRequest,
    ApprovalStatus,
    RequestPriority,
    EXPENSE_REQUEST_TYPES,
    HR_REQUEST_TYPES,
    REQUISITION_REQUEST_TYPES,
)
from app.models.cash import CashTransactionType
from app.models.employee import Employee
from app.models.finance import ExpenseStatus, FinanceExpense
from app.models.notification import NotificationPriority, NotificationType
from app.services.cash_ledger_service import CashLedgerService
from app.services.notification_service import NotificationService
from app.services.realtime import ChangeAction, ChangeEvent, publish_changes
from app.utils.datetime_utils import utcnow
from app.utils.error_handling import (
    InsufficientPermissionsException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
    validate_amount,
)
from app.utils.permissions import Role, can_reject, has_finance_capability, is_admin

logger = logging.getLogger(__name__)


class ApprovalState(str, Enum):
    PENDING_ADMIN = "PendingAdmin"
    PENDING_FINANCE = "PendingFinance"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ApprovalAction(str, Enum):
    ADMIN_APPROVE = "admin_approve"
    FINANCE_APPROVE = "finance_approve"
    REJECT = "reject"


TRANSITIONS: Dict[Tuple[ApprovalState, ApprovalAction], ApprovalState] = {
    (ApprovalState.PENDING_ADMIN, ApprovalAction.ADMIN_APPROVE): ApprovalState.PENDING_FINANCE,
    (ApprovalState.PENDING_FINANCE, ApprovalAction.FINANCE_APPROVE): ApprovalState.APPROVED,
    (ApprovalState.PENDING_ADMIN, ApprovalAction.REJECT): ApprovalState.REJECTED,
    (ApprovalState.PENDING_FINANCE, ApprovalAction.REJECT): ApprovalState.REJECTED,
}


def derive_state(request: ApprovalRequest) -> ApprovalState:
    """
    Workflow stage of a stored request.

    Precedence matters: older rows can carry both a Rejected status and
    approval flags, and the status text wins.
    """
    if request.status == ApprovalStatus.REJECTED.value:
        return ApprovalState.REJECTED
    if request.finance_approved or request.status == ApprovalStatus.APPROVED.value:
        return ApprovalState.APPROVED
    if request.admin_approved and not request.finance_approved:
        return ApprovalState.PENDING_FINANCE
    return ApprovalState.PENDING_ADMIN


def state_condition(state: ApprovalState):
    """SQL filter selecting the rows derive_state() puts in the given state."""
    rejected = ApprovalRequest.status == ApprovalStatus.REJECTED.value
    approved = or_(
        ApprovalRequest.finance_approved.is_(True),
        ApprovalRequest.status == ApprovalStatus.APPROVED.value,
    )
    if state == ApprovalState.REJECTED:
        return rejected
    if state == ApprovalState.APPROVED:
        return and_(~rejected, approved)
    admin_done = ApprovalRequest.admin_approved.is_(True)
    return and_(~rejected, ~approved, admin_done if state == ApprovalState.PENDING_FINANCE else ~admin_done)


def next_state(state: ApprovalState, action: ApprovalAction) -> ApprovalState:
    """Transition function. Raises InvalidTransitionException for any other pair."""
    try:
        return TRANSITIONS[(state, action)]
    except KeyError:
        raise InvalidTransitionException("Approval request", state.value, action.value)


def ledger_type_for(request: ApprovalRequest) -> CashTransactionType:
    return CashTransactionType.SALARY if request.is_hr_payment else CashTransactionType.EXPENSE


def expense_category_for(request: ApprovalRequest) -> str:
    details = request.details or {}
    return details.get("category") or request.type


class ApprovalWorkflowService:
    """
    Admin -> finance approval workflow service
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.notifications = NotificationService(db)
        self.ledger = CashLedgerService(db)

    async def create_request(
        self,
        requester: Employee,
        request_type: str,
        title: str,
        amount: Any,
        description: Optional[str] = None,
        department: Optional[str] = None,
        priority: RequestPriority = RequestPriority.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ApprovalRequest, List[str]]:
        """File a new request. It starts awaiting admin approval."""
        if not title or not title.strip():
            raise ValidationException("Title is required", field="title")

        request = ApprovalRequest(
            type=request_type,
            title=title.strip(),
            description=description,
            amount=validate_amount(amount),
            department=department or requester.department,
            requested_by=requester.email,
            priority=priority.value,
            status=ApprovalStatus.PENDING.value,
            admin_approved=False,
            finance_approved=False,
            details=details,
        )
        self.db.add(request)
        await self.db.flush()

        result = await self.notifications.notify(
            title=f"New {request_type}",
            message=f"{requester.name} requested UGX {request.amount:,.0f}: {request.title}",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority(priority.value),
            target_role=Role.ADMINISTRATOR.value,
            sender_email=requester.email,
            metadata={"request_id": str(request.id), "request_type": request_type},
        )

        await self.db.commit()
        await self.db.refresh(request)

        logger.info(f"Approval request {request.id} ({request_type}, {request.amount}) filed by {requester.email}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.INSERT, request))

        return request, [w for w in [result.warning] if w]

    async def get_request(self, request_id: UUID) -> ApprovalRequest:
        request = await self.db.get(ApprovalRequest, request_id)
        if not request:
            raise NotFoundException("Approval request", request_id)
        return request

    async def list_requests(
        self,
        state: Optional[ApprovalState] = None,
        request_type: Optional[str] = None,
        requested_by: Optional[str] = None,
        department: Optional[str] = None,
        limit: int = 200,
    ) -> List[ApprovalRequest]:
        """Requests newest first; the state filter applies to the derived state."""
        query = select(ApprovalRequest).order_by(ApprovalRequest.created_at.desc())
        if request_type:
            query = query.where(ApprovalRequest.type == request_type)
        if requested_by:
            query = query.where(ApprovalRequest.requested_by == requested_by)
        if department:
            query = query.where(ApprovalRequest.department == department)
        if state is not None:
            query = query.where(state_condition(state))

        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())

    async def pending_counts(self) -> Dict[str, int]:
        """Requests waiting on finance, bucketed the way the finance desk counts them."""
        result = await self.db.execute(
            select(ApprovalRequest.type, func.count(ApprovalRequest.id))
            .where(ApprovalRequest.admin_approved.is_(True))
            .where(ApprovalRequest.finance_approved.is_(False))
            .where(ApprovalRequest.status.notin_([ApprovalStatus.REJECTED.value, ApprovalStatus.APPROVED.value]))
            .group_by(ApprovalRequest.type)
        )
        counts = {"expenses": 0, "requisitions": 0, "hr_payments": 0}
        for request_type, count in result.all():
            if request_type in HR_REQUEST_TYPES:
                counts["hr_payments"] += count
            elif request_type in REQUISITION_REQUEST_TYPES:
                counts["requisitions"] += count
            elif request_type in EXPENSE_REQUEST_TYPES:
                counts["expenses"] += count
        counts["total"] = counts["expenses"] + counts["requisitions"] + counts["hr_payments"]
        return counts

    async def admin_approve(self, request_id: UUID, actor: Employee) -> Tuple[ApprovalRequest, List[str]]:
        """Admin sign-off. Moves the request to finance."""
        if not is_admin(actor):
            raise InsufficientPermissionsException("Admin approval", user_role=actor.role)

        request = await self.get_request(request_id)
        next_state(derive_state(request), ApprovalAction.ADMIN_APPROVE)

        request.admin_approved = True
        request.admin_approved_by = actor.name
        request.admin_approved_at = utcnow()
        request.status = ApprovalStatus.PENDING_FINANCE.value
        await flush_or_conflict(self.db, "Approval request")

        warnings = []
        result = await self.notifications.notify(
            title="Request Approved by Admin",
            message=f"Your {request.type.lower()} '{request.title}' was approved by {actor.name} and is now awaiting finance approval.",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.MEDIUM,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"request_id": str(request.id), "stage": "admin"},
        )
        warnings.append(result.warning)

        result = await self.notifications.notify(
            title="Awaiting Finance Approval",
            message=f"{request.type} '{request.title}' (UGX {request.amount:,.0f}) is awaiting finance approval.",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.MEDIUM,
            target_role=Role.FINANCE.value,
            sender_email=actor.email,
            metadata={"request_id": str(request.id), "stage": "finance"},
        )
        warnings.append(result.warning)

        await commit_or_conflict(self.db, "Approval request")

        logger.info(f"Approval request {request.id} admin-approved by {actor.email}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.UPDATE, request))

        return request, [w for w in warnings if w]

    async def finance_approve(self, request_id: UUID, actor: Employee) -> Tuple[ApprovalRequest, List[str]]:
        """
        Finance sign-off.

        Approves the request, posts the disbursement to the cash ledger and
        books the expense line, all in one transaction: if any step fails
        nothing is written and the request stays pending finance.
        """
        if not has_finance_capability(actor):
            raise InsufficientPermissionsException("Finance approval", user_role=actor.role)

        request = await self.get_request(request_id)
        next_state(derive_state(request), ApprovalAction.FINANCE_APPROVE)
        actor_email = actor.email

        now = utcnow()
        try:
            request.finance_approved = True
            request.finance_approved_by = actor.name
            request.finance_approved_at = now
            request.status = ApprovalStatus.APPROVED.value
            await flush_or_conflict(self.db, "Approval request")

            transaction = await self.ledger.apply_disbursement(
                amount=request.amount,
                transaction_type=ledger_type_for(request),
                reference=str(request.id),
                actor_email=actor.email,
                notes=request.title,
            )

            expense = FinanceExpense(
                description=request.title,
                amount=request.amount,
                category=expense_category_for(request),
                expense_date=now.date(),
                status=ExpenseStatus.APPROVED.value,
                approved_by=actor.name,
                created_by=actor.email,
                approval_request_id=request.id,
            )
            self.db.add(expense)
            await self.db.flush()
        except Exception:
            await self.db.rollback()
            logger.warning(f"Finance approval of request {request_id} by {actor_email} rolled back")
            raise

        result = await self.notifications.notify(
            title="Request Approved",
            message=f"Your {request.type.lower()} '{request.title}' for UGX {request.amount:,.0f} has been approved by finance.",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.MEDIUM,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"request_id": str(request.id), "transaction_id": str(transaction.id)},
        )

        await commit_or_conflict(self.db, "Approval request")

        logger.info(
            f"Approval request {request.id} finance-approved by {actor.email}: "
            f"{transaction.transaction_type.value} {transaction.amount}, balance {transaction.balance_after}"
        )
        await publish_changes(
            ChangeEvent.from_instance(ChangeAction.UPDATE, request),
            ChangeEvent.from_instance(ChangeAction.INSERT, transaction),
            ChangeEvent.from_instance(ChangeAction.INSERT, expense),
        )

        return request, [w for w in [result.warning] if w]

    async def reject(
        self,
        request_id: UUID,
        actor: Employee,
        reason: Optional[str] = None,
    ) -> Tuple[ApprovalRequest, List[str]]:
        """Reject a pending request at either stage."""
        if not can_reject(actor):
            raise InsufficientPermissionsException("Admin or Finance approval", user_role=actor.role)

        request = await self.get_request(request_id)
        next_state(derive_state(request), ApprovalAction.REJECT)

        request.status = ApprovalStatus.REJECTED.value
        request.finance_approved = False
        request.rejected_by = actor.name
        request.rejected_at = utcnow()
        request.rejection_reason = reason
        await flush_or_conflict(self.db, "Approval request")

        message = f"Your {request.type.lower()} '{request.title}' was rejected by {actor.name}."
        if reason:
            message += f" Reason: {reason}"

        result = await self.notifications.notify(
            title="Request Rejected",
            message=message,
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=NotificationPriority.HIGH,
            target_user_email=request.requested_by,
            sender_email=actor.email,
            metadata={"request_id": str(request.id), "reason": reason},
        )

        await commit_or_conflict(self.db, "Approval request")

        logger.info(f"Approval request {request.id} rejected by {actor.email}: {reason}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.UPDATE, request))

        return request, [w for w in [result.warning] if w]


def get_approval_workflow_service(db: AsyncSession) -> ApprovalWorkflowService:
    """Factory function for dependency injection."""
    return ApprovalWorkflowService(db)
