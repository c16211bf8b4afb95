"""
Great Pearl Coffee Finance - Withdrawals Router

API endpoints for staff cash withdrawals: filing, SMS step-up codes,
admin approval (single or multi-admin), and finance disbursement.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_current_employee, require_admin, require_finance
from app.models.employee import Employee
from app.models.withdrawal import PaymentChannel, StepUpMethod, WithdrawalStatus
from app.services.withdrawal_service import get_withdrawal_service

router = APIRouter(prefix="/withdrawals", tags=["Withdrawals"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class WithdrawalCreate(BaseModel):
    """Schema for filing a withdrawal."""
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=2000)
    request_type: str = Field("withdrawal", max_length=50)
    payment_channel: PaymentChannel = PaymentChannel.CASH
    phone_number: Optional[str] = Field(None, max_length=30)
    bank_name: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=50)
    account_name: Optional[str] = Field(None, max_length=255)


class WithdrawalApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approver_email: str
    approver_name: Optional[str] = None
    verification_method: StepUpMethod
    approved_at: datetime


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requested_by: str
    employee_name: Optional[str] = None
    amount: float
    reason: str
    request_type: str
    status: WithdrawalStatus
    payment_channel: PaymentChannel
    phone_number: Optional[str] = None
    disbursement_bank_name: Optional[str] = None
    disbursement_account_number: Optional[str] = None
    disbursement_account_name: Optional[str] = None
    required_approvals: int
    approval_count: int
    approvals: List[WithdrawalApprovalResponse] = []
    admin_approved: bool
    admin_approved_at: Optional[datetime] = None
    finance_approved: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    transaction_id: Optional[uuid.UUID] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class WithdrawalActionResponse(BaseModel):
    request: WithdrawalResponse
    warnings: List[str] = []


class VerificationCodeCreate(BaseModel):
    approver_phone: Optional[str] = Field(None, max_length=30)


class VerificationCodeResponse(BaseModel):
    code_id: uuid.UUID
    phone: str
    expires_at: datetime
    # Only echoed back in debug mode
    code: Optional[str] = None


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=12)


class VerifyCodeResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None


class AdminApproveRequest(BaseModel):
    """Step-up proof accompanying an admin approval."""
    method: StepUpMethod = StepUpMethod.SMS
    code_id: Optional[uuid.UUID] = None
    answers: Optional[List[str]] = None


class RejectWithdrawalRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class FinanceRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class DisburseRequest(BaseModel):
    payment_channel: Optional[PaymentChannel] = None


def _action_response(request, warnings: List[str]) -> WithdrawalActionResponse:
    return WithdrawalActionResponse(request=WithdrawalResponse.model_validate(request), warnings=warnings)


# ===========================================
# ENDPOINTS
# ===========================================

@router.post(
    "",
    response_model=WithdrawalActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal",
)
async def create_withdrawal(
    request: WithdrawalCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """
    File a withdrawal. Amounts above the multi-approval threshold need
    approvals from several distinct admins.
    """
    service = get_withdrawal_service(db)
    created, warnings = await service.create(
        requester=current_employee,
        amount=request.amount,
        reason=request.reason,
        payment_channel=request.payment_channel,
        phone_number=request.phone_number,
        bank_name=request.bank_name,
        account_number=request.account_number,
        account_name=request.account_name,
        request_type=request.request_type,
    )
    return _action_response(created, warnings)


@router.get("", response_model=List[WithdrawalResponse], summary="List withdrawals")
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(None, alias="status"),
    requested_by: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_withdrawal_service(db)
    requests = await service.list_requests(status=status_filter, requested_by=requested_by, limit=limit)
    return [WithdrawalResponse.model_validate(r) for r in requests]


@router.get("/{request_id}", response_model=WithdrawalResponse, summary="Get withdrawal")
async def get_withdrawal(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_withdrawal_service(db)
    return WithdrawalResponse.model_validate(await service.get(request_id))


@router.post(
    "/{request_id}/verification-codes",
    response_model=VerificationCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send me an approval code",
)
async def create_verification_code(
    request_id: uuid.UUID,
    request: Optional[VerificationCodeCreate] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    """Text a one-time code to the approving admin's phone."""
    service = get_withdrawal_service(db)
    issued = await service.create_verification_code(
        request_id,
        current_employee,
        approver_phone=request.approver_phone if request else None,
    )
    return VerificationCodeResponse(
        code_id=issued["code_id"],
        phone=issued["phone"],
        expires_at=issued["expires_at"],
        code=issued["code"] if settings.debug else None,
    )


@router.post(
    "/verification-codes/{code_id}/verify",
    response_model=VerifyCodeResponse,
    summary="Check an approval code",
)
async def verify_code(
    code_id: uuid.UUID,
    request: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_withdrawal_service(db)
    return await service.verify_code(code_id, request.code, current_employee.email)


@router.post("/{request_id}/admin-approve", response_model=WithdrawalActionResponse, summary="Admin approval")
async def admin_approve_withdrawal(
    request_id: uuid.UUID,
    request: AdminApproveRequest,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    """Approve with a verified SMS code or security answers."""
    service = get_withdrawal_service(db)
    withdrawal, warnings = await service.admin_approve(
        request_id,
        current_employee,
        method=request.method,
        code_id=request.code_id,
        answers=request.answers,
    )
    return _action_response(withdrawal, warnings)


@router.post("/{request_id}/admin-reject", response_model=WithdrawalActionResponse, summary="Admin rejection")
async def admin_reject_withdrawal(
    request_id: uuid.UUID,
    request: RejectWithdrawalRequest,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_withdrawal_service(db)
    withdrawal, warnings = await service.admin_reject(request_id, current_employee, request.reason)
    return _action_response(withdrawal, warnings)


@router.post("/{request_id}/disburse", response_model=WithdrawalActionResponse, summary="Disburse withdrawal")
async def disburse_withdrawal(
    request_id: uuid.UUID,
    request: Optional[DisburseRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    """Pay out an admin-approved withdrawal from the cash balance."""
    service = get_withdrawal_service(db)
    withdrawal, warnings = await service.finance_disburse(
        request_id,
        current_employee,
        payment_channel=request.payment_channel if request else None,
    )
    return _action_response(withdrawal, warnings)


@router.post("/{request_id}/finance-reject", response_model=WithdrawalActionResponse, summary="Finance rejection")
async def finance_reject_withdrawal(
    request_id: uuid.UUID,
    request: Optional[FinanceRejectRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    service = get_withdrawal_service(db)
    withdrawal, warnings = await service.finance_reject(
        request_id,
        current_employee,
        reason=request.reason if request else None,
    )
    return _action_response(withdrawal, warnings)
