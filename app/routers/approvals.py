"""
Great Pearl Coffee Finance - Approvals Router

API endpoints for expense, requisition and salary requests and their
two-stage (admin, then finance) approval.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_employee, require_admin, require_approver, require_finance
from app.models.approval import RequestPriority
from app.models.employee import Employee
from app.services.approval_workflow import (
    ApprovalState,
    derive_state,
    get_approval_workflow_service,
)

router = APIRouter(prefix="/approvals", tags=["Approvals"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class ApprovalRequestCreate(BaseModel):
    """Schema for filing a request."""
    type: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., gt=0)
    description: Optional[str] = None
    department: Optional[str] = None
    priority: RequestPriority = RequestPriority.MEDIUM
    details: Optional[Dict[str, Any]] = None


class RejectRequest(BaseModel):
    """Request for rejecting a request."""
    reason: Optional[str] = Field(None, max_length=1000)


class ApprovalRequestResponse(BaseModel):
    """Response schema for an approval request."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    title: str
    description: Optional[str] = None
    amount: float
    department: Optional[str] = None
    requested_by: str
    priority: str
    status: str
    state: Optional[ApprovalState] = None
    admin_approved: bool
    admin_approved_by: Optional[str] = None
    admin_approved_at: Optional[datetime] = None
    finance_approved: bool
    finance_approved_by: Optional[str] = None
    finance_approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class ApprovalActionResponse(BaseModel):
    """Result of a workflow action. Warnings report notifications that could not be recorded."""
    request: ApprovalRequestResponse
    warnings: List[str] = []


class PendingCountsResponse(BaseModel):
    expenses: int
    requisitions: int
    hr_payments: int
    total: int


def _to_response(request) -> ApprovalRequestResponse:
    response = ApprovalRequestResponse.model_validate(request)
    response.state = derive_state(request)
    return response


def _action_response(request, warnings: List[str]) -> ApprovalActionResponse:
    return ApprovalActionResponse(request=_to_response(request), warnings=warnings)


# ===========================================
# ENDPOINTS
# ===========================================

@router.post(
    "",
    response_model=ApprovalActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File an approval request",
)
async def create_approval_request(
    request: ApprovalRequestCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """File a new request. It starts awaiting admin approval."""
    service = get_approval_workflow_service(db)
    created, warnings = await service.create_request(
        requester=current_employee,
        request_type=request.type,
        title=request.title,
        amount=request.amount,
        description=request.description,
        department=request.department,
        priority=request.priority,
        details=request.details,
    )
    return _action_response(created, warnings)


@router.get(
    "",
    response_model=List[ApprovalRequestResponse],
    summary="List approval requests",
)
async def list_approval_requests(
    state: Optional[ApprovalState] = None,
    request_type: Optional[str] = Query(None, alias="type"),
    requested_by: Optional[str] = None,
    department: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """List requests, newest first. Filtering by state uses the derived workflow stage."""
    service = get_approval_workflow_service(db)
    requests = await service.list_requests(
        state=state,
        request_type=request_type,
        requested_by=requested_by,
        department=department,
        limit=limit,
    )
    return [_to_response(r) for r in requests]


@router.get(
    "/pending-counts",
    response_model=PendingCountsResponse,
    summary="Requests awaiting finance, by queue",
)
async def get_pending_counts(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_approval_workflow_service(db)
    return await service.pending_counts()


@router.get(
    "/{request_id}",
    response_model=ApprovalRequestResponse,
    summary="Get approval request",
)
async def get_approval_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_approval_workflow_service(db)
    return _to_response(await service.get_request(request_id))


@router.post(
    "/{request_id}/admin-approve",
    response_model=ApprovalActionResponse,
    summary="Admin approval",
)
async def admin_approve_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    """Approve at the admin stage; the request moves on to finance."""
    service = get_approval_workflow_service(db)
    request, warnings = await service.admin_approve(request_id, current_employee)
    return _action_response(request, warnings)


@router.post(
    "/{request_id}/finance-approve",
    response_model=ApprovalActionResponse,
    summary="Finance approval",
)
async def finance_approve_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    """Approve at the finance stage and disburse from the cash box."""
    service = get_approval_workflow_service(db)
    request, warnings = await service.finance_approve(request_id, current_employee)
    return _action_response(request, warnings)


@router.post(
    "/{request_id}/reject",
    response_model=ApprovalActionResponse,
    summary="Reject request",
)
async def reject_request(
    request_id: uuid.UUID,
    body: Optional[RejectRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_approver),
):
    service = get_approval_workflow_service(db)
    request, warnings = await service.reject(
        request_id,
        current_employee,
        reason=body.reason if body else None,
    )
    return _action_response(request, warnings)
