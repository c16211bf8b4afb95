"""
Great Pearl Coffee Finance - Payments Router

API endpoints for coffee lot payments, supplier advances and the expense
book.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import require_finance, require_finance_access
from app.models.employee import Employee
from app.models.finance import PaymentMethod
from app.services.payment_service import get_payment_service

router = APIRouter(prefix="/payments", tags=["Payments"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class PaymentRecordCreate(BaseModel):
    """Schema for recording an assessed lot awaiting payment."""
    supplier_name: str = Field(..., min_length=1, max_length=255)
    supplier_code: Optional[str] = Field(None, max_length=50)
    amount: float = Field(..., gt=0)
    batch_number: Optional[str] = Field(None, max_length=100)
    quality_assessment_ref: Optional[str] = Field(None, max_length=100)


class ProcessPaymentRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.CASH


class PaymentRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    supplier_name: str
    supplier_code: Optional[str] = None
    batch_number: Optional[str] = None
    quality_assessment_ref: Optional[str] = None
    amount: float
    advance_deducted: float
    amount_paid: float
    balance: float
    status: str
    method: Optional[str] = None
    paid_by: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class PaymentActionResponse(BaseModel):
    record: PaymentRecordResponse
    warnings: List[str] = []


class AdvanceCreate(BaseModel):
    """Schema for advancing cash to a supplier."""
    supplier_name: str = Field(..., min_length=1, max_length=255)
    supplier_code: Optional[str] = Field(None, max_length=50)
    amount: float = Field(..., gt=0)
    notes: Optional[str] = None


class AdvanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    supplier_name: str
    supplier_code: Optional[str] = None
    amount: float
    recovered_amount: float
    outstanding: float
    is_closed: bool
    closed_at: Optional[datetime] = None
    issued_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class ExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    description: str
    amount: float
    category: str
    expense_date: date
    status: str
    approved_by: Optional[str] = None
    created_by: Optional[str] = None
    approval_request_id: Optional[uuid.UUID] = None
    created_at: datetime


# ===========================================
# ENDPOINTS
# ===========================================

@router.post(
    "",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a lot awaiting payment",
)
async def create_payment_record(
    request: PaymentRecordCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_payment_service(db)
    record = await service.create_payment_record(
        supplier_name=request.supplier_name,
        supplier_code=request.supplier_code,
        amount=request.amount,
        batch_number=request.batch_number,
        quality_assessment_ref=request.quality_assessment_ref,
        actor=current_employee,
    )
    return PaymentRecordResponse.model_validate(record)


@router.get("/pending", response_model=List[PaymentRecordResponse], summary="Coffee payments awaiting payment")
async def list_pending_payments(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_payment_service(db)
    return [PaymentRecordResponse.model_validate(r) for r in await service.list_pending()]


@router.post("/{record_id}/process", response_model=PaymentActionResponse, summary="Pay a coffee lot")
async def process_payment(
    record_id: uuid.UUID,
    request: ProcessPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    """Pay a lot, recovering the supplier's open advances first."""
    service = get_payment_service(db)
    record, warnings = await service.process_payment(record_id, request.method, current_employee)
    return PaymentActionResponse(record=PaymentRecordResponse.model_validate(record), warnings=warnings)


@router.post(
    "/advances",
    response_model=AdvanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Advance cash to a supplier",
)
async def create_advance(
    request: AdvanceCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    service = get_payment_service(db)
    advance = await service.create_advance(
        supplier_name=request.supplier_name,
        supplier_code=request.supplier_code,
        amount=request.amount,
        notes=request.notes,
        actor=current_employee,
    )
    return AdvanceResponse.model_validate(advance)


@router.get("/advances", response_model=List[AdvanceResponse], summary="Open supplier advances")
async def list_open_advances(
    supplier_code: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_payment_service(db)
    return [AdvanceResponse.model_validate(a) for a in await service.list_open_advances(supplier_code)]


@router.get("/expenses", response_model=List[ExpenseResponse], summary="Expense book")
async def list_expenses(
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    limit: int = Query(500, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_payment_service(db)
    expenses = await service.list_expenses(
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        search=search,
        limit=limit,
    )
    return [ExpenseResponse.model_validate(e) for e in expenses]
