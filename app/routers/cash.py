"""
Great Pearl Coffee Finance - Cash Router

API endpoints for the cash balance, the ledger, deposits and the finance
dashboard figures.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_employee, require_finance, require_finance_access
from app.models.cash import CashDepositStatus, CashTransactionStatus, CashTransactionType
from app.models.employee import Employee
from app.services.cash_ledger_service import get_cash_ledger_service

router = APIRouter(prefix="/cash", tags=["Cash"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class CashBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_balance: float
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None


class CashTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_type: CashTransactionType
    amount: float
    balance_after: float
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_by: str
    status: CashTransactionStatus
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime


class LedgerVerificationResponse(BaseModel):
    stored_balance: float
    computed_balance: float
    difference: float
    is_consistent: bool
    transaction_count: int


class CashDepositCreate(BaseModel):
    """Schema for submitting a cash deposit."""
    amount: float = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=1000)


class CashDepositResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: float
    notes: Optional[str] = None
    submitted_by: str
    status: CashDepositStatus
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    transaction_id: Optional[uuid.UUID] = None
    created_at: datetime


class CountAmount(BaseModel):
    count: int
    amount: float


class FinanceStatsResponse(BaseModel):
    available_cash: float
    open_advances: float
    net_cash: float
    pending_coffee_payments: CountAmount
    pending_expense_requests: CountAmount
    transactions_today: CountAmount
    last_updated: Optional[datetime] = None


# ===========================================
# ENDPOINTS
# ===========================================

@router.get("/balance", response_model=CashBalanceResponse, summary="Current cash balance")
async def get_cash_balance(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_cash_ledger_service(db)
    balance = await service.get_balance()
    await db.commit()
    return CashBalanceResponse.model_validate(balance)


@router.get("/transactions", response_model=List[CashTransactionResponse], summary="Cash ledger")
async def list_cash_transactions(
    transaction_type: Optional[CashTransactionType] = Query(None, alias="type"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    """Ledger rows, newest first."""
    service = get_cash_ledger_service(db)
    transactions = await service.list_transactions(
        transaction_type=transaction_type,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return [CashTransactionResponse.model_validate(t) for t in transactions]


@router.get("/verify", response_model=LedgerVerificationResponse, summary="Check balance against ledger")
async def verify_cash_ledger(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_cash_ledger_service(db)
    report = await service.verify_ledger()
    await db.commit()
    return report


@router.get("/stats", response_model=FinanceStatsResponse, summary="Finance dashboard figures")
async def get_finance_stats(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_cash_ledger_service(db)
    stats = await service.get_stats()
    await db.commit()
    return stats


@router.post(
    "/deposits",
    response_model=CashDepositResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a cash deposit",
)
async def submit_cash_deposit(
    request: CashDepositCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """Record cash handed in. It reaches the ledger once finance confirms it."""
    service = get_cash_ledger_service(db)
    deposit = await service.submit_deposit(request.amount, current_employee.email, notes=request.notes)
    return CashDepositResponse.model_validate(deposit)


@router.get("/deposits/pending", response_model=List[CashDepositResponse], summary="Deposits awaiting confirmation")
async def list_pending_deposits(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_cash_ledger_service(db)
    return [CashDepositResponse.model_validate(d) for d in await service.list_pending_deposits()]


@router.post("/deposits/{deposit_id}/confirm", response_model=CashDepositResponse, summary="Confirm a deposit")
async def confirm_cash_deposit(
    deposit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance),
):
    service = get_cash_ledger_service(db)
    deposit = await service.confirm_deposit(deposit_id, current_employee.email)
    return CashDepositResponse.model_validate(deposit)
