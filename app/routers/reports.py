"""
Great Pearl Coffee Finance - Reports Router

Financial statements: income statement, balance sheet, daily cash statement.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import require_finance_access
from app.models.employee import Employee
from app.routers.cash import CashTransactionResponse
from app.services.reports_service import get_reports_service
from app.utils.datetime_utils import utcnow

router = APIRouter(prefix="/reports", tags=["Reports"])


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class Period(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: date = Field(..., alias="from")
    date_to: date = Field(..., alias="to")


class RevenueSection(BaseModel):
    coffee_income: float
    other_income: float
    total: float


class CostOfGoodsSection(BaseModel):
    coffee_payments: float
    direct_costs: float
    total: float


class OperatingExpensesSection(BaseModel):
    salaries: float
    utilities: float
    transport: float
    office: float
    marketing: float
    other: float
    total: float


class IncomeStatementResponse(BaseModel):
    period: Period
    revenue: RevenueSection
    cost_of_goods_sold: CostOfGoodsSection
    operating_expenses: OperatingExpensesSection
    gross_profit: float
    operating_income: float
    net_income: float


class AssetsSection(BaseModel):
    cash: float
    accounts_receivable: float
    inventory: float
    total: float


class LiabilitiesSection(BaseModel):
    accounts_payable: float
    advances_payable: float
    pending_expenses: float
    total: float


class EquitySection(BaseModel):
    retained_earnings: float
    current_period_income: float
    total: float


class BalanceSheetResponse(BaseModel):
    as_of: date
    assets: AssetsSection
    liabilities: LiabilitiesSection
    equity: EquitySection
    total_liabilities_and_equity: float
    is_balanced: bool


class DailyStatementResponse(BaseModel):
    statement_date: date
    opening_balance: float
    cash_in: float
    cash_out: float
    net_movement: float
    closing_balance: float
    transaction_count: int
    transactions: List[CashTransactionResponse]


# ===========================================
# ENDPOINTS
# ===========================================

@router.get("/income-statement", response_model=IncomeStatementResponse, summary="Income statement")
async def get_income_statement(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    """Defaults to the current month to date."""
    today = utcnow().date()
    service = get_reports_service(db)
    return await service.income_statement(
        date_from=date_from or today.replace(day=1),
        date_to=date_to or today,
    )


@router.get("/balance-sheet", response_model=BalanceSheetResponse, summary="Balance sheet")
async def get_balance_sheet(
    as_of: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_reports_service(db)
    report = await service.balance_sheet(as_of)
    await db.commit()
    return report


@router.get("/daily-statement", response_model=DailyStatementResponse, summary="Daily cash statement")
async def get_daily_statement(
    day: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
):
    service = get_reports_service(db)
    statement = await service.daily_statement(day)
    await db.commit()
    statement["transactions"] = [CashTransactionResponse.model_validate(t) for t in statement["transactions"]]
    return DailyStatementResponse(**statement)
