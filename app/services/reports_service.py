"""
Great Pearl Coffee Finance - Reports Service

Read-only financial statements aggregated from the ledger, payment records,
advances and the expense book:
- Income statement for a period
- Balance sheet as at a date
- Daily cash statement
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cash import CashTransaction, CashTransactionStatus, CashTransactionType
from app.models.finance import (
    ExpenseStatus,
    FinanceAdvance,
    FinanceExpense,
    PaymentRecord,
    PaymentRecordStatus,
)
from app.services.cash_ledger_service import CashLedgerService
from app.utils.datetime_utils import day_bounds, range_bounds, utcnow
from app.utils.error_handling import InvalidDateRangeException

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Keyword buckets for operating expenses, checked in order
EXPENSE_BUCKETS = (
    ("salaries", ("salary", "wage", "payroll")),
    ("utilities", ("utility", "electric", "water")),
    ("transport", ("transport", "fuel", "vehicle")),
    ("office", ("office", "supplies", "stationery")),
    ("marketing", ("marketing", "advertising")),
)

RETAINED_EARNINGS_SHARE = Decimal("0.8")
CURRENT_PERIOD_SHARE = Decimal("0.2")


def expense_bucket(category: Optional[str]) -> str:
    """Operating expense line for a free-text expense category."""
    text = (category or "").lower()
    for bucket, keywords in EXPENSE_BUCKETS:
        if any(keyword in text for keyword in keywords):
            return bucket
    return "other"


def _dec(value: Any) -> Decimal:
    return Decimal(str(value or 0))


class ReportsService:
    """Service for financial statements."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = CashLedgerService(db)

    async def _sum(self, column, *conditions) -> Decimal:
        result = await self.db.execute(select(func.coalesce(func.sum(column), 0)).where(*conditions))
        return _dec(result.scalar())

    # ===========================================
    # INCOME STATEMENT
    # ===========================================

    async def income_statement(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """
        Revenue (deposits) less coffee purchases and operating expenses.
        """
        if date_from > date_to:
            raise InvalidDateRangeException(str(date_from), str(date_to))
        start, end = range_bounds(date_from, date_to)

        revenue = await self._sum(
            CashTransaction.amount,
            CashTransaction.transaction_type == CashTransactionType.DEPOSIT,
            CashTransaction.status == CashTransactionStatus.CONFIRMED,
            CashTransaction.created_at >= start,
            CashTransaction.created_at < end,
        )

        coffee_payments = await self._sum(
            PaymentRecord.amount,
            PaymentRecord.status == PaymentRecordStatus.PAID.value,
            PaymentRecord.paid_at >= start,
            PaymentRecord.paid_at < end,
        )

        result = await self.db.execute(
            select(FinanceExpense.category, func.coalesce(func.sum(FinanceExpense.amount), 0))
            .where(FinanceExpense.expense_date >= date_from)
            .where(FinanceExpense.expense_date <= date_to)
            .group_by(FinanceExpense.category)
        )
        operating = {bucket: ZERO for bucket, _ in EXPENSE_BUCKETS}
        operating["other"] = ZERO
        for category, total in result.all():
            operating[expense_bucket(category)] += _dec(total)
        operating_total = sum(operating.values(), ZERO)

        gross_profit = revenue - coffee_payments
        operating_income = gross_profit - operating_total

        return {
            "period": {"from": date_from, "to": date_to},
            "revenue": {"coffee_income": revenue, "other_income": ZERO, "total": revenue},
            "cost_of_goods_sold": {"coffee_payments": coffee_payments, "direct_costs": ZERO, "total": coffee_payments},
            "operating_expenses": {**operating, "total": operating_total},
            "gross_profit": gross_profit,
            "operating_income": operating_income,
            "net_income": operating_income,
        }

    # ===========================================
    # BALANCE SHEET
    # ===========================================

    async def balance_sheet(self, as_of: Optional[date] = None) -> Dict[str, Any]:
        """
        Assets, liabilities and equity as at a date.

        Equity is derived: historical income is all deposits less all
        payments less current liabilities, split 80/20 between retained
        earnings and current period income.
        """
        as_of = as_of or utcnow().date()
        _, end = day_bounds(as_of)

        balance = await self.ledger.get_balance()
        cash = balance.current_balance or ZERO

        receivables = await self._sum(
            PaymentRecord.balance,
            PaymentRecord.status == PaymentRecordStatus.PENDING.value,
            PaymentRecord.created_at < end,
        )
        inventory = ZERO
        total_assets = cash + receivables + inventory

        payables = await self._sum(
            PaymentRecord.amount,
            PaymentRecord.status == PaymentRecordStatus.PENDING.value,
            PaymentRecord.created_at < end,
        )
        advances_payable = await self._sum(
            FinanceAdvance.amount - FinanceAdvance.recovered_amount,
            FinanceAdvance.is_closed.is_(False),
            FinanceAdvance.created_at < end,
        )
        pending_expenses = await self._sum(
            FinanceExpense.amount,
            FinanceExpense.status == ExpenseStatus.PENDING.value,
            FinanceExpense.expense_date <= as_of,
        )
        total_liabilities = payables + advances_payable + pending_expenses

        totals = await self.ledger.sum_by_type(end=end)
        deposits = totals.get(CashTransactionType.DEPOSIT, ZERO)
        payments = abs(totals.get(CashTransactionType.PAYMENT, ZERO))
        historical_income = deposits - payments - total_liabilities

        retained_earnings = (historical_income * RETAINED_EARNINGS_SHARE).quantize(Decimal("0.01"))
        current_period_income = historical_income - retained_earnings
        total_equity = retained_earnings + current_period_income

        return {
            "as_of": as_of,
            "assets": {
                "cash": cash,
                "accounts_receivable": receivables,
                "inventory": inventory,
                "total": total_assets,
            },
            "liabilities": {
                "accounts_payable": payables,
                "advances_payable": advances_payable,
                "pending_expenses": pending_expenses,
                "total": total_liabilities,
            },
            "equity": {
                "retained_earnings": retained_earnings,
                "current_period_income": current_period_income,
                "total": total_equity,
            },
            "total_liabilities_and_equity": total_liabilities + total_equity,
            "is_balanced": total_assets == total_liabilities + total_equity,
        }

    # ===========================================
    # DAILY STATEMENT
    # ===========================================

    async def daily_statement(self, day: Optional[date] = None) -> Dict[str, Any]:
        """
        Cash in, cash out and opening/closing balance for one day.

        Closing is the last running balance recorded up to the end of the
        day; opening is worked back from it.
        """
        day = day or utcnow().date()
        start, end = day_bounds(day)

        result = await self.db.execute(
            select(CashTransaction)
            .where(CashTransaction.created_at >= start)
            .where(CashTransaction.created_at < end)
            .order_by(CashTransaction.created_at)
        )
        transactions: List[CashTransaction] = list(result.scalars().all())

        confirmed = [t for t in transactions if t.status == CashTransactionStatus.CONFIRMED]
        cash_in = sum((t.amount for t in confirmed if t.transaction_type.is_inflow), ZERO)
        cash_out = sum((t.amount for t in confirmed if not t.transaction_type.is_inflow), ZERO)

        last = await self.db.execute(
            select(CashTransaction.balance_after)
            .where(CashTransaction.status == CashTransactionStatus.CONFIRMED)
            .where(CashTransaction.created_at < end)
            .order_by(CashTransaction.created_at.desc())
            .limit(1)
        )
        closing = last.scalar_one_or_none()
        if closing is None:
            balance = await self.ledger.get_balance()
            closing = balance.current_balance or ZERO
        closing = _dec(closing)
        opening = closing - cash_in + cash_out

        return {
            "statement_date": day,
            "opening_balance": opening,
            "cash_in": cash_in,
            "cash_out": cash_out,
            "net_movement": cash_in - cash_out,
            "closing_balance": closing,
            "transaction_count": len(transactions),
            "transactions": transactions,
        }


def get_reports_service(db: AsyncSession) -> ReportsService:
    """Factory function for dependency injection."""
    return ReportsService(db)
