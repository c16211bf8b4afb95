"""
Great Pearl Coffee Finance - Cash Ledger Service

Every movement of cash goes through apply_disbursement(), which appends a
confirmed CashTransaction and moves the singleton CashBalance in the same
unit of work. The balance row is versioned, so two writers that read the
same balance cannot both commit: the second gets a 409 instead of silently
overwriting the first.

Invariant: current_balance == sum of signed confirmed transaction amounts.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.database import commit_or_conflict
from app.models.approval import ApprovalRequest, ApprovalStatus
from app.models.cash import (
    CashBalance,
    CashDeposit,
    CashDepositStatus,
    CashTransaction,
    CashTransactionStatus,
    CashTransactionType,
)
from app.models.finance import FinanceAdvance, PaymentRecord, PaymentRecordStatus
from app.services.finance_settings_service import FinanceSettingsService
from app.services.realtime import ChangeAction, ChangeEvent, publish_changes
from app.utils.datetime_utils import day_bounds, range_bounds, utcnow
from app.utils.error_handling import (
    AlreadyProcessedException,
    ConcurrentUpdateException,
    InsufficientFundsException,
    InvalidDateRangeException,
    NotFoundException,
    validate_amount,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CashLedgerService:
    """Service for the finance cash balance, ledger and deposits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # BALANCE
    # ===========================================

    async def get_balance(self) -> CashBalance:
        """Return the singleton balance row, creating it at zero if missing."""
        result = await self.db.execute(
            select(CashBalance).where(CashBalance.singleton.is_(True))
        )
        balance = result.scalar_one_or_none()
        if balance is not None:
            return balance

        balance = CashBalance(singleton=True, current_balance=ZERO, last_updated=utcnow(), updated_by="System")
        try:
            async with self.db.begin_nested():
                self.db.add(balance)
        except IntegrityError:
            # Another session created it first
            result = await self.db.execute(
                select(CashBalance).where(CashBalance.singleton.is_(True))
            )
            return result.scalar_one()

        logger.info("Initialised cash balance at zero")
        return balance

    async def apply_disbursement(
        self,
        amount: Any,
        transaction_type: CashTransactionType,
        reference: Optional[str],
        actor_email: str,
        notes: Optional[str] = None,
    ) -> CashTransaction:
        """
        Post one ledger movement and update the running balance.

        Runs inside the caller's transaction and does not commit. Outflows
        that would take the balance below zero are refused unless the cash
        settings allow a negative balance.

        Raises:
            InvalidAmountException: amount is not positive
            InsufficientFundsException: outflow exceeds the available balance
        """
        amount = validate_amount(amount)
        balance = await self.get_balance()

        current = balance.current_balance or ZERO
        new_balance = current + amount * transaction_type.sign

        if new_balance < ZERO:
            cash_settings = await FinanceSettingsService(self.db).cash()
            if not cash_settings.allow_negative_balance:
                raise InsufficientFundsException(
                    required=float(amount),
                    available=float(current),
                    currency=cash_settings.currency,
                )

        now = utcnow()
        transaction = CashTransaction(
            transaction_type=transaction_type,
            amount=amount,
            balance_after=new_balance,
            reference=reference,
            notes=notes,
            created_by=actor_email,
            status=CashTransactionStatus.CONFIRMED,
            confirmed_by=actor_email,
            confirmed_at=now,
        )
        self.db.add(transaction)

        balance.current_balance = new_balance
        balance.last_updated = now
        balance.updated_by = actor_email

        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConcurrentUpdateException("Cash balance", original_error=e)

        logger.info(
            f"Ledger {transaction_type.value} of {amount} by {actor_email} "
            f"(ref={reference}): balance {current} -> {new_balance}"
        )
        return transaction

    # ===========================================
    # LEDGER QUERIES
    # ===========================================

    async def list_transactions(
        self,
        transaction_type: Optional[CashTransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
    ) -> List[CashTransaction]:
        """Most recent ledger rows first, optionally filtered."""
        if date_from and date_to and date_from > date_to:
            raise InvalidDateRangeException(str(date_from), str(date_to))

        query = select(CashTransaction).order_by(CashTransaction.created_at.desc()).limit(limit)
        if transaction_type is not None:
            query = query.where(CashTransaction.transaction_type == transaction_type)

        start, end = range_bounds(date_from, date_to)
        if start is not None:
            query = query.where(CashTransaction.created_at >= start)
        if end is not None:
            query = query.where(CashTransaction.created_at < end)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def sum_by_type(
        self,
        start=None,
        end=None,
    ) -> Dict[CashTransactionType, Decimal]:
        """Confirmed totals per transaction type, optionally within [start, end)."""
        query = (
            select(CashTransaction.transaction_type, func.coalesce(func.sum(CashTransaction.amount), 0))
            .where(CashTransaction.status == CashTransactionStatus.CONFIRMED)
            .group_by(CashTransaction.transaction_type)
        )
        if start is not None:
            query = query.where(CashTransaction.created_at >= start)
        if end is not None:
            query = query.where(CashTransaction.created_at < end)

        result = await self.db.execute(query)
        return {tx_type: Decimal(str(total)) for tx_type, total in result.all()}

    async def verify_ledger(self) -> Dict[str, Any]:
        """
        Recompute the balance from the ledger and compare with the stored one.

        Returns:
            Dict with stored and computed balances and a consistency flag
        """
        totals = await self.sum_by_type()
        computed = sum((total * tx_type.sign for tx_type, total in totals.items()), ZERO)

        balance = await self.get_balance()
        stored = balance.current_balance or ZERO

        count_result = await self.db.execute(
            select(func.count(CashTransaction.id))
            .where(CashTransaction.status == CashTransactionStatus.CONFIRMED)
        )

        is_consistent = computed == stored
        if not is_consistent:
            logger.warning(f"Cash ledger mismatch: stored={stored}, computed={computed}")

        return {
            "stored_balance": stored,
            "computed_balance": computed,
            "difference": stored - computed,
            "is_consistent": is_consistent,
            "transaction_count": count_result.scalar() or 0,
        }

    # ===========================================
    # DEPOSITS
    # ===========================================

    async def submit_deposit(self, amount: Any, actor_email: str, notes: Optional[str] = None) -> CashDeposit:
        """Record cash handed in; it reaches the ledger only once confirmed."""
        deposit = CashDeposit(
            amount=validate_amount(amount),
            notes=notes,
            submitted_by=actor_email,
            status=CashDepositStatus.PENDING,
        )
        self.db.add(deposit)
        await self.db.commit()
        await self.db.refresh(deposit)

        logger.info(f"Cash deposit {deposit.id} of {deposit.amount} submitted by {actor_email}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.INSERT, deposit))
        return deposit

    async def confirm_deposit(self, deposit_id: uuid.UUID, actor_email: str) -> CashDeposit:
        """
        Confirm a pending deposit and post it to the ledger.

        Raises:
            NotFoundException: unknown deposit
            AlreadyProcessedException: the deposit is no longer pending
            ConcurrentUpdateException: confirmed concurrently by someone else
        """
        deposit = await self.db.get(CashDeposit, deposit_id)
        if deposit is None:
            raise NotFoundException("Cash deposit", deposit_id)
        if deposit.status != CashDepositStatus.PENDING:
            raise AlreadyProcessedException("This deposit has already been confirmed", "Cash deposit")

        transaction = await self.apply_disbursement(
            amount=deposit.amount,
            transaction_type=CashTransactionType.DEPOSIT,
            reference=f"DEP-{str(deposit.id)[:8].upper()}",
            actor_email=actor_email,
            notes=deposit.notes or "Cash deposit",
        )

        deposit.status = CashDepositStatus.CONFIRMED
        deposit.confirmed_by = actor_email
        deposit.confirmed_at = transaction.confirmed_at
        deposit.transaction_id = transaction.id

        await commit_or_conflict(self.db, "Cash deposit")

        logger.info(f"Cash deposit {deposit.id} confirmed by {actor_email}")
        await publish_changes(
            ChangeEvent.from_instance(ChangeAction.UPDATE, deposit),
            ChangeEvent.from_instance(ChangeAction.INSERT, transaction),
        )
        return deposit

    async def list_pending_deposits(self) -> List[CashDeposit]:
        result = await self.db.execute(
            select(CashDeposit)
            .where(CashDeposit.status == CashDepositStatus.PENDING)
            .order_by(CashDeposit.created_at.desc())
        )
        return list(result.scalars().all())

    # ===========================================
    # DASHBOARD
    # ===========================================

    async def open_advances_total(self) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(FinanceAdvance.amount - FinanceAdvance.recovered_amount), 0))
            .where(FinanceAdvance.is_closed.is_(False))
        )
        return Decimal(str(result.scalar() or 0))

    async def get_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Headline figures for the finance dashboard."""
        today = today or utcnow().date()

        balance = await self.get_balance()
        available = balance.current_balance or ZERO
        open_advances = await self.open_advances_total()

        payments = await self.db.execute(
            select(func.count(PaymentRecord.id), func.coalesce(func.sum(PaymentRecord.amount), 0))
            .where(PaymentRecord.status == PaymentRecordStatus.PENDING.value)
        )
        pending_payment_count, pending_payment_amount = payments.one()

        expenses = await self.db.execute(
            select(func.count(ApprovalRequest.id), func.coalesce(func.sum(ApprovalRequest.amount), 0))
            .where(ApprovalRequest.type == "Expense Request")
            .where(ApprovalRequest.status == ApprovalStatus.PENDING.value)
        )
        pending_expense_count, pending_expense_amount = expenses.one()

        start, end = day_bounds(today)
        todays = await self.db.execute(
            select(func.count(CashTransaction.id), func.coalesce(func.sum(CashTransaction.amount), 0))
            .where(CashTransaction.status == CashTransactionStatus.CONFIRMED)
            .where(CashTransaction.created_at >= start)
            .where(CashTransaction.created_at < end)
        )
        today_count, today_amount = todays.one()

        return {
            "available_cash": available,
            "open_advances": open_advances,
            "net_cash": available - open_advances,
            "pending_coffee_payments": {
                "count": pending_payment_count,
                "amount": Decimal(str(pending_payment_amount)),
            },
            "pending_expense_requests": {
                "count": pending_expense_count,
                "amount": Decimal(str(pending_expense_amount)),
            },
            "transactions_today": {
                "count": today_count,
                "amount": Decimal(str(today_amount)),
            },
            "last_updated": balance.last_updated,
        }


def get_cash_ledger_service(db: AsyncSession) -> CashLedgerService:
    """Factory function for dependency injection."""
    return CashLedgerService(db)
