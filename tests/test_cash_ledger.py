"""
Great Pearl Coffee Finance - Cash Ledger Tests

Balance/ledger consistency, overdraft refusal and single-shot deposits.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from app.config import settings
from app.models.cash import (
    CashBalance,
    CashDeposit,
    CashDepositStatus,
    CashTransaction,
    CashTransactionType,
)
from app.services.cash_ledger_service import CashLedgerService
from app.utils.error_handling import (
    AlreadyProcessedException,
    ConcurrentUpdateException,
    InsufficientFundsException,
    InvalidAmountException,
    InvalidDateRangeException,
)


class TestCashLedgerService:
    """Test cases for CashLedgerService."""

    @pytest.mark.asyncio
    async def test_balance_starts_at_zero(self, db_session):
        ledger = CashLedgerService(db_session)

        balance = await ledger.get_balance()

        assert balance.current_balance == Decimal("0")
        again = await ledger.get_balance()
        assert again.id == balance.id

    def test_transaction_types_carry_sign(self):
        assert CashTransactionType.DEPOSIT.sign == 1
        assert CashTransactionType.RECOVERY.sign == 1
        for outflow in ("expense", "salary", "payment", "withdrawal"):
            assert CashTransactionType(outflow).sign == -1

    @pytest.mark.asyncio
    async def test_postings_keep_ledger_and_balance_in_step(self, db_session, finance_officer):
        ledger = CashLedgerService(db_session)
        email = finance_officer.email

        await ledger.apply_disbursement(500000, CashTransactionType.DEPOSIT, "DEP-1", email)
        await ledger.apply_disbursement(120000, CashTransactionType.EXPENSE, "EXP-1", email)
        await ledger.apply_disbursement(80000, CashTransactionType.SALARY, "SAL-1", email)
        last = await ledger.apply_disbursement(25000, CashTransactionType.RECOVERY, "REC-1", email)
        await db_session.commit()

        assert last.balance_after == Decimal("325000")

        report = await ledger.verify_ledger()
        assert report["is_consistent"] is True
        assert report["stored_balance"] == Decimal("325000")
        assert report["computed_balance"] == Decimal("325000")
        assert report["transaction_count"] == 4

    @pytest.mark.asyncio
    async def test_outflow_beyond_balance_is_refused(self, db_session, finance_officer, funded_cash_box):
        ledger = CashLedgerService(db_session)

        with pytest.raises(InsufficientFundsException) as exc_info:
            await ledger.apply_disbursement(
                funded_cash_box + 1, CashTransactionType.WITHDRAWAL, "WD-1", "grace@greatpearlcoffee.com",
            )

        assert exc_info.value.details["available_amount"] == float(funded_cash_box)
        await db_session.rollback()

        balance = await ledger.get_balance()
        assert balance.current_balance == funded_cash_box

    @pytest.mark.asyncio
    async def test_overdraft_allowed_when_enabled(self, db_session, finance_officer, monkeypatch):
        monkeypatch.setattr(settings, "cash_allow_overdraft", True)
        ledger = CashLedgerService(db_session)

        transaction = await ledger.apply_disbursement(
            1000, CashTransactionType.EXPENSE, "EXP-OD", finance_officer.email,
        )

        assert transaction.balance_after == Decimal("-1000")

    @pytest.mark.asyncio
    async def test_non_positive_amounts_are_refused(self, db_session, finance_officer):
        ledger = CashLedgerService(db_session)
        for amount in (0, -5, "abc"):
            with pytest.raises(InvalidAmountException):
                await ledger.apply_disbursement(amount, CashTransactionType.DEPOSIT, None, finance_officer.email)

    @pytest.mark.asyncio
    async def test_verify_detects_tampered_balance(self, db_session, finance_officer, funded_cash_box):
        result = await db_session.execute(select(CashBalance))
        balance = result.scalar_one()
        balance.current_balance = funded_cash_box + 10
        await db_session.commit()

        report = await CashLedgerService(db_session).verify_ledger()

        assert report["is_consistent"] is False
        assert report["difference"] == Decimal("10")

    @pytest.mark.asyncio
    async def test_list_transactions_filters_by_type(self, db_session, finance_officer, funded_cash_box):
        ledger = CashLedgerService(db_session)
        await ledger.apply_disbursement(1000, CashTransactionType.EXPENSE, "EXP-2", finance_officer.email)
        await db_session.commit()

        expenses = await ledger.list_transactions(transaction_type=CashTransactionType.EXPENSE)

        assert [t.reference for t in expenses] == ["EXP-2"]

    @pytest.mark.asyncio
    async def test_list_transactions_rejects_inverted_range(self, db_session):
        with pytest.raises(InvalidDateRangeException):
            await CashLedgerService(db_session).list_transactions(
                date_from=date(2026, 10, 2), date_to=date(2026, 10, 1),
            )


class TestCashDeposits:
    """Deposits reach the ledger exactly once, on confirmation."""

    @pytest.mark.asyncio
    async def test_submitted_deposit_does_not_move_balance(self, db_session, requester):
        ledger = CashLedgerService(db_session)

        deposit = await ledger.submit_deposit(200000, requester.email, notes="Sales banking")

        assert deposit.status == CashDepositStatus.PENDING
        balance = await ledger.get_balance()
        assert balance.current_balance == Decimal("0")
        assert [d.id for d in await ledger.list_pending_deposits()] == [deposit.id]

    @pytest.mark.asyncio
    async def test_confirm_posts_deposit_once(self, db_session, requester, finance_officer):
        ledger = CashLedgerService(db_session)
        deposit = await ledger.submit_deposit(200000, requester.email)

        confirmed = await ledger.confirm_deposit(deposit.id, finance_officer.email)

        assert confirmed.status == CashDepositStatus.CONFIRMED
        assert confirmed.confirmed_by == finance_officer.email
        assert confirmed.transaction_id is not None
        assert (await ledger.get_balance()).current_balance == Decimal("200000")

        with pytest.raises(AlreadyProcessedException):
            await ledger.confirm_deposit(deposit.id, finance_officer.email)

        result = await db_session.execute(select(CashTransaction))
        assert len(result.scalars().all()) == 1
        assert (await ledger.get_balance()).current_balance == Decimal("200000")

    @pytest.mark.asyncio
    async def test_stale_confirmation_loses(self, db_session, requester, finance_officer, funded_cash_box):
        ledger = CashLedgerService(db_session)
        deposit = await ledger.submit_deposit(200000, requester.email)
        deposit_id = deposit.id
        finance_email = finance_officer.email
        await db_session.execute(
            update(CashDeposit)
            .where(CashDeposit.id == deposit_id)
            .values(version=CashDeposit.version + 1)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()

        with pytest.raises(ConcurrentUpdateException):
            await ledger.confirm_deposit(deposit_id, finance_email)

        result = await db_session.execute(select(CashDeposit.status).where(CashDeposit.id == deposit_id))
        assert result.scalar_one() == CashDepositStatus.PENDING
        assert (await ledger.get_balance()).current_balance == funded_cash_box
        result = await db_session.execute(
            select(CashTransaction).where(CashTransaction.transaction_type == CashTransactionType.DEPOSIT)
        )
        assert [t.reference for t in result.scalars().all()] == ["OPENING"]


class TestCashEndpoints:
    """HTTP tests for /api/v1/cash."""

    @pytest.mark.asyncio
    async def test_deposit_flow_over_http(self, client, auth_headers, requester, finance_officer):
        requester_headers = auth_headers(requester)
        finance_headers = auth_headers(finance_officer)

        response = await client.post(
            "/api/v1/cash/deposits", json={"amount": 75000, "notes": "Petty cash return"}, headers=requester_headers,
        )
        assert response.status_code == 201
        deposit_id = response.json()["id"]

        response = await client.post(f"/api/v1/cash/deposits/{deposit_id}/confirm", headers=requester_headers)
        assert response.status_code == 403

        response = await client.post(f"/api/v1/cash/deposits/{deposit_id}/confirm", headers=finance_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.post(f"/api/v1/cash/deposits/{deposit_id}/confirm", headers=finance_headers)
        assert response.status_code == 409

        response = await client.get("/api/v1/cash/verify", headers=finance_headers)
        assert response.json()["is_consistent"] is True
        assert response.json()["stored_balance"] == 75000

    @pytest.mark.asyncio
    async def test_finance_stats(self, client, auth_headers, finance_officer, funded_cash_box):
        response = await client.get("/api/v1/cash/stats", headers=auth_headers(finance_officer))

        assert response.status_code == 200
        stats = response.json()
        assert stats["available_cash"] == float(funded_cash_box)
        assert stats["net_cash"] == float(funded_cash_box)
        assert stats["transactions_today"]["count"] == 1

    @pytest.mark.asyncio
    async def test_ledger_requires_finance_access(self, client, auth_headers, requester):
        response = await client.get("/api/v1/cash/transactions", headers=auth_headers(requester))
        assert response.status_code == 403
