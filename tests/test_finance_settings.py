"""
Great Pearl Coffee Finance - Finance Settings Tests

Defaults, validated updates, and the settings that change how cash,
advances and payments behave.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.cash import CashTransactionType
from app.models.finance import PaymentMethod
from app.models.settings import FinanceSetting
from app.services.cash_ledger_service import CashLedgerService
from app.services.finance_settings_service import CATEGORIES, FinanceSettingsService, round_payment
from app.services.payment_service import PaymentService
from app.utils.error_handling import (
    BusinessRuleException,
    InsufficientFundsException,
    NotFoundException,
    ValidationException,
)


async def _saved_keys(db_session):
    result = await db_session.execute(select(FinanceSetting.key).order_by(FinanceSetting.key))
    return list(result.scalars().all())


class TestSettingsStore:

    @pytest.mark.asyncio
    async def test_defaults_before_anything_is_saved(self, db_session):
        values = await FinanceSettingsService(db_session).get_all()

        assert set(values) == set(CATEGORIES)
        assert values["cash"].allow_negative_balance is False
        assert values["cash"].currency == "UGX"
        assert values["advance"].minimum_advance_amount == Decimal("50000")
        assert values["payment"].payment_rounding == "exact"
        assert values["report"].finance_month_closing_date == 28

    @pytest.mark.asyncio
    async def test_update_saves_only_given_keys(self, db_session, admin):
        service = FinanceSettingsService(db_session)

        updated = await service.update_category("report", {"finance_month_closing_date": 25}, admin)

        assert updated.finance_month_closing_date == 25
        assert updated.default_report_period == "current_month"
        assert await _saved_keys(db_session) == ["finance_month_closing_date"]

        result = await db_session.execute(select(FinanceSetting))
        row = result.scalar_one()
        assert row.category == "report"
        assert row.updated_by == admin.email

        reread = await FinanceSettingsService(db_session).get_category("report")
        assert reread.finance_month_closing_date == 25

    @pytest.mark.asyncio
    async def test_second_update_overwrites_the_row(self, db_session, admin):
        service = FinanceSettingsService(db_session)

        await service.update_category("cash", {"cash_warning_threshold": 20000}, admin)
        await service.update_category("cash", {"cash_warning_threshold": 5000}, admin)

        assert (await service.cash()).cash_warning_threshold == Decimal("5000")
        assert await _saved_keys(db_session) == ["cash_warning_threshold"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("category,changes", [
        ("report", {"finance_month_closing_date": 40}),
        ("advance", {"advance_recovery_percentage": -5}),
        ("payment", {"payment_rounding": "nearest_1000"}),
        ("cash", {"currency": "shillings"}),
        ("advance", {"advance_limit": 10}),
    ])
    async def test_invalid_values_save_nothing(self, db_session, admin, category, changes):
        with pytest.raises(ValidationException) as exc_info:
            await FinanceSettingsService(db_session).update_category(category, changes, admin)

        assert exc_info.value.details["errors"]
        assert await _saved_keys(db_session) == []

    @pytest.mark.asyncio
    async def test_unknown_category_and_empty_update(self, db_session, admin):
        service = FinanceSettingsService(db_session)

        with pytest.raises(NotFoundException):
            await service.get_category("payroll")
        with pytest.raises(ValidationException):
            await service.update_category("cash", {}, admin)

    @pytest.mark.asyncio
    async def test_bad_stored_row_falls_back_to_defaults(self, db_session):
        db_session.add(FinanceSetting(key="finance_month_closing_date", category="report", value="soon"))
        await db_session.commit()

        values = await FinanceSettingsService(db_session).get_category("report")

        assert values.finance_month_closing_date == 28


@pytest.mark.parametrize("amount,mode,expected", [
    ("100050", "exact", "100050"),
    ("100050", "nearest_100", "100100"),
    ("100049", "nearest_100", "100000"),
    ("100099", "down_100", "100000"),
])
def test_round_payment(amount, mode, expected):
    assert round_payment(Decimal(amount), mode) == Decimal(expected)


class TestCashRules:

    @pytest.mark.asyncio
    async def test_negative_balance_follows_cash_settings(self, db_session, admin, finance_officer):
        ledger = CashLedgerService(db_session)
        officer_email = finance_officer.email

        with pytest.raises(InsufficientFundsException):
            await ledger.apply_disbursement(1000, CashTransactionType.EXPENSE, "EXP-1", officer_email)
        await db_session.rollback()
        await db_session.refresh(admin)

        await FinanceSettingsService(db_session).update_category("cash", {"allow_negative_balance": True}, admin)
        transaction = await ledger.apply_disbursement(1000, CashTransactionType.EXPENSE, "EXP-2", officer_email)

        assert transaction.balance_after == Decimal("-1000")


class TestAdvanceRules:

    @pytest.mark.asyncio
    async def test_advance_below_minimum_is_refused(self, db_session, finance_officer, funded_cash_box):
        with pytest.raises(ValidationException) as exc_info:
            await PaymentService(db_session).create_advance("Mbale Growers", 40000, finance_officer)

        assert exc_info.value.field == "amount"

    @pytest.mark.asyncio
    async def test_second_advance_needs_arrears_allowed(self, db_session, admin, finance_officer, funded_cash_box):
        service = PaymentService(db_session)
        await service.create_advance("Mbale Growers", 50000, finance_officer, supplier_code="SUP-002")

        with pytest.raises(BusinessRuleException):
            await service.create_advance("Mbale Growers", 60000, finance_officer, supplier_code="SUP-002")

        await FinanceSettingsService(db_session).update_category(
            "advance", {"allow_advance_with_arrears": True}, admin,
        )
        second = await service.create_advance("Mbale Growers", 60000, finance_officer, supplier_code="SUP-002")
        assert second.amount == Decimal("60000")

    @pytest.mark.asyncio
    async def test_recovery_percentage_caps_deduction(self, db_session, admin, finance_officer, funded_cash_box):
        service = PaymentService(db_session)
        await FinanceSettingsService(db_session).update_category(
            "advance", {"advance_recovery_percentage": 50}, admin,
        )
        advance = await service.create_advance("Kawacom Farmers Group", 100000, finance_officer, supplier_code="SUP-001")
        record = await service.create_payment_record(
            "Kawacom Farmers Group", 120000, finance_officer, supplier_code="SUP-001",
        )

        record, _ = await service.process_payment(record.id, PaymentMethod.CASH, finance_officer)

        assert record.advance_deducted == Decimal("60000")
        assert record.amount_paid == Decimal("60000")
        assert advance.outstanding == Decimal("40000")
        assert advance.is_closed is False

    @pytest.mark.asyncio
    async def test_auto_recovery_off_pays_full_lot(self, db_session, admin, finance_officer, funded_cash_box):
        service = PaymentService(db_session)
        await FinanceSettingsService(db_session).update_category(
            "advance", {"auto_recover_advances": False}, admin,
        )
        advance = await service.create_advance("Kawacom Farmers Group", 100000, finance_officer, supplier_code="SUP-001")
        record = await service.create_payment_record(
            "Kawacom Farmers Group", 120000, finance_officer, supplier_code="SUP-001",
        )

        record, _ = await service.process_payment(record.id, PaymentMethod.CASH, finance_officer)

        assert record.advance_deducted == Decimal("0")
        assert record.amount_paid == Decimal("120000")
        assert advance.recovered_amount == Decimal("0")


class TestPaymentRounding:

    @pytest.mark.asyncio
    async def test_paid_amount_is_rounded(self, db_session, admin, finance_officer, funded_cash_box):
        service = PaymentService(db_session)
        await FinanceSettingsService(db_session).update_category("payment", {"payment_rounding": "down_100"}, admin)
        record = await service.create_payment_record("Bugisu Co-op", 250075, finance_officer)

        record, _ = await service.process_payment(record.id, PaymentMethod.CASH, finance_officer)

        assert record.amount_paid == Decimal("250000")
        assert (await CashLedgerService(db_session).get_balance()).current_balance == Decimal("750000")


class TestSettingsEndpoints:

    @pytest.mark.asyncio
    async def test_finance_staff_read_settings(self, client, auth_headers, finance_officer, requester):
        response = await client.get("/api/v1/settings/finance", headers=auth_headers(finance_officer))
        assert response.status_code == 200
        body = response.json()
        assert set(body) == set(CATEGORIES)
        assert body["advance"]["minimum_advance_amount"] == "50000"

        response = await client.get("/api/v1/settings/finance/payment", headers=auth_headers(finance_officer))
        assert response.json()["default_payment_method"] == "Mobile Money"

        response = await client.get("/api/v1/settings/finance", headers=auth_headers(requester))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_only_admins_change_settings(self, client, auth_headers, admin, finance_officer):
        response = await client.put(
            "/api/v1/settings/finance/cash", json={"allow_negative_balance": True},
            headers=auth_headers(finance_officer),
        )
        assert response.status_code == 403

        response = await client.put(
            "/api/v1/settings/finance/cash", json={"allow_negative_balance": True}, headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["allow_negative_balance"] is True

    @pytest.mark.asyncio
    async def test_bad_update_and_unknown_category(self, client, auth_headers, admin):
        headers = auth_headers(admin)

        response = await client.put(
            "/api/v1/settings/finance/report", json={"finance_month_closing_date": 0}, headers=headers,
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

        response = await client.get("/api/v1/settings/finance/payroll", headers=headers)
        assert response.status_code == 404
