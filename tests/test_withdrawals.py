"""
Great Pearl Coffee Finance - Withdrawal Tests

Withdrawal filing, SMS step-up codes, multi-admin approval and finance
disbursement.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import insert, select, update

from app.models.cash import CashTransaction, CashTransactionType
from app.models.withdrawal import (
    PaymentChannel,
    StepUpMethod,
    WithdrawalApproval,
    WithdrawalRequest,
    WithdrawalStatus,
    WithdrawalVerificationCode,
)
from app.services.cash_ledger_service import CashLedgerService
from app.services.security_questions_service import SecurityQuestionsService
from app.services.withdrawal_service import WithdrawalService, required_approvals_for
from app.utils.datetime_utils import utcnow
from app.utils.error_handling import (
    AlreadyProcessedException,
    ConcurrentUpdateException,
    InsufficientFundsException,
    InsufficientPermissionsException,
    InvalidTransitionException,
    SelfApprovalException,
    ValidationException,
    VerificationFailedException,
)

QUESTIONS = ["First school?", "Home village?", "Favourite crop?"]
ANSWERS = ["Namirembe", "Masaka", "Robusta"]


def _wrong_code(code: str) -> str:
    return ("1" if code[0] != "1" else "2") + code[1:]


async def _with_questions(db_session, *employees):
    service = SecurityQuestionsService(db_session)
    for employee in employees:
        await service.setup(employee.email, QUESTIONS, ANSWERS)


class TestApprovalThreshold:

    def test_small_withdrawal_needs_one_approval(self):
        assert required_approvals_for(Decimal("100000")) == 1

    def test_large_withdrawal_needs_three_approvals(self):
        assert required_approvals_for(Decimal("100000.01")) == 3


class TestWithdrawalRequests:

    @pytest.mark.asyncio
    async def test_create_withdrawal(self, db_session, requester):
        service = WithdrawalService(db_session)

        request, warnings = await service.create(requester, 50000, "Transport to Kasese")

        assert warnings == []
        assert request.status == WithdrawalStatus.PENDING
        assert request.required_approvals == 1
        assert request.employee_name == requester.name
        assert request.approval_count == 0

    @pytest.mark.asyncio
    async def test_mobile_money_needs_phone(self, db_session, requester):
        service = WithdrawalService(db_session)
        with pytest.raises(ValidationException):
            await service.create(requester, 50000, "Airtime", payment_channel=PaymentChannel.MOBILE_MONEY)

    @pytest.mark.asyncio
    async def test_bank_transfer_needs_account_details(self, db_session, requester):
        service = WithdrawalService(db_session)
        with pytest.raises(ValidationException):
            await service.create(
                requester, 50000, "School fees", payment_channel=PaymentChannel.BANK, bank_name="Stanbic",
            )


class TestVerificationCodes:

    @pytest.mark.asyncio
    async def test_code_is_stored_as_digest(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")

        issued = await service.create_verification_code(request.id, admin)

        assert len(issued["code"]) == 6
        assert issued["phone"] == "256772100002"
        stored = await db_session.get(WithdrawalVerificationCode, issued["code_id"])
        assert stored.code_hash != issued["code"]
        assert len(stored.code_hash) == 64

    @pytest.mark.asyncio
    async def test_code_locks_after_three_wrong_attempts(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        issued = await service.create_verification_code(request.id, admin)
        wrong = _wrong_code(issued["code"])

        results = [await service.verify_code(issued["code_id"], wrong, admin.email) for _ in range(3)]

        assert [r["attempts_remaining"] for r in results] == [2, 1, 0]
        assert all(r["success"] is False for r in results)

        locked = await service.verify_code(issued["code_id"], issued["code"], admin.email)
        assert locked["success"] is False
        assert locked["error"] == "Too many failed attempts"

    @pytest.mark.asyncio
    async def test_expired_code_is_refused(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        issued = await service.create_verification_code(request.id, admin)

        stored = await db_session.get(WithdrawalVerificationCode, issued["code_id"])
        stored.expires_at = utcnow() - timedelta(minutes=1)
        await db_session.commit()

        result = await service.verify_code(issued["code_id"], issued["code"], admin.email)
        assert result == {"success": False, "error": "Code has expired"}

        assert await service.expire_stale_codes() == 1

    @pytest.mark.asyncio
    async def test_code_belongs_to_its_approver(self, db_session, requester, admin, manager):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        issued = await service.create_verification_code(request.id, admin)

        result = await service.verify_code(issued["code_id"], issued["code"], manager.email)

        assert result["success"] is False
        assert result["error"] == "Verification code not found"

    @pytest.mark.asyncio
    async def test_new_code_retires_previous_one(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        first = await service.create_verification_code(request.id, admin)
        await service.create_verification_code(request.id, admin)

        # The bulk update bypasses the identity map
        retired = await db_session.get(WithdrawalVerificationCode, first["code_id"])
        await db_session.refresh(retired)
        assert retired.is_used is True

        result = await service.verify_code(first["code_id"], first["code"], admin.email)

        assert result == {"success": False, "error": "Code already used"}

    @pytest.mark.asyncio
    async def test_only_admins_get_codes(self, db_session, requester, finance_officer):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")

        with pytest.raises(InsufficientPermissionsException):
            await service.create_verification_code(request.id, finance_officer)


class TestAdminApproval:

    @pytest.mark.asyncio
    async def test_sms_approval_moves_small_request_to_finance(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        issued = await service.create_verification_code(request.id, admin)
        await service.verify_code(issued["code_id"], issued["code"], admin.email)

        request, _ = await service.admin_approve(request.id, admin, StepUpMethod.SMS, code_id=issued["code_id"])

        assert request.status == WithdrawalStatus.PENDING_FINANCE
        assert request.admin_approved is True
        assert request.approver_emails == [admin.email]
        assert request.approvals[0].verification_method == StepUpMethod.SMS

        code = await db_session.get(WithdrawalVerificationCode, issued["code_id"])
        assert code.consumed_at is not None

    @pytest.mark.asyncio
    async def test_unverified_code_cannot_approve(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")
        issued = await service.create_verification_code(request.id, admin)

        with pytest.raises(VerificationFailedException):
            await service.admin_approve(request.id, admin, StepUpMethod.SMS, code_id=issued["code_id"])

    @pytest.mark.asyncio
    async def test_code_for_another_request_cannot_approve(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        first, _ = await service.create(requester, 50000, "Fuel")
        second, _ = await service.create(requester, 60000, "Lunch")
        issued = await service.create_verification_code(first.id, admin)
        await service.verify_code(issued["code_id"], issued["code"], admin.email)

        with pytest.raises(VerificationFailedException):
            await service.admin_approve(second.id, admin, StepUpMethod.SMS, code_id=issued["code_id"])

    @pytest.mark.asyncio
    async def test_wrong_security_answers_cannot_approve(self, db_session, requester, admin):
        await _with_questions(db_session, admin)
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")

        with pytest.raises(VerificationFailedException):
            await service.admin_approve(
                request.id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=["x", "y", "z"],
            )

    @pytest.mark.asyncio
    async def test_self_approval_is_blocked(self, db_session, admin):
        await _with_questions(db_session, admin)
        service = WithdrawalService(db_session)
        request, _ = await service.create(admin, 50000, "Own transport")

        with pytest.raises(SelfApprovalException):
            await service.admin_approve(request.id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS)

    @pytest.mark.asyncio
    async def test_large_request_needs_three_distinct_admins(
        self, db_session, requester, admin, manager, second_admin,
    ):
        await _with_questions(db_session, admin, manager, second_admin)
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 250000, "Staff medical")
        assert request.required_approvals == 3

        request, _ = await service.admin_approve(
            request.id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS,
        )
        assert request.status == WithdrawalStatus.PENDING

        with pytest.raises(AlreadyProcessedException):
            await service.admin_approve(request.id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS)

        request, _ = await service.admin_approve(
            request.id, manager, StepUpMethod.SECURITY_QUESTIONS, answers=[a.upper() for a in ANSWERS],
        )
        assert request.status == WithdrawalStatus.PENDING
        assert request.approval_count == 2

        request, _ = await service.admin_approve(
            request.id, second_admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS,
        )
        assert request.status == WithdrawalStatus.PENDING_FINANCE
        assert sorted(request.approver_emails) == sorted([admin.email, manager.email, second_admin.email])

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_approval_is_already_processed(self, db_session, requester, admin):
        await _with_questions(db_session, admin)
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 250000, "Staff medical")
        request_id = request.id
        admin_email = admin.email

        # Recorded from another tab after this session loaded the request
        await db_session.execute(
            insert(WithdrawalApproval).values(
                withdrawal_request_id=request_id,
                approver_email=admin_email,
                approver_name=admin.name,
                verification_method=StepUpMethod.SECURITY_QUESTIONS,
                approved_at=utcnow(),
            )
        )
        await db_session.commit()

        with pytest.raises(AlreadyProcessedException):
            await service.admin_approve(request_id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS)

        result = await db_session.execute(
            select(WithdrawalApproval.approver_email).where(WithdrawalApproval.withdrawal_request_id == request_id)
        )
        assert result.scalars().all() == [admin_email]
        result = await db_session.execute(
            select(WithdrawalRequest.status).where(WithdrawalRequest.id == request_id)
        )
        assert result.scalar_one() == WithdrawalStatus.PENDING



class TestFinanceStage:

    async def _admin_approved(self, db_session, requester, admin, amount=50000):
        await _with_questions(db_session, admin)
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, amount, "Fuel")
        request, _ = await service.admin_approve(
            request.id, admin, StepUpMethod.SECURITY_QUESTIONS, answers=ANSWERS,
        )
        return service, request

    @pytest.mark.asyncio
    async def test_disbursement_posts_withdrawal(
        self, db_session, requester, admin, finance_officer, funded_cash_box,
    ):
        service, request = await self._admin_approved(db_session, requester, admin)

        request, _ = await service.finance_disburse(
            request.id, finance_officer, payment_channel=PaymentChannel.MOBILE_MONEY,
        )

        assert request.status == WithdrawalStatus.APPROVED
        assert request.finance_approved is True
        assert request.payment_channel == PaymentChannel.MOBILE_MONEY
        assert request.approved_by == finance_officer.name

        transaction = await db_session.get(CashTransaction, request.transaction_id)
        assert transaction.transaction_type == CashTransactionType.WITHDRAWAL
        assert transaction.amount == Decimal("50000")
        balance = await CashLedgerService(db_session).get_balance()
        assert balance.current_balance == funded_cash_box - Decimal("50000")

    @pytest.mark.asyncio
    async def test_disbursement_before_admin_approval_is_refused(
        self, db_session, requester, finance_officer, funded_cash_box,
    ):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")

        with pytest.raises(InvalidTransitionException):
            await service.finance_disburse(request.id, finance_officer)

    @pytest.mark.asyncio
    async def test_disbursement_without_cash_changes_nothing(
        self, db_session, requester, admin, finance_officer,
    ):
        service, request = await self._admin_approved(db_session, requester, admin)
        request_id = request.id

        with pytest.raises(InsufficientFundsException):
            await service.finance_disburse(request_id, finance_officer)

        request = await service.get(request_id)
        assert request.status == WithdrawalStatus.PENDING_FINANCE
        result = await db_session.execute(select(CashTransaction))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_stale_disbursement_posts_nothing(
        self, db_session, requester, admin, finance_officer, funded_cash_box,
    ):
        service, request = await self._admin_approved(db_session, requester, admin)
        request_id = request.id
        await db_session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == request_id)
            .values(version=WithdrawalRequest.version + 1)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()

        with pytest.raises(ConcurrentUpdateException):
            await service.finance_disburse(request_id, finance_officer)

        result = await db_session.execute(
            select(WithdrawalRequest.status).where(WithdrawalRequest.id == request_id)
        )
        assert result.scalar_one() == WithdrawalStatus.PENDING_FINANCE
        result = await db_session.execute(
            select(CashTransaction).where(CashTransaction.transaction_type == CashTransactionType.WITHDRAWAL)
        )
        assert result.scalars().all() == []
        balance = await CashLedgerService(db_session).get_balance()
        assert balance.current_balance == funded_cash_box

    @pytest.mark.asyncio
    async def test_finance_can_reject_pending_finance(self, db_session, requester, admin, finance_officer):
        service, request = await self._admin_approved(db_session, requester, admin)

        request, _ = await service.finance_reject(request.id, finance_officer, reason="No receipts")

        assert request.status == WithdrawalStatus.REJECTED
        assert request.rejection_reason == "No receipts"

        with pytest.raises(InvalidTransitionException):
            await service.finance_disburse(request.id, finance_officer)

    @pytest.mark.asyncio
    async def test_admin_reject_needs_reason(self, db_session, requester, admin):
        service = WithdrawalService(db_session)
        request, _ = await service.create(requester, 50000, "Fuel")

        with pytest.raises(ValidationException):
            await service.admin_reject(request.id, admin, "  ")

        request, _ = await service.admin_reject(request.id, admin, "Duplicate request")
        assert request.status == WithdrawalStatus.REJECTED


class TestWithdrawalEndpoints:
    """HTTP tests for /api/v1/withdrawals."""

    @pytest.mark.asyncio
    async def test_sms_approval_and_disbursement_over_http(
        self, client, auth_headers, requester, admin, finance_officer, funded_cash_box,
    ):
        requester_headers = auth_headers(requester)
        admin_headers = auth_headers(admin)
        finance_headers = auth_headers(finance_officer)

        response = await client.post(
            "/api/v1/withdrawals",
            json={"amount": 40000, "reason": "Boda boda to the washing station"},
            headers=requester_headers,
        )
        assert response.status_code == 201
        request_id = response.json()["request"]["id"]

        response = await client.post(f"/api/v1/withdrawals/{request_id}/verification-codes", headers=admin_headers)
        assert response.status_code == 201
        issued = response.json()
        assert issued["code"] is not None

        response = await client.post(
            f"/api/v1/withdrawals/verification-codes/{issued['code_id']}/verify",
            json={"code": _wrong_code(issued["code"])},
            headers=admin_headers,
        )
        assert response.json() == {"success": False, "error": "Invalid code", "attempts_remaining": 2}

        response = await client.post(
            f"/api/v1/withdrawals/verification-codes/{issued['code_id']}/verify",
            json={"code": issued["code"]},
            headers=admin_headers,
        )
        assert response.json()["success"] is True

        response = await client.post(
            f"/api/v1/withdrawals/{request_id}/admin-approve",
            json={"method": "sms", "code_id": issued["code_id"]},
            headers=admin_headers,
        )
        assert response.status_code == 200
        body = response.json()["request"]
        assert body["status"] == "pending_finance"
        assert body["approval_count"] == 1

        response = await client.post(f"/api/v1/withdrawals/{request_id}/disburse", headers=finance_headers)
        assert response.status_code == 200
        assert response.json()["request"]["status"] == "approved"

        response = await client.get("/api/v1/cash/balance", headers=finance_headers)
        assert response.json()["current_balance"] == float(funded_cash_box) - 40000

    @pytest.mark.asyncio
    async def test_self_approval_over_http(self, client, auth_headers, db_session, admin):
        await _with_questions(db_session, admin)
        admin_headers = auth_headers(admin)

        response = await client.post(
            "/api/v1/withdrawals", json={"amount": 20000, "reason": "Lunch"}, headers=admin_headers,
        )
        request_id = response.json()["request"]["id"]

        response = await client.post(
            f"/api/v1/withdrawals/{request_id}/admin-approve",
            json={"method": "security_questions", "answers": ANSWERS},
            headers=admin_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "SELF_APPROVAL"

    @pytest.mark.asyncio
    async def test_requester_cannot_request_codes(self, client, auth_headers, requester):
        requester_headers = auth_headers(requester)
        response = await client.post(
            "/api/v1/withdrawals", json={"amount": 20000, "reason": "Lunch"}, headers=requester_headers,
        )
        request_id = response.json()["request"]["id"]

        response = await client.post(
            f"/api/v1/withdrawals/{request_id}/verification-codes", headers=requester_headers,
        )
        assert response.status_code == 403
