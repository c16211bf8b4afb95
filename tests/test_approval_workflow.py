"""
Great Pearl Coffee Finance - Approval Workflow Tests

Two-stage (admin, then finance) approval of expenditure requests.
"""

from decimal import Decimal

import uuid

import pytest
from sqlalchemy import select, update

from app.models.approval import ApprovalRequest, ApprovalStatus
from app.models.cash import CashTransaction, CashTransactionType
from app.models.finance import FinanceExpense
from app.models.notification import FinanceNotification, NotificationPriority
from app.services.approval_workflow import (
    ApprovalAction,
    ApprovalState,
    ApprovalWorkflowService,
    derive_state,
    next_state,
)
from app.services.cash_ledger_service import CashLedgerService
from app.utils.error_handling import (
    ConcurrentUpdateException,
    InsufficientFundsException,
    InsufficientPermissionsException,
    InvalidTransitionException,
    ValidationException,
)


async def _modified_elsewhere(db_session, model, row_id):
    """Bump a row's version behind the session's back, as a concurrent writer would."""
    await db_session.execute(
        update(model)
        .where(model.id == row_id)
        .values(version=model.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()


async def _reload(db_session, request_id) -> ApprovalRequest:
    result = await db_session.execute(
        select(ApprovalRequest)
        .where(ApprovalRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _notification_titles(db_session):
    result = await db_session.execute(select(FinanceNotification.title))
    return result.scalars().all()


class TestStateDerivation:
    """The workflow stage is derived from stored flags and status text."""

    def test_new_request_is_pending_admin(self):
        request = ApprovalRequest(status="Pending", admin_approved=False, finance_approved=False)
        assert derive_state(request) == ApprovalState.PENDING_ADMIN

    def test_admin_flag_means_pending_finance(self):
        request = ApprovalRequest(status="Pending", admin_approved=True, finance_approved=False)
        assert derive_state(request) == ApprovalState.PENDING_FINANCE

    def test_finance_flag_means_approved(self):
        request = ApprovalRequest(status="Pending Finance", admin_approved=True, finance_approved=True)
        assert derive_state(request) == ApprovalState.APPROVED

    def test_rejected_status_wins_over_flags(self):
        request = ApprovalRequest(status="Rejected", admin_approved=True, finance_approved=True)
        assert derive_state(request) == ApprovalState.REJECTED

    def test_terminal_states_accept_no_action(self):
        for state in (ApprovalState.APPROVED, ApprovalState.REJECTED):
            for action in ApprovalAction:
                with pytest.raises(InvalidTransitionException):
                    next_state(state, action)

    def test_finance_cannot_skip_admin(self):
        with pytest.raises(InvalidTransitionException):
            next_state(ApprovalState.PENDING_ADMIN, ApprovalAction.FINANCE_APPROVE)


class TestApprovalWorkflowService:
    """Service-level workflow tests."""

    @pytest.mark.asyncio
    async def test_create_request_notifies_administrators(self, db_session, requester):
        service = ApprovalWorkflowService(db_session)

        request, warnings = await service.create_request(
            requester=requester,
            request_type="Expense Request",
            title="Drying tarpaulins",
            amount=Decimal("250000"),
        )

        assert warnings == []
        assert request.status == ApprovalStatus.PENDING.value
        assert request.department == "Operations"
        assert derive_state(request) == ApprovalState.PENDING_ADMIN

        result = await db_session.execute(select(FinanceNotification))
        notifications = result.scalars().all()
        assert len(notifications) == 1
        assert notifications[0].target_role == "Administrator"
        assert notifications[0].meta["request_id"] == str(request.id)

    @pytest.mark.asyncio
    async def test_blank_title_is_rejected(self, db_session, requester):
        service = ApprovalWorkflowService(db_session)
        with pytest.raises(ValidationException):
            await service.create_request(requester, "Expense Request", "   ", 1000)

    @pytest.mark.asyncio
    async def test_full_approval_posts_expense_to_ledger(
        self, db_session, requester, admin, finance_officer, funded_cash_box,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(
            requester=requester,
            request_type="Expense Request",
            title="Generator fuel",
            amount=Decimal("150000"),
            details={"category": "Fuel"},
        )

        request, _ = await service.admin_approve(request.id, admin)
        assert derive_state(request) == ApprovalState.PENDING_FINANCE
        assert request.status == ApprovalStatus.PENDING_FINANCE.value
        assert request.admin_approved_by == admin.name

        request, _ = await service.finance_approve(request.id, finance_officer)
        assert derive_state(request) == ApprovalState.APPROVED
        assert request.finance_approved is True
        assert request.finance_approved_by == finance_officer.name

        balance = await CashLedgerService(db_session).get_balance()
        assert balance.current_balance == funded_cash_box - Decimal("150000")

        result = await db_session.execute(
            select(CashTransaction).where(CashTransaction.reference == str(request.id))
        )
        transaction = result.scalar_one()
        assert transaction.transaction_type == CashTransactionType.EXPENSE
        assert transaction.balance_after == balance.current_balance

        result = await db_session.execute(
            select(FinanceExpense).where(FinanceExpense.approval_request_id == request.id)
        )
        expense = result.scalar_one()
        assert expense.category == "Fuel"
        assert expense.amount == Decimal("150000")

    @pytest.mark.asyncio
    async def test_salary_request_posts_salary_entry(
        self, db_session, requester, manager, finance_officer, funded_cash_box,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Salary Request", "October wages", 300000)
        await service.admin_approve(request.id, manager)
        await service.finance_approve(request.id, finance_officer)

        result = await db_session.execute(
            select(CashTransaction).where(CashTransaction.reference == str(request.id))
        )
        assert result.scalar_one().transaction_type == CashTransactionType.SALARY

        result = await db_session.execute(
            select(FinanceExpense).where(FinanceExpense.approval_request_id == request.id)
        )
        assert result.scalar_one().category == "Salary Request"

    @pytest.mark.asyncio
    async def test_finance_approval_without_admin_is_refused(
        self, db_session, requester, finance_officer, funded_cash_box,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Requisition", "Sacks", 50000)

        with pytest.raises(InvalidTransitionException):
            await service.finance_approve(request.id, finance_officer)

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_request_pending_finance(
        self, db_session, requester, admin, finance_officer,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Truck repair", 900000)
        request_id = request.id
        await service.admin_approve(request_id, admin)

        with pytest.raises(InsufficientFundsException):
            await service.finance_approve(request_id, finance_officer)

        request = await service.get_request(request_id)
        assert derive_state(request) == ApprovalState.PENDING_FINANCE
        assert request.finance_approved is False

        result = await db_session.execute(select(CashTransaction))
        assert result.scalars().all() == []
        result = await db_session.execute(select(FinanceExpense))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_reject_at_finance_stage(self, db_session, requester, admin, finance_officer):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Office chairs", 80000)
        await service.admin_approve(request.id, admin)

        request, _ = await service.reject(request.id, finance_officer, reason="Over budget")

        assert derive_state(request) == ApprovalState.REJECTED
        assert request.rejection_reason == "Over budget"
        assert request.rejected_by == finance_officer.name

        with pytest.raises(InvalidTransitionException):
            await service.admin_approve(request.id, admin)

    @pytest.mark.asyncio
    async def test_only_admins_approve_at_admin_stage(self, db_session, requester, finance_officer):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Fuel", 10000)

        with pytest.raises(InsufficientPermissionsException):
            await service.admin_approve(request.id, requester)
        with pytest.raises(InsufficientPermissionsException):
            await service.admin_approve(request.id, finance_officer)

    @pytest.mark.asyncio
    async def test_pending_counts_by_queue(self, db_session, requester, admin):
        service = ApprovalWorkflowService(db_session)
        for request_type in ("Expense Request", "Cash Requisition", "Wage Request", "Salary Advance"):
            request, _ = await service.create_request(requester, request_type, request_type, 1000)
            await service.admin_approve(request.id, admin)
        # Still awaiting admin, so not counted
        await service.create_request(requester, "Expense Request", "Not yet", 1000)

        counts = await service.pending_counts()

        assert counts == {"expenses": 1, "requisitions": 1, "hr_payments": 2, "total": 4}


    @pytest.mark.asyncio
    async def test_finance_approval_tells_requester(
        self, db_session, requester, admin, finance_officer, funded_cash_box,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Hessian bags", 60000)
        await service.admin_approve(request.id, admin)

        await service.finance_approve(request.id, finance_officer)

        result = await db_session.execute(
            select(FinanceNotification).where(FinanceNotification.title == "Request Approved")
        )
        notification = result.scalar_one()
        assert notification.target_user_email == requester.email
        assert notification.target_role is None
        assert notification.priority == NotificationPriority.MEDIUM
        assert notification.sender_email == finance_officer.email
        assert notification.meta["request_id"] == str(request.id)

    @pytest.mark.asyncio
    async def test_rejection_tells_requester_with_high_priority(self, db_session, requester, admin):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Cash Requisition", "Petty cash", 20000)

        await service.reject(request.id, admin, reason="Use the float")

        result = await db_session.execute(
            select(FinanceNotification).where(FinanceNotification.title == "Request Rejected")
        )
        notification = result.scalar_one()
        assert notification.target_user_email == requester.email
        assert notification.priority == NotificationPriority.HIGH
        assert "Reason: Use the float" in notification.message

    @pytest.mark.asyncio
    async def test_list_filters_state_and_limit_in_query(self, db_session, requester, admin):
        service = ApprovalWorkflowService(db_session)
        pending_admin, _ = await service.create_request(requester, "Expense Request", "Still waiting", 1000)
        for title in ("First", "Second"):
            request, _ = await service.create_request(requester, "Expense Request", title, 1000)
            await service.admin_approve(request.id, admin)
        rejected, _ = await service.create_request(requester, "Expense Request", "Refused", 1000)
        await service.reject(rejected.id, admin)

        pending_finance = await service.list_requests(state=ApprovalState.PENDING_FINANCE)
        assert {r.title for r in pending_finance} == {"First", "Second"}
        assert len(await service.list_requests(state=ApprovalState.PENDING_FINANCE, limit=1)) == 1
        assert [r.id for r in await service.list_requests(state=ApprovalState.PENDING_ADMIN)] == [pending_admin.id]
        assert [r.id for r in await service.list_requests(state=ApprovalState.REJECTED)] == [rejected.id]
        assert await service.list_requests(state=ApprovalState.APPROVED) == []


class TestConcurrentUpdates:
    """A stale version loses with a 409 and leaves the stored row untouched."""

    @pytest.mark.asyncio
    async def test_stale_admin_approval(self, db_session, requester, admin):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Fuel", 10000)
        request_id = request.id
        await _modified_elsewhere(db_session, ApprovalRequest, request_id)

        with pytest.raises(ConcurrentUpdateException):
            await service.admin_approve(request_id, admin)

        stored = await _reload(db_session, request_id)
        assert derive_state(stored) == ApprovalState.PENDING_ADMIN
        assert stored.admin_approved_by is None
        assert "Request Approved by Admin" not in await _notification_titles(db_session)

    @pytest.mark.asyncio
    async def test_stale_rejection(self, db_session, requester, admin):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Chairs", 30000)
        request_id = request.id
        await _modified_elsewhere(db_session, ApprovalRequest, request_id)

        with pytest.raises(ConcurrentUpdateException):
            await service.reject(request_id, admin, reason="No budget")

        stored = await _reload(db_session, request_id)
        assert derive_state(stored) == ApprovalState.PENDING_ADMIN
        assert stored.rejection_reason is None
        assert "Request Rejected" not in await _notification_titles(db_session)

    @pytest.mark.asyncio
    async def test_stale_finance_approval_posts_nothing(
        self, db_session, requester, admin, finance_officer, funded_cash_box,
    ):
        service = ApprovalWorkflowService(db_session)
        request, _ = await service.create_request(requester, "Expense Request", "Tyres", 200000)
        request_id = request.id
        await service.admin_approve(request_id, admin)
        await _modified_elsewhere(db_session, ApprovalRequest, request_id)

        with pytest.raises(ConcurrentUpdateException):
            await service.finance_approve(request_id, finance_officer)

        stored = await _reload(db_session, request_id)
        assert derive_state(stored) == ApprovalState.PENDING_FINANCE
        balance = await CashLedgerService(db_session).get_balance()
        assert balance.current_balance == funded_cash_box
        result = await db_session.execute(select(FinanceExpense))
        assert result.scalars().all() == []
        assert "Request Approved" not in await _notification_titles(db_session)


class TestApprovalEndpoints:
    """HTTP tests for /api/v1/approvals."""

    @pytest.mark.asyncio
    async def test_request_lifecycle_over_http(
        self, client, auth_headers, requester, admin, finance_officer, funded_cash_box,
    ):
        requester_headers = auth_headers(requester)
        admin_headers = auth_headers(admin)
        finance_headers = auth_headers(finance_officer)

        response = await client.post(
            "/api/v1/approvals",
            json={"type": "Expense Request", "title": "Weighing scale", "amount": 120000},
            headers=requester_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["warnings"] == []
        request_id = body["request"]["id"]
        assert body["request"]["state"] == "PendingAdmin"

        response = await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=requester_headers)
        assert response.status_code == 403

        response = await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["request"]["state"] == "PendingFinance"

        response = await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"

        response = await client.post(f"/api/v1/approvals/{request_id}/finance-approve", headers=finance_headers)
        assert response.status_code == 200
        assert response.json()["request"]["state"] == "Approved"

        response = await client.get("/api/v1/cash/balance", headers=finance_headers)
        assert response.json()["current_balance"] == 880000

        response = await client.get("/api/v1/approvals", params={"state": "Approved"}, headers=requester_headers)
        assert [r["id"] for r in response.json()] == [request_id]

    @pytest.mark.asyncio
    async def test_insufficient_funds_over_http(
        self, client, auth_headers, requester, admin, finance_officer,
    ):
        requester_headers = auth_headers(requester)
        admin_headers = auth_headers(admin)
        finance_headers = auth_headers(finance_officer)

        response = await client.post(
            "/api/v1/approvals",
            json={"type": "Expense Request", "title": "New roof", "amount": 5000000},
            headers=requester_headers,
        )
        request_id = response.json()["request"]["id"]
        await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=admin_headers)

        response = await client.post(f"/api/v1/approvals/{request_id}/finance-approve", headers=finance_headers)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_FUNDS"
        assert error["details"]["available_amount"] == 0

        response = await client.get(f"/api/v1/approvals/{request_id}", headers=finance_headers)
        assert response.json()["state"] == "PendingFinance"

    @pytest.mark.asyncio
    async def test_unauthenticated_request_is_refused(self, client):
        response = await client.get("/api/v1/approvals")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_version_conflict_over_http(self, client, auth_headers, db_session, requester, admin):
        response = await client.post(
            "/api/v1/approvals",
            json={"type": "Expense Request", "title": "Moisture meter", "amount": 90000},
            headers=auth_headers(requester),
        )
        request_id = response.json()["request"]["id"]
        admin_headers = auth_headers(admin)

        # Keep the row loaded so the next request works from the old version
        loaded = await db_session.get(ApprovalRequest, uuid.UUID(request_id))
        await _modified_elsewhere(db_session, ApprovalRequest, loaded.id)

        response = await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=admin_headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "VERSION_CONFLICT"

        response = await client.get(f"/api/v1/approvals/{request_id}", headers=admin_headers)
        assert response.json()["state"] == "PendingAdmin"

        response = await client.post(f"/api/v1/approvals/{request_id}/admin-approve", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["request"]["state"] == "PendingFinance"
