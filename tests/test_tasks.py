"""
Great Pearl Coffee Finance - Background Task Tests

The async bodies behind the Celery beat tasks, run against the test database.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.cash import CashBalance
from app.models.notification import DeliveryStatus, FinanceNotification, NotificationPriority
from app.services.notification_service import NotificationService
from app.tasks.celery_tasks import _deliver_notifications, _expire_withdrawal_codes, _verify_cash_ledger


@pytest.fixture
def task_sessions(db_session):
    """Point the tasks' session factory at the test database."""
    factory = async_sessionmaker(db_session.bind, class_=AsyncSession, expire_on_commit=False)
    with patch("app.tasks.celery_tasks.async_session_factory", factory):
        yield factory


class TestVerifyCashLedger:

    @pytest.mark.asyncio
    async def test_consistent_ledger_raises_no_alarm(self, task_sessions, db_session, funded_cash_box):
        report = await _verify_cash_ledger()

        assert report["is_consistent"] is True
        assert report["stored_balance"] == 1000000.0
        result = await db_session.execute(select(FinanceNotification))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_mismatch_alerts_finance(self, task_sessions, db_session, funded_cash_box):
        result = await db_session.execute(select(CashBalance))
        result.scalar_one().current_balance = funded_cash_box - 500
        await db_session.commit()

        report = await _verify_cash_ledger()

        assert report["is_consistent"] is False
        assert report["difference"] == -500.0
        result = await db_session.execute(select(FinanceNotification))
        alert = result.scalar_one()
        assert alert.title == "Cash Ledger Mismatch"
        assert alert.target_role == "Finance"
        assert alert.priority == NotificationPriority.MEDIUM

    @pytest.mark.asyncio
    async def test_mismatch_above_warning_threshold_is_high_priority(self, task_sessions, db_session, funded_cash_box):
        result = await db_session.execute(select(CashBalance))
        result.scalar_one().current_balance = funded_cash_box + 25000
        await db_session.commit()

        report = await _verify_cash_ledger()

        assert report["difference"] == 25000.0
        result = await db_session.execute(select(FinanceNotification))
        assert result.scalar_one().priority == NotificationPriority.HIGH


@pytest.mark.asyncio
async def test_expire_codes_with_nothing_pending(task_sessions):
    assert await _expire_withdrawal_codes() == {"expired": 0}


@pytest.mark.asyncio
async def test_deliver_notifications_goes_through_relay(task_sessions, db_session, requester):
    await NotificationService(db_session).notify(
        title="Payment Ready", message="Lot GP-001 is ready", target_user_email=requester.email,
    )
    await db_session.commit()

    relay = MagicMock()
    relay.send_notification = AsyncMock(return_value=1)
    relay.close = AsyncMock()

    with patch("app.services.realtime_relay.RedisRealtimeRelay", return_value=relay):
        stats = await _deliver_notifications()

    assert stats == {"delivered": 1, "retrying": 0, "failed": 0}
    delivered = relay.send_notification.await_args.args[0]
    assert delivered["target_user_email"] == requester.email
    relay.close.assert_awaited_once()

    result = await db_session.execute(select(FinanceNotification).execution_options(populate_existing=True))
    assert result.scalar_one().delivery_status == DeliveryStatus.DELIVERED
