"""
Great Pearl Coffee Finance - Celery Tasks

Background tasks for scheduled operations.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from app.database import async_session_factory

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# NOTIFICATION TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.deliver_notifications_task')
def deliver_notifications_task() -> Dict[str, int]:
    """Push pending notifications to connected clients."""
    return run_async(_deliver_notifications())


async def _deliver_notifications() -> Dict[str, int]:
    """Async implementation of the outbox drain."""
    from app.services.notification_service import NotificationService
    from app.services.realtime_relay import RedisRealtimeRelay

    relay = RedisRealtimeRelay()
    try:
        async with async_session_factory() as db:
            return await NotificationService(db).deliver_pending(broker=relay)
    finally:
        await relay.close()


# ===========================================
# WITHDRAWAL TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.expire_withdrawal_codes_task')
def expire_withdrawal_codes_task() -> Dict[str, int]:
    """Retire SMS approval codes past their expiry."""
    return run_async(_expire_withdrawal_codes())


async def _expire_withdrawal_codes() -> Dict[str, int]:
    from app.services.withdrawal_service import WithdrawalService

    async with async_session_factory() as db:
        expired = await WithdrawalService(db).expire_stale_codes()

    if expired:
        logger.info(f"Expired {expired} withdrawal verification codes")
    return {"expired": expired}


# ===========================================
# CASH LEDGER TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.verify_cash_ledger_task')
def verify_cash_ledger_task() -> Dict[str, Any]:
    """Compare the stored balance with the sum of confirmed ledger rows."""
    return run_async(_verify_cash_ledger())


async def _verify_cash_ledger() -> Dict[str, Any]:
    from app.services.cash_ledger_service import CashLedgerService
    from app.services.finance_settings_service import FinanceSettingsService
    from app.services.notification_service import NotificationService
    from app.models.notification import NotificationPriority, NotificationType
    from app.utils.permissions import Role

    async with async_session_factory() as db:
        report = await CashLedgerService(db).verify_ledger()

        if not report["is_consistent"]:
            logger.error(f"Cash ledger mismatch: {report}")
            threshold = (await FinanceSettingsService(db).cash()).cash_warning_threshold
            priority = (
                NotificationPriority.HIGH if abs(report["difference"]) > threshold else NotificationPriority.MEDIUM
            )
            await NotificationService(db).notify(
                title="Cash Ledger Mismatch",
                message=(
                    f"Stored balance {report['stored_balance']:,.2f} differs from the ledger total "
                    f"{report['computed_balance']:,.2f} by {report['difference']:,.2f}."
                ),
                notification_type=NotificationType.SYSTEM,
                priority=priority,
                target_role=Role.FINANCE.value,
            )
        await db.commit()

    return {
        "stored_balance": float(report["stored_balance"]),
        "computed_balance": float(report["computed_balance"]),
        "difference": float(report["difference"]),
        "is_consistent": report["is_consistent"],
        "transaction_count": report["transaction_count"],
    }
