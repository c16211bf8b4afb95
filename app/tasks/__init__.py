"""
Great Pearl Coffee Finance - Background Tasks Package

Celery background tasks.
"""

from app.tasks.celery_tasks import (
    deliver_notifications_task,
    expire_withdrawal_codes_task,
    verify_cash_ledger_task,
)

__all__ = [
    "deliver_notifications_task",
    "expire_withdrawal_codes_task",
    "verify_cash_ledger_task",
]
