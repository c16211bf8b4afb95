"""
Great Pearl Coffee Finance - Notification Service

Finance desk notifications (the bell menu).

Notifications are written inside the caller's transaction, each within its
own savepoint: a failed insert is rolled back on its own, logged, and handed
back to the caller as a warning while the surrounding action still commits.
A Celery beat task later pushes pending notifications to connected clients
and retries failed deliveries.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.employee import Employee
from app.models.notification import (
    DeliveryStatus,
    FinanceNotification,
    NotificationPriority,
    NotificationType,
)
from app.services.realtime import get_realtime_broker, row_to_dict
from app.utils.datetime_utils import utcnow
from app.utils.error_handling import NotFoundException
from app.utils.permissions import is_super_admin, target_roles_for

logger = logging.getLogger(__name__)


@dataclass
class NotifyResult:
    """Outcome of a notify() call. ``warning`` is set when the insert failed."""
    notification: Optional[FinanceNotification] = None
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.notification is not None


def sender_name_for(sender_email: Optional[str]) -> str:
    """Display name for a sender: the mailbox part of the email, or "System"."""
    if not sender_email:
        return "System"
    return sender_email.split("@")[0]


class NotificationService:
    """Service for writing, listing and delivering finance notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # EMIT
    # ===========================================

    async def notify(
        self,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.SYSTEM,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        target_user_email: Optional[str] = None,
        target_role: Optional[str] = None,
        sender_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotifyResult:
        """
        Record a notification in the current transaction.

        Pending changes of the caller are flushed first and their errors
        propagate. A failure to store the notification itself never raises;
        the returned result carries a warning instead. The caller is
        responsible for committing.
        """
        notification = FinanceNotification(
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            target_user_email=target_user_email,
            target_role=target_role,
            sender_email=sender_email,
            sender_name=sender_name_for(sender_email),
            meta=metadata,
            is_read=False,
            delivery_status=DeliveryStatus.PENDING,
            delivery_attempts=0,
        )

        # Surface the caller's own flush errors before the savepoint opens
        await self.db.flush()

        try:
            async with self.db.begin_nested():
                self.db.add(notification)
        except SQLAlchemyError as e:
            logger.warning(f"Notification '{title}' for {target_user_email or target_role or 'all'} not recorded: {e}")
            return NotifyResult(warning=f"Notification '{title}' could not be recorded")

        logger.info(f"Notification queued for {target_user_email or target_role or 'all'}: {title}")
        return NotifyResult(notification=notification)

    # ===========================================
    # READ SIDE
    # ===========================================

    def _visible_to(self, employee: Employee):
        """SQL filter for the rows notification_visible_to() lets through."""
        addressed = or_(
            FinanceNotification.target_user_email == employee.email,
            FinanceNotification.target_user_email.is_(None),
        )
        if is_super_admin(employee):
            return addressed
        return addressed & or_(
            FinanceNotification.target_role.is_(None),
            FinanceNotification.target_role.in_(target_roles_for(employee)),
        )

    async def list_for_user(
        self,
        employee: Employee,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[FinanceNotification]:
        """
        Most recent notifications visible to an employee.

        Rows addressed to another user are never returned; role-targeted
        broadcasts are returned only to matching employees.
        """
        limit = limit or settings.notification_list_limit

        query = (
            select(FinanceNotification)
            .where(self._visible_to(employee))
            .order_by(FinanceNotification.created_at.desc())
        )
        if unread_only:
            query = query.where(FinanceNotification.is_read.is_(False))

        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())

    async def unread_count(self, employee: Employee) -> int:
        result = await self.db.execute(
            select(func.count(FinanceNotification.id))
            .where(self._visible_to(employee))
            .where(FinanceNotification.is_read.is_(False))
        )
        return result.scalar_one()

    async def mark_as_read(self, notification_id: uuid.UUID, employee: Employee) -> FinanceNotification:
        """Mark one notification as read."""
        result = await self.db.execute(
            select(FinanceNotification)
            .where(FinanceNotification.id == notification_id)
            .where(self._visible_to(employee))
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if not notification.is_read:
            notification.mark_as_read(utcnow())
            await self.db.commit()
        return notification

    async def mark_all_as_read(self, employee: Employee) -> int:
        """Mark every visible unread notification as read. Returns the count."""
        result = await self.db.execute(
            select(FinanceNotification)
            .where(self._visible_to(employee))
            .where(FinanceNotification.is_read.is_(False))
        )
        unread = result.scalars().all()
        now = utcnow()
        for notification in unread:
            notification.mark_as_read(now)
        await self.db.commit()
        return len(unread)

    # ===========================================
    # DELIVERY (OUTBOX DRAIN)
    # ===========================================

    async def deliver_pending(self, limit: Optional[int] = None, broker=None) -> Dict[str, int]:
        """
        Push pending notifications to realtime clients.

        Each notification goes only to the connections whose employee may
        see it, the same rule the bell list applies. A failure bumps the
        attempt counter; after the configured maximum the notification is
        marked failed and no longer retried.

        `broker` defaults to this process's RealtimeBroker; workers pass a
        RedisRealtimeRelay so the API process can reach the sockets.
        """
        limit = limit or settings.notification_delivery_batch_size
        broker = broker or get_realtime_broker()

        result = await self.db.execute(
            select(FinanceNotification)
            .where(FinanceNotification.delivery_status == DeliveryStatus.PENDING)
            .order_by(FinanceNotification.created_at)
            .limit(limit)
        )
        pending = result.scalars().all()

        stats = {"delivered": 0, "retrying": 0, "failed": 0}
        for notification in pending:
            try:
                await broker.send_notification(row_to_dict(notification))
            except Exception as e:
                notification.delivery_attempts += 1
                notification.last_error = str(e)[:1000]
                if notification.delivery_attempts >= settings.notification_max_delivery_attempts:
                    notification.delivery_status = DeliveryStatus.FAILED
                    stats["failed"] += 1
                    logger.error(f"Notification {notification.id} delivery failed permanently: {e}")
                else:
                    stats["retrying"] += 1
                    logger.warning(
                        f"Notification {notification.id} delivery attempt "
                        f"{notification.delivery_attempts} failed: {e}"
                    )
                continue

            notification.delivery_attempts += 1
            notification.delivery_status = DeliveryStatus.DELIVERED
            notification.delivered_at = utcnow()
            notification.last_error = None
            stats["delivered"] += 1

        await self.db.commit()

        if pending:
            logger.info(f"Notification delivery run: {stats}")
        return stats


def get_notification_service(db: AsyncSession) -> NotificationService:
    """Factory function for dependency injection."""
    return NotificationService(db)
