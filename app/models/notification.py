"""
Great Pearl Coffee Finance - Finance Notification Model

Model for storing finance desk notifications.

Notifications are written in the same database transaction as the action
that caused them and are later pushed to connected clients by the delivery
worker (outbox pattern).

Notification Types:
- Approval requests and responses
- Payments ready for collection
- Reminders and announcements
- System messages
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, enum_values


class NotificationType(str, Enum):
    """Types of finance notifications."""
    APPROVAL_REQUEST = "approval_request"
    SYSTEM = "system"
    ANNOUNCEMENT = "announcement"
    REMINDER = "reminder"
    PAYMENT_READY = "payment_ready"


class NotificationPriority(str, Enum):
    """Priority levels for notifications."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class DeliveryStatus(str, Enum):
    """Outbox delivery state."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class FinanceNotification(BaseModel):
    """
    Finance notification addressed to one user, a role, or everyone.

    ``target_user_email`` of None means broadcast (optionally narrowed by
    ``target_role``).
    """

    __tablename__ = "finance_notifications"

    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, values_callable=enum_values),
        default=NotificationType.SYSTEM,
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[NotificationPriority] = mapped_column(
        SQLEnum(NotificationPriority, values_callable=enum_values),
        default=NotificationPriority.MEDIUM,
        nullable=False,
    )

    # Addressing
    target_user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    target_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False, default="System")
    sender_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    # Read state
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Outbox delivery
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, values_callable=enum_values),
        default=DeliveryStatus.PENDING,
        nullable=False,
        index=True,
    )
    delivery_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def mark_as_read(self, when: datetime) -> None:
        """Mark notification as read."""
        self.is_read = True
        self.read_at = when

    def __repr__(self) -> str:
        return f"<FinanceNotification(type={self.type.value}, target={self.target_user_email})>"
