"""
Great Pearl Coffee Finance - Notifications Router

The notification bell: list, unread count, mark as read.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_employee
from app.models.employee import Employee
from app.models.notification import NotificationPriority, NotificationType
from app.services.notification_service import get_notification_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority
    is_read: bool
    target_user_email: Optional[str] = None
    target_role: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta")
    created_at: datetime
    read_at: Optional[datetime] = None


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    marked: int


# ===========================================
# ENDPOINTS
# ===========================================

@router.get("", response_model=List[NotificationResponse], summary="My notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """Most recent notifications addressed to me, my role, or everyone."""
    service = get_notification_service(db)
    notifications = await service.list_for_user(current_employee, unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread notification count")
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_notification_service(db)
    return UnreadCountResponse(unread_count=await service.unread_count(current_employee))


@router.post("/{notification_id}/read", response_model=NotificationResponse, summary="Mark as read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_notification_service(db)
    notification = await service.mark_as_read(notification_id, current_employee)
    return NotificationResponse.model_validate(notification)


@router.post("/read-all", response_model=MarkAllReadResponse, summary="Mark all as read")
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_notification_service(db)
    return MarkAllReadResponse(marked=await service.mark_all_as_read(current_employee))
