"""
Notification API Routes
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.api.dependencies.auth import get_current_user, require_role
from manpower.api.routes.schemas import (
    ApiResponse,
    CountOut,
    NotificationListResponse,
    NotificationOut,
    PaginationOut,
    SendNotificationRequest,
)
from manpower.db.database import get_db
from manpower.db.models.notification import NotificationType
from manpower.db.models.user import User, UserRole
from manpower.domain.services.notification_service import NotificationService, NOTIFICATION_PAGE_SIZE

router = APIRouter()


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="Notifications of the caller, newest first",
)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, alias="isRead"),
    type_filter: Optional[NotificationType] = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=NOTIFICATION_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notifications, pagination, unread = await NotificationService(db).get_user_notifications(
        user.id, is_read=is_read, type=type_filter, page=page, limit=limit
    )
    return NotificationListResponse(
        data=[NotificationOut.model_validate(n) for n in notifications],
        pagination=PaginationOut(**pagination.to_dict()),
        unread_count=unread,
    )


@router.get(
    "/unread-count",
    response_model=ApiResponse[CountOut],
)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService(db).get_unread_count(user.id)
    return ApiResponse(data=CountOut(count=count))


@router.put(
    "/read-all",
    response_model=ApiResponse[CountOut],
)
async def mark_all_as_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService(db).mark_all_as_read(user.id)
    return ApiResponse(message="All notifications marked as read", data=CountOut(count=count))


@router.put(
    "/{notification_id}/read",
    response_model=ApiResponse[NotificationOut],
)
async def mark_as_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_as_read(notification_id, user.id)
    return ApiResponse(message="Notification marked as read", data=NotificationOut.model_validate(notification))


@router.delete(
    "/{notification_id}",
    response_model=ApiResponse[None],
)
async def delete_notification(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await NotificationService(db).delete_notification(notification_id, user.id)
    return ApiResponse(message="Notification deleted")


@router.post(
    "/send",
    response_model=ApiResponse[NotificationOut],
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification to a user (admin)",
)
async def send_notification(
    body: SendNotificationRequest,
    admin: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).create_notification(
        body.user_id,
        body.type,
        body.title,
        body.message,
        related_id=body.related_id,
        related_model=body.related_model,
        action_url=body.action_url,
        priority=body.priority,
    )
    return ApiResponse(message="Notification sent", data=NotificationOut.model_validate(notification))
