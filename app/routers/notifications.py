"""
Notification API Router.
Paths: /v1/notifications
"""
import logging

from fastapi import APIRouter, Depends, Path

from app.dependencies import get_store
from app.exceptions import PersistenceException
from app.models import MarkReadResponse, NotificationItem, NotificationListResponse
from app.store.documents import DocumentStore
from app.supabase_client import DatabaseError
from app.utils.datetime_utils import time_ago, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/notifications",
    tags=["notifications"],
)


@router.get("", response_model=NotificationListResponse)
async def list_notifications(store: DocumentStore = Depends(get_store)):
    """Notifications newest first with the unread count."""
    now = utc_now()
    items = [
        NotificationItem(**n.model_dump(), time_ago=time_ago(n.created_at, now=now))
        for n in store.notifications
    ]
    return NotificationListResponse(notifications=items, unread_count=store.get_unread_count())


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_notification_read(
    notification_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    """Marking an unknown or already read notification changes nothing."""
    try:
        notification = await store.mark_notification_as_read(notification_id)
    except DatabaseError as e:
        raise PersistenceException(f"Could not update the notification: {e.message}")

    return MarkReadResponse(
        notification_id=notification_id,
        read=bool(notification and notification.read),
        unread_count=store.get_unread_count(),
    )
