from fastapi import APIRouter, Depends

from dependencies import get_current_user_id, get_notification_store
from services import NotificationStore

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/")
async def get_user_notifications(
    unread_only: bool = False,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_notification_store),
):
    return await store.list_for_user(user_id, unread_only=unread_only)


@router.get("/unread-count")
async def get_unread_count(
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_notification_store),
):
    return {"unread": await store.unread_count(user_id)}


@router.patch("/{notification_id}/seen")
async def mark_notification_seen(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_notification_store),
):
    notification = await store.mark_seen(user_id, notification_id)
    return {"message": "Marked as seen", "notification": notification}


@router.delete("/clear/seen")
async def clear_seen_notifications(
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_notification_store),
):
    deleted = await store.clear_seen(user_id)
    return {"message": f"Deleted {deleted} seen notifications", "deleted": deleted}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_notification_store),
):
    deleted = await store.delete(user_id, notification_id)
    return {"message": "Notification deleted successfully", "deleted": deleted}
