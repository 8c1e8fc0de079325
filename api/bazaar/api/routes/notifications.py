from fastapi import APIRouter, Depends, Query

from bazaar.api.deps import get_notifier, require_scopes
from bazaar.core.security import get_human_principal
from bazaar.schemas.notifications import BulkNotificationRequest, NotificationCountOut, NotificationOut

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    principal=Depends(get_human_principal),
    notifier=Depends(get_notifier),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[NotificationOut]:
    require_scopes(principal, {"notifications:read"})
    rows = await notifier.list_for_user(principal.actor_id, unread_only=unread_only, limit=limit, offset=offset)
    return [NotificationOut(**row) for row in rows]


@router.post("/read-all", response_model=NotificationCountOut)
async def mark_all_notifications_read(
    principal=Depends(get_human_principal),
    notifier=Depends(get_notifier),
) -> NotificationCountOut:
    require_scopes(principal, {"notifications:read"})
    return NotificationCountOut(count=await notifier.mark_all_read(principal.actor_id))


@router.post("/bulk", response_model=NotificationCountOut)
async def send_bulk_notification(
    payload: BulkNotificationRequest,
    principal=Depends(get_human_principal),
    notifier=Depends(get_notifier),
) -> NotificationCountOut:
    require_scopes(principal, {"admin:write"})
    delivered = await notifier.notify_users(
        payload.user_ids,
        title=payload.title,
        message=payload.message,
        notification_type=payload.type,
        data=payload.data,
    )
    return NotificationCountOut(count=delivered)


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_read(
    notification_id: str,
    principal=Depends(get_human_principal),
    notifier=Depends(get_notifier),
) -> NotificationOut:
    require_scopes(principal, {"notifications:read"})
    return NotificationOut(**await notifier.mark_read(notification_id, principal.actor_id))
