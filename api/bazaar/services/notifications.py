from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from bazaar.core.errors import NotFoundError, ValidationError
from bazaar.services.store import Filter, RecordStore

logger = logging.getLogger(__name__)

TYPE_NEW_CROP_POST = "new_crop_post"
TYPE_CROP_POST_RESUBMITTED = "crop_post_resubmitted"
TYPE_CROP_POST_REVIEWED = "crop_post_reviewed"
TYPE_CROP_POST_REEVALUATED = "crop_post_reevaluated"
TYPE_CROP_POST_STATUS_CHANGED = "crop_post_status_changed"
TYPE_GENERAL = "general"

_STATUS_TITLES = {
    "approved": "Your crop post has been approved",
    "rejected": "Your crop post has been rejected",
    "pending": "Your crop post has been re-submitted for review",
    "sold": "Your crop post has been marked as sold",
    "expired": "Your crop post has expired",
    "withdrawn": "Your crop post has been withdrawn",
}


@dataclass(slots=True)
class AdminEvent:
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationFanOut:
    """Writes one notification row per recipient.

    Every write is best-effort: the transition that triggered it is already
    committed, so failures are logged and dropped.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def notify_owner(
        self,
        listing: dict[str, Any],
        status: str,
        notes: str | None = None,
        *,
        notification_type: str = TYPE_CROP_POST_REVIEWED,
    ) -> dict[str, Any] | None:
        crop = listing.get("crop_name") or "Crop"
        variety = listing.get("variety_name") or "N/A"
        verb = "re-submitted for review" if status == "pending" else status
        message = f"{crop} - {variety} has been {verb}"
        if notification_type in {TYPE_CROP_POST_REVIEWED, TYPE_CROP_POST_REEVALUATED}:
            message += " by admin"
        if notes:
            message += f". Notes: {notes}"

        return await self._write(
            user_id=listing["farmer_id"],
            notification_type=notification_type,
            title=_STATUS_TITLES.get(status, f"Your crop post is now {status}"),
            message=message,
            data={"crop_post_id": listing["id"], "status": status, "admin_notes": notes},
        )

    async def notify_admins(self, event: AdminEvent) -> int:
        try:
            admins = await self.store.list("user_profiles", filters=[Filter("role", "eq", "admin")])
        except Exception:
            logger.exception("admin lookup failed for notification type=%s", event.type)
            return 0
        return await self._fan_out(
            [admin["id"] for admin in admins],
            notification_type=event.type,
            title=event.title,
            message=event.message,
            data=event.data,
        )

    async def notify_users(
        self,
        user_ids: list[str],
        *,
        title: str,
        message: str,
        notification_type: str = TYPE_GENERAL,
        data: dict[str, Any] | None = None,
    ) -> int:
        recipients = list(dict.fromkeys(user_id for user_id in user_ids if user_id))
        if not recipients:
            raise ValidationError("user_ids", "at least one recipient is required")
        return await self._fan_out(
            recipients,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data or {},
        )

    async def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int | None = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        filters = [Filter("user_id", "eq", user_id)]
        if unread_only:
            filters.append(Filter("is_read", "eq", False))
        return await self.store.list(
            "notifications",
            filters=filters,
            order_by=[("created_at", "desc")],
            limit=limit,
            offset=offset,
        )

    async def mark_read(self, notification_id: str, user_id: str) -> dict[str, Any]:
        notification = await self.store.get("notifications", notification_id)
        if notification is None or notification.get("user_id") != user_id:
            raise NotFoundError("notification not found")
        if notification.get("is_read"):
            return notification
        return await self.store.update(
            "notifications",
            notification_id,
            {"is_read": True, "read_at": datetime.now(timezone.utc)},
        )

    async def mark_all_read(self, user_id: str) -> int:
        unread = await self.list_for_user(user_id, unread_only=True, limit=None)
        read_at = datetime.now(timezone.utc)
        for notification in unread:
            await self.store.update("notifications", notification["id"], {"is_read": True, "read_at": read_at})
        return len(unread)

    async def _fan_out(
        self,
        user_ids: list[str],
        *,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> int:
        # Independent rows so read state stays per recipient.
        results = await asyncio.gather(
            *(
                self._write(
                    user_id=user_id,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    data=data,
                )
                for user_id in user_ids
            )
        )
        delivered = sum(1 for result in results if result is not None)
        logger.info(
            "notification fan-out type=%s recipients=%s delivered=%s",
            notification_type,
            len(user_ids),
            delivered,
        )
        return delivered

    async def _write(
        self,
        *,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        try:
            return await self.store.create(
                "notifications",
                {
                    "user_id": user_id,
                    "type": notification_type,
                    "title": title,
                    "message": message,
                    "data": data,
                    "is_read": False,
                    "read_at": None,
                    "created_at": datetime.now(timezone.utc),
                },
            )
        except Exception:
            logger.exception("notification write failed user_id=%s type=%s", user_id, notification_type)
            return None
