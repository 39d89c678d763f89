import logging
from typing import List, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

from errors import BookWiseError, NotFoundError
from models.notification_models import NotificationType
from serializers import serialize_notification
from utils import utcnow, to_object_id
from .locks import EntityLocks, entity_locks, user_key

logger = logging.getLogger(__name__)


def _newest_first(notifications: list) -> list:
    # Ties on created_at fall back to insertion order, newest insert first
    indexed = sorted(
        enumerate(notifications),
        key=lambda pair: (pair[1].get("created_at"), pair[0]),
        reverse=True,
    )
    return [n for _, n in indexed]


class NotificationStore:
    """Per-user notification log embedded in the user document."""

    def __init__(self, db, locks: EntityLocks = entity_locks):
        self.db = db
        self.locks = locks

    async def _load(self, user_id: str) -> list:
        # A verified user without a stored profile has an empty log
        user = await self.db.users.find_one({"_id": user_id}, {"notifications": 1})
        return (user or {}).get("notifications", [])

    async def _save(self, user_id: str, notifications: list) -> None:
        await self.db.users.update_one(
            {"_id": user_id},
            {
                "$set": {"notifications": notifications},
                "$setOnInsert": {"created_at": utcnow()},
            },
            upsert=True,
        )

    async def append(
        self,
        user_id: str,
        type: NotificationType,
        message: str,
        book_id: str,
        from_user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> dict:
        notification = {
            "_id": ObjectId(),
            "type": NotificationType(type).value,
            "message": message,
            "book_id": str(book_id),
            "from_user_id": from_user_id,
            "request_id": str(request_id) if request_id is not None else None,
            "chat_id": str(chat_id) if chat_id is not None else None,
            "seen": False,
            "created_at": utcnow(),
        }
        async with self.locks.hold(user_key(user_id)):
            notifications = await self._load(user_id)
            notifications.append(notification)
            await self._save(user_id, notifications)
        return serialize_notification(notification)

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> List[dict]:
        notifications = await self._load(user_id)
        if unread_only:
            notifications = [n for n in notifications if not n.get("seen")]
        return [serialize_notification(n) for n in _newest_first(notifications)]

    async def unread_count(self, user_id: str) -> int:
        notifications = await self._load(user_id)
        return sum(1 for n in notifications if not n.get("seen"))

    async def mark_seen(self, user_id: str, notification_id: str) -> dict:
        oid = to_object_id(notification_id, "notification")
        async with self.locks.hold(user_key(user_id)):
            notifications = await self._load(user_id)
            target = next((n for n in notifications if n["_id"] == oid), None)
            if target is None:
                raise NotFoundError("notification", notification_id)
            if not target.get("seen"):
                target["seen"] = True
                await self._save(user_id, notifications)
        return serialize_notification(target)

    async def delete(self, user_id: str, notification_id: str) -> int:
        oid = to_object_id(notification_id, "notification")
        async with self.locks.hold(user_key(user_id)):
            notifications = await self._load(user_id)
            remaining = [n for n in notifications if n["_id"] != oid]
            removed = len(notifications) - len(remaining)
            if removed == 0:
                raise NotFoundError("notification", notification_id)
            await self._save(user_id, remaining)
        return removed

    async def clear_seen(self, user_id: str) -> int:
        async with self.locks.hold(user_key(user_id)):
            notifications = await self._load(user_id)
            remaining = [n for n in notifications if not n.get("seen")]
            removed = len(notifications) - len(remaining)
            if removed:
                await self._save(user_id, remaining)
        return removed

    async def mark_matching_seen(
        self,
        user_id: str,
        type: NotificationType,
        book_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> int:
        """Mark every unseen notification matching the given references as seen."""
        wanted = {"type": NotificationType(type).value}
        if book_id is not None:
            wanted["book_id"] = str(book_id)
        if from_user_id is not None:
            wanted["from_user_id"] = from_user_id
        if chat_id is not None:
            wanted["chat_id"] = str(chat_id)

        async with self.locks.hold(user_key(user_id)):
            notifications = await self._load(user_id)
            marked = 0
            for n in notifications:
                if n.get("seen"):
                    continue
                if all(n.get(k) == v for k, v in wanted.items()):
                    n["seen"] = True
                    marked += 1
            if marked:
                await self._save(user_id, notifications)
        return marked

    # Best-effort variants used as side effects of lifecycle operations.
    # A failure here is logged and never undoes the primary change.

    async def notify(self, user_id: str, type: NotificationType, message: str, book_id: str, **refs) -> Optional[dict]:
        try:
            return await self.append(user_id, type, message, book_id, **refs)
        except (PyMongoError, BookWiseError) as e:
            logger.warning(
                f"Could not deliver {NotificationType(type).value} notification: {e}",
                extra={"user_id": user_id, "book_id": str(book_id)},
            )
            return None

    async def sweep_seen(self, user_id: str, type: NotificationType, **match) -> int:
        try:
            return await self.mark_matching_seen(user_id, type, **match)
        except (PyMongoError, BookWiseError) as e:
            logger.warning(
                f"Could not mark {NotificationType(type).value} notifications seen: {e}",
                extra={"user_id": user_id},
            )
            return 0
