import logging
from typing import List, Optional, Tuple

from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from models.notification_models import NotificationType
from serializers import serialize_chat, serialize_message
from utils import utcnow, to_object_id
from .broadcast import ChatBroadcaster, broadcaster as default_broadcaster
from .locks import EntityLocks, entity_locks, chat_key
from .notification_store import NotificationStore

logger = logging.getLogger(__name__)


def normalize_participants(user_a: str, user_b: str) -> List[str]:
    return sorted([str(user_a), str(user_b)])


class ChatSessionManager:
    """Keeps at most one active chat per (book, participant pair) and runs the message protocol."""

    def __init__(
        self,
        db,
        notifications: NotificationStore,
        broadcaster: ChatBroadcaster = default_broadcaster,
        locks: EntityLocks = entity_locks,
    ):
        self.db = db
        self.notifications = notifications
        self.broadcaster = broadcaster
        self.locks = locks

    async def _load(self, chat_id: str) -> dict:
        chat = await self.db.chats.find_one({"_id": to_object_id(chat_id, "chat")})
        if not chat:
            raise NotFoundError("chat", chat_id)
        return chat

    @staticmethod
    def _ensure_participant(chat: dict, user_id: str) -> None:
        if user_id not in chat.get("participants", []):
            raise UnauthorizedError("You are not a participant of this chat", "NOT_PARTICIPANT")

    async def find_active(self, book_id: str, user_a: str, user_b: str) -> Optional[dict]:
        return await self.db.chats.find_one({
            "book_id": str(book_id),
            "participants": normalize_participants(user_a, user_b),
            "active": True,
            "terminated": {"$ne": True},
        })

    async def init_or_reactivate(self, book_id: str, user_a: str, user_b: str) -> Tuple[dict, bool]:
        """Return the pair's active chat, reviving or creating one if needed.

        The second element is True only when a new chat document was inserted.
        """
        if str(user_a) == str(user_b):
            raise ConflictError("Cannot chat with yourself", "SELF_CHAT")

        book_id = str(book_id)
        participants = normalize_participants(user_a, user_b)
        pair = {"book_id": book_id, "participants": participants}

        async with self.locks.hold(chat_key(book_id, *participants)):
            active = await self.db.chats.find_one({**pair, "active": True})
            if active:
                return active, False

            now = utcnow()
            dormant = await self.db.chats.find_one(
                {**pair, "active": False},
                sort=[("updated_at", DESCENDING)],
            )
            try:
                if dormant:
                    await self.db.chats.update_one(
                        {"_id": dormant["_id"]},
                        {"$set": {
                            "active": True,
                            "terminated": False,
                            "terminated_by": None,
                            "updated_at": now,
                        }},
                    )
                    logger.info("Chat reactivated", extra={"chat_id": str(dormant["_id"]), "book_id": book_id})
                    return await self.db.chats.find_one({"_id": dormant["_id"]}), False

                chat = {
                    "_id": ObjectId(),
                    **pair,
                    "messages": [],
                    "active": True,
                    "terminated": False,
                    "terminated_by": None,
                    "created_at": now,
                    "updated_at": now,
                }
                await self.db.chats.insert_one(chat)
                logger.info("Chat created", extra={"chat_id": str(chat["_id"]), "book_id": book_id})
                return chat, True
            except DuplicateKeyError:
                # Another process won the race on the partial unique index
                return await self.db.chats.find_one({**pair, "active": True}), False

    async def open_chat(self, book_id: str, caller_id: str, other_user_id: str) -> Tuple[dict, bool]:
        """chat.init as exposed to clients: the book must exist."""
        book = await self.db.books.find_one({"_id": to_object_id(book_id, "book")}, {"_id": 1})
        if not book:
            raise NotFoundError("book", book_id)
        return await self.init_or_reactivate(book_id, caller_id, other_user_id)

    async def get(self, chat_id: str, caller_id: str) -> dict:
        chat = await self._load(chat_id)
        self._ensure_participant(chat, caller_id)
        return chat

    async def list_for_user(self, user_id: str) -> List[dict]:
        cursor = self.db.chats.find({"participants": user_id}).sort("updated_at", DESCENDING)
        return [serialize_chat(chat) async for chat in cursor]

    async def post_message(self, chat_id: str, sender_id: str, text: str) -> dict:
        chat = await self._load(chat_id)
        self._ensure_participant(chat, sender_id)

        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is required", "EMPTY_TEXT", field="text")

        async with self.locks.hold(chat_key(chat["book_id"], *chat["participants"])):
            chat = await self._load(chat_id)
            if not chat.get("active") or chat.get("terminated"):
                raise ConflictError("Chat is terminated. Cannot send messages.", "CHAT_TERMINATED")

            now = utcnow()
            message = {"_id": ObjectId(), "sender_id": sender_id, "text": text, "created_at": now}
            await self.db.chats.update_one(
                {"_id": chat["_id"]},
                {"$push": {"messages": message}, "$set": {"updated_at": now}},
            )
            chat = await self._load(chat_id)

        await self.broadcaster.publish(chat["book_id"], jsonable_encoder({
            "event": "newMessage",
            "chat_id": str(chat["_id"]),
            "book_id": chat["book_id"],
            "message": serialize_message(message),
        }), audience=chat["participants"])
        return chat

    async def post_to_book(self, book_id: str, sender_id: str, text: str) -> dict:
        """Post into the sender's active chat on a book (live channel entry point)."""
        chat = await self.active_chat_for(book_id, sender_id)
        if not chat:
            raise NotFoundError("chat", book_id, message="No active chat for this book")
        return await self.post_message(str(chat["_id"]), sender_id, text)

    async def active_chat_for(self, book_id: str, user_id: str) -> Optional[dict]:
        return await self.db.chats.find_one({
            "book_id": str(book_id),
            "participants": user_id,
            "active": True,
        })

    async def close(self, chat_id: str, caller_id: str) -> dict:
        chat = await self._load(chat_id)
        self._ensure_participant(chat, caller_id)

        async with self.locks.hold(chat_key(chat["book_id"], *chat["participants"])):
            await self.db.chats.update_one(
                {"_id": chat["_id"]},
                {"$set": {
                    "active": False,
                    "terminated": True,
                    "terminated_by": caller_id,
                    "updated_at": utcnow(),
                }},
            )
        logger.info("Chat closed", extra={"chat_id": str(chat["_id"]), "user_id": caller_id})

        for participant in chat["participants"]:
            await self.notifications.sweep_seen(
                participant, NotificationType.CHAT_STARTED, chat_id=str(chat["_id"]),
            )
        return {"message": "Chat terminated successfully", "chat_id": str(chat["_id"])}

    async def deactivate_pair(self, book_id: str, user_a: str, user_b: str) -> int:
        participants = normalize_participants(user_a, user_b)
        async with self.locks.hold(chat_key(book_id, *participants)):
            result = await self.db.chats.update_many(
                {"book_id": str(book_id), "participants": participants, "active": True},
                {"$set": {"active": False, "updated_at": utcnow()}},
            )
        return result.modified_count

    async def deactivate_for_book(self, book_id: str) -> int:
        """Deactivate every active chat on the book, whatever the pair."""
        deactivated = 0
        chats = await self.db.chats.find(
            {"book_id": str(book_id), "active": True}, {"participants": 1},
        ).to_list(length=None)
        for chat in chats:
            deactivated += await self.deactivate_pair(book_id, *chat["participants"])
        return deactivated
