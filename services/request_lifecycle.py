import logging
from typing import List, Optional

from bson import ObjectId

from errors import ConflictError, NotFoundError, UnauthorizedError
from models.book_models import BookStatus, RequestStatus
from models.notification_models import NotificationType
from utils import utcnow, to_object_id
from .chat_sessions import ChatSessionManager
from .locks import EntityLocks, entity_locks, book_key
from .notification_store import NotificationStore

logger = logging.getLogger(__name__)

OPEN_REQUEST_STATES = (RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value)


def _pending_request_of(book: dict, user_id: str) -> Optional[dict]:
    return next(
        (r for r in book.get("requests", [])
         if r.get("user_id") == user_id and r.get("status") == RequestStatus.PENDING.value),
        None,
    )


def recompute_status(book: dict) -> None:
    """Revert to Available once no request is Pending or Accepted."""
    if not any(r.get("status") in OPEN_REQUEST_STATES for r in book.get("requests", [])):
        book["status"] = BookStatus.AVAILABLE.value
        book["accepted_request"] = None


class RequestLifecycle:
    """Request queue and status transitions of a book, with their chat and notification side effects.

    Every mutation of a book runs under that book's lock. Chat changes nest inside it;
    notifications are written afterwards on a best-effort basis.
    """

    def __init__(
        self,
        db,
        chats: ChatSessionManager,
        notifications: NotificationStore,
        locks: EntityLocks = entity_locks,
    ):
        self.db = db
        self.chats = chats
        self.notifications = notifications
        self.locks = locks

    async def _load_book(self, book_id: str) -> dict:
        book = await self.db.books.find_one({"_id": to_object_id(book_id, "book")})
        if not book:
            raise NotFoundError("book", book_id)
        return book

    async def _save_book(self, book: dict) -> None:
        book["updated_at"] = utcnow()
        await self.db.books.update_one(
            {"_id": book["_id"]},
            {"$set": {
                "requests": book.get("requests", []),
                "status": book["status"],
                "accepted_request": book.get("accepted_request"),
                "donated_to": book.get("donated_to"),
                "updated_at": book["updated_at"],
            }},
        )

    async def _user_name(self, user_id: str) -> str:
        user = await self.db.users.find_one({"_id": user_id}, {"name": 1})
        return (user or {}).get("name") or "Someone"

    @staticmethod
    def _ensure_owner(book: dict, caller_id: str) -> None:
        if book.get("owner_id") != caller_id:
            raise UnauthorizedError("Only the book owner can do this", "NOT_OWNER")

    @staticmethod
    def _ensure_not_donated(book: dict) -> None:
        if book.get("status") == BookStatus.DONATED.value:
            raise ConflictError("Book already donated", "ALREADY_DONATED")

    async def request(self, book_id: str, user_id: str) -> dict:
        async with self.locks.hold(book_key(book_id)):
            book = await self._load_book(book_id)
            self._ensure_not_donated(book)
            owner_id = book["owner_id"]
            if owner_id == user_id:
                raise ConflictError("You cannot request your own book", "OWN_BOOK")

            if await self.chats.find_active(book_id, user_id, owner_id):
                raise ConflictError(
                    "You already have an active chat for this book. Please terminate the chat to re-request.",
                    "ACTIVE_CHAT_EXISTS",
                )
            if _pending_request_of(book, user_id):
                raise ConflictError("Already requested", "ALREADY_REQUESTED")

            new_request = {
                "_id": ObjectId(),
                "user_id": user_id,
                "status": RequestStatus.PENDING.value,
                "requested_at": utcnow(),
            }
            book.setdefault("requests", []).append(new_request)
            book["status"] = BookStatus.REQUESTED.value
            await self._save_book(book)

        logger.info("Book requested", extra={"book_id": book_id, "user_id": user_id})
        requester_name = await self._user_name(user_id)
        await self.notifications.notify(
            owner_id,
            NotificationType.BOOK_REQUEST,
            f'{requester_name} has requested your book: "{book["title"]}"',
            book_id,
            from_user_id=user_id,
            request_id=str(new_request["_id"]),
        )
        return book

    async def withdraw(self, book_id: str, user_id: str) -> dict:
        async with self.locks.hold(book_key(book_id)):
            book = await self._load_book(book_id)
            self._ensure_not_donated(book)
            pending = _pending_request_of(book, user_id)
            if not pending:
                raise NotFoundError("request", user_id, code="NO_ACTIVE_REQUEST", message="No active request found")

            pending["status"] = RequestStatus.WITHDRAWN.value
            recompute_status(book)
            await self._save_book(book)

        logger.info("Request withdrawn", extra={"book_id": book_id, "user_id": user_id})
        owner_id = book["owner_id"]
        requester_name = await self._user_name(user_id)
        await self.notifications.notify(
            owner_id,
            NotificationType.BOOK_WITHDRAW,
            f'{requester_name} has withdrawn their request for "{book["title"]}"',
            book_id,
            from_user_id=user_id,
        )
        await self.notifications.sweep_seen(
            owner_id, NotificationType.BOOK_REQUEST, book_id=book_id, from_user_id=user_id,
        )
        return book

    async def accept(self, book_id: str, request_id: str, owner_id: str) -> dict:
        request_oid = to_object_id(request_id, "request")
        async with self.locks.hold(book_key(book_id)):
            book = await self._load_book(book_id)
            self._ensure_owner(book, owner_id)
            self._ensure_not_donated(book)

            target = next((r for r in book.get("requests", []) if r["_id"] == request_oid), None)
            if not target or target.get("status") != RequestStatus.PENDING.value:
                raise NotFoundError(
                    "request", request_id, message="Request not found or already processed",
                )
            winner_id = target["user_id"]

            # First accept wins: every other open request leaves Pending in the same write
            losers: List[str] = []
            for r in book["requests"]:
                if r is target:
                    r["status"] = RequestStatus.ACCEPTED.value
                elif r.get("status") == RequestStatus.PENDING.value:
                    r["status"] = RequestStatus.REJECTED.value
                    losers.append(r["user_id"])
                elif r.get("status") == RequestStatus.ACCEPTED.value:
                    r["status"] = RequestStatus.REJECTED.value
                    if r["user_id"] != winner_id:
                        losers.append(r["user_id"])
                        await self.chats.deactivate_pair(book_id, owner_id, r["user_id"])

            book["accepted_request"] = winner_id
            book["status"] = BookStatus.REQUESTED.value
            await self._save_book(book)

            chat, _ = await self.chats.init_or_reactivate(book_id, owner_id, winner_id)

        chat_id = str(chat["_id"])
        logger.info(
            f"Request accepted, {len(losers)} other request(s) rejected",
            extra={"book_id": book_id, "user_id": winner_id, "chat_id": chat_id},
        )

        title = book["title"]
        winner_name = await self._user_name(winner_id)
        await self.notifications.notify(
            winner_id,
            NotificationType.BOOK_ACCEPTED,
            f'Your request for "{title}" was accepted!',
            book_id,
            from_user_id=owner_id,
            chat_id=chat_id,
        )
        await self.notifications.notify(
            owner_id,
            NotificationType.CHAT_STARTED,
            f'You can now chat with {winner_name} about "{title}".',
            book_id,
            from_user_id=winner_id,
            chat_id=chat_id,
        )
        for loser_id in losers:
            await self.notifications.notify(
                loser_id,
                NotificationType.BOOK_REJECTED,
                f'Your request for "{title}" was rejected.',
                book_id,
                from_user_id=owner_id,
            )
        for requester_id in [winner_id, *losers]:
            await self.notifications.sweep_seen(
                owner_id, NotificationType.BOOK_REQUEST, book_id=book_id, from_user_id=requester_id,
            )
        return book

    async def reject(self, book_id: str, user_id: str, owner_id: str) -> dict:
        async with self.locks.hold(book_key(book_id)):
            book = await self._load_book(book_id)
            self._ensure_owner(book, owner_id)
            self._ensure_not_donated(book)

            pending = _pending_request_of(book, user_id)
            if not pending:
                raise NotFoundError("request", user_id, message="Request not found")

            pending["status"] = RequestStatus.REJECTED.value
            recompute_status(book)
            await self._save_book(book)

            await self.chats.deactivate_pair(book_id, owner_id, user_id)

        logger.info("Request rejected", extra={"book_id": book_id, "user_id": user_id})
        await self.notifications.notify(
            user_id,
            NotificationType.BOOK_REJECTED,
            f'Your request for "{book["title"]}" was rejected.',
            book_id,
            from_user_id=owner_id,
        )
        await self.notifications.sweep_seen(
            owner_id, NotificationType.BOOK_REQUEST, book_id=book_id, from_user_id=user_id,
        )
        return book

    async def mark_donated(self, book_id: str, owner_id: str) -> dict:
        async with self.locks.hold(book_key(book_id)):
            book = await self._load_book(book_id)
            self._ensure_owner(book, owner_id)
            self._ensure_not_donated(book)
            if not book.get("accepted_request"):
                raise UnauthorizedError("No accepted request to donate to", "NO_ACCEPTED_REQUEST")

            book["donated_to"] = book["accepted_request"]
            book["status"] = BookStatus.DONATED.value
            await self._save_book(book)

            closed = await self.chats.deactivate_for_book(book_id)

        logger.info(
            f"Book donated, {closed} chat(s) deactivated",
            extra={"book_id": book_id, "user_id": book["donated_to"]},
        )
        return book
