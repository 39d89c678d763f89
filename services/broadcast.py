import logging
from collections import defaultdict
from typing import Iterable, Optional

from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)


class ChatBroadcaster:
    """In-process fan-out of chat events to sockets subscribed to a book channel.

    Delivery is at-most-once: a subscriber whose send fails is dropped and the
    event is not retried.
    """

    def __init__(self):
        # book_id -> [(socket, user_id)], sockets compared by identity
        self._channels = defaultdict(list)

    def subscribe(self, book_id: str, socket, user_id: Optional[str] = None) -> None:
        subscribers = self._channels[str(book_id)]
        if not any(s is socket for s, _ in subscribers):
            subscribers.append((socket, user_id))

    def unsubscribe(self, book_id: str, socket) -> None:
        subscribers = self._channels.get(str(book_id))
        if not subscribers:
            return
        subscribers[:] = [(s, u) for s, u in subscribers if s is not socket]
        if not subscribers:
            del self._channels[str(book_id)]

    def subscriber_count(self, book_id: str) -> int:
        return len(self._channels.get(str(book_id), []))

    async def publish(self, book_id: str, event: dict, audience: Optional[Iterable[str]] = None) -> int:
        """Send event to subscribers of the book channel; returns deliveries.

        With an audience, only sockets joined by one of those users receive it.
        """
        allowed = set(audience) if audience is not None else None
        delivered = 0
        for socket, user_id in list(self._channels.get(str(book_id), [])):
            if allowed is not None and user_id not in allowed:
                continue
            try:
                await socket.send_json(event)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning(
                    f"Dropping subscriber after failed send: {e}",
                    extra={"book_id": str(book_id)},
                )
                self.unsubscribe(book_id, socket)
        return delivered


broadcaster = ChatBroadcaster()
