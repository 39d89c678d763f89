import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import Hashable


class EntityLocks:
    """Per-entity asyncio locks serializing read-modify-write on one document.

    Keys are tuples such as ("book", id), ("chat", book_id, user_a, user_b) or
    ("user", id). Callers nest acquisitions in the order book -> chat -> user.
    A lock lives only while someone holds or waits on it.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._lock_for(key)
        async with lock:
            yield

    def __len__(self):
        return len(self._locks)


def book_key(book_id: str) -> tuple:
    return ("book", str(book_id))


def chat_key(book_id: str, user_a: str, user_b: str) -> tuple:
    first, second = sorted((str(user_a), str(user_b)))
    return ("chat", str(book_id), first, second)


def user_key(user_id: str) -> tuple:
    return ("user", str(user_id))


entity_locks = EntityLocks()
