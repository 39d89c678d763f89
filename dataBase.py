import logging

import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING

from config import MONGO_URL, MONGO_DB_NAME

logger = logging.getLogger(__name__)

client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


def get_db():
    """FastAPI dependency returning the active database handle."""
    return db


async def ensure_indexes(database) -> None:
    """Create the indexes the request/chat lifecycle relies on."""
    await database.books.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
    await database.books.create_index("requests.user_id")
    await database.chats.create_index([("participants", ASCENDING), ("updated_at", DESCENDING)])
    # At most one active chat per (book, participant pair)
    await database.chats.create_index(
        [("book_id", ASCENDING), ("participants", ASCENDING), ("active", ASCENDING)],
        unique=True,
        partialFilterExpression={"active": True},
        name="one_active_chat_per_pair",
    )
    logger.info("MongoDB indexes ensured")
