from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dataBase import get_db
from errors import AuthenticationError
from services import (
    ChatSessionManager,
    NotificationStore,
    RequestLifecycle,
    broadcaster,
    entity_locks,
)
from utils import verify_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Verified caller id taken from the identity provider's bearer token."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Authorization token missing or malformed")
    user_id = verify_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Invalid or expired token")
    return user_id


def get_notification_store(db=Depends(get_db)) -> NotificationStore:
    return NotificationStore(db, entity_locks)


def get_chat_manager(
    db=Depends(get_db),
    notifications: NotificationStore = Depends(get_notification_store),
) -> ChatSessionManager:
    return ChatSessionManager(db, notifications, broadcaster, entity_locks)


def get_request_lifecycle(
    db=Depends(get_db),
    chats: ChatSessionManager = Depends(get_chat_manager),
    notifications: NotificationStore = Depends(get_notification_store),
) -> RequestLifecycle:
    return RequestLifecycle(db, chats, notifications, entity_locks)
