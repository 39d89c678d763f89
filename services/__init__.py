from .locks import EntityLocks, entity_locks
from .broadcast import ChatBroadcaster, broadcaster
from .notification_store import NotificationStore
from .chat_sessions import ChatSessionManager
from .request_lifecycle import RequestLifecycle

__all__ = [
    'EntityLocks',
    'entity_locks',
    'ChatBroadcaster',
    'broadcaster',
    'NotificationStore',
    'ChatSessionManager',
    'RequestLifecycle',
]
