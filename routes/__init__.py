from .book_routes import router as book_routes
from .chat_routes import router as chat_routes
from .notification_routes import router as notification_routes
from .user_routes import router as user_routes
from .socket_routes import router as socket_routes

__all__ = [
    'book_routes',
    'chat_routes',
    'notification_routes',
    'user_routes',
    'socket_routes'
]
