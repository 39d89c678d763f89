from enum import Enum


class NotificationType(str, Enum):
    BOOK_REQUEST = "book-request"
    BOOK_WITHDRAW = "book-withdraw"
    BOOK_ACCEPTED = "book-accepted"
    BOOK_REJECTED = "book-rejected"
    CHAT_STARTED = "chat-started"
