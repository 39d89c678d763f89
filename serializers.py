from typing import Optional


def _str_id(value) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_request(request) -> dict:
    return {
        "id": str(request["_id"]),
        "user_id": request.get("user_id"),
        "status": request.get("status"),
        "requested_at": request.get("requested_at"),
    }


def serialize_book(book) -> dict:
    return {
        "id": str(book["_id"]),
        "title": book.get("title"),
        "author": book.get("author"),
        "subject": book.get("subject"),
        "class_level": book.get("class_level"),
        "location": book.get("location"),
        "contact": book.get("contact"),
        "cover": book.get("cover"),
        "isbn": book.get("isbn"),
        "genre": book.get("genre"),
        "book_language": book.get("book_language"),
        "condition": book.get("condition"),
        "status": book.get("status"),
        "owner_id": book.get("owner_id"),
        "requests": [serialize_request(r) for r in book.get("requests", [])],
        "accepted_request": book.get("accepted_request"),
        "donated_to": book.get("donated_to"),
        "created_at": book.get("created_at"),
        "updated_at": book.get("updated_at"),
    }


def serialize_message(message) -> dict:
    return {
        "id": str(message["_id"]),
        "sender_id": message.get("sender_id"),
        "text": message.get("text"),
        "created_at": message.get("created_at"),
    }


def serialize_chat(chat) -> dict:
    return {
        "id": str(chat["_id"]),
        "book_id": chat.get("book_id"),
        "participants": chat.get("participants", []),
        "messages": [serialize_message(m) for m in chat.get("messages", [])],
        "active": chat.get("active", False),
        "terminated": chat.get("terminated", False),
        "terminated_by": chat.get("terminated_by"),
        "created_at": chat.get("created_at"),
        "updated_at": chat.get("updated_at"),
    }


def serialize_notification(notification) -> dict:
    return {
        "id": str(notification["_id"]),
        "type": notification.get("type"),
        "message": notification.get("message"),
        "book_id": notification.get("book_id"),
        "from_user_id": notification.get("from_user_id"),
        "request_id": _str_id(notification.get("request_id")),
        "chat_id": _str_id(notification.get("chat_id")),
        "seen": notification.get("seen", False),
        "created_at": notification.get("created_at"),
    }


def serialize_user(user) -> dict:
    """Public profile fields; notifications are never exposed here."""
    return {
        "id": str(user["_id"]),
        "name": user.get("name", ""),
        "email": user.get("email"),
        "bio": user.get("bio", ""),
        "location": user.get("location", ""),
        "interests": user.get("interests", []),
        "photo": user.get("photo", ""),
        "created_at": user.get("created_at"),
    }
