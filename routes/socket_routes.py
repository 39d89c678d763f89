import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from dependencies import get_chat_manager
from errors import BookWiseError, ValidationError
from serializers import serialize_message
from services import ChatSessionManager
from utils import verify_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws/books/{book_id}")
async def book_channel(
    websocket: WebSocket,
    book_id: str,
    token: Optional[str] = Query(None),
    chats: ChatSessionManager = Depends(get_chat_manager),
):
    """Live chat channel of a book: history on join, then message fan-out."""
    user_id = verify_token(token) if token else None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    chats.broadcaster.subscribe(book_id, websocket, user_id)
    logger.info("Socket joined book channel", extra={"book_id": book_id, "user_id": user_id})
    try:
        chat = await chats.active_chat_for(book_id, user_id)
        history = [serialize_message(m) for m in chat.get("messages", [])] if chat else []
        await websocket.send_json(jsonable_encoder({
            "event": "chatHistory",
            "book_id": book_id,
            "chat_id": str(chat["_id"]) if chat else None,
            "messages": history,
        }))

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await websocket.send_json({
                    "event": "error",
                    **ValidationError("Frame must be a JSON object").to_response()["error"],
                })
                continue
            text = data.get("text") if isinstance(data, dict) else None
            try:
                # Broadcast to the channel happens inside post_message
                await chats.post_to_book(book_id, user_id, text)
            except BookWiseError as e:
                await websocket.send_json({"event": "error", **e.to_response()["error"]})
    except WebSocketDisconnect:
        logger.info("Socket left book channel", extra={"book_id": book_id, "user_id": user_id})
    finally:
        chats.broadcaster.unsubscribe(book_id, websocket)
